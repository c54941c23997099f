"""Tests for webspider.save_engine."""

from __future__ import annotations

import os
from email.utils import parsedate_to_datetime
from unittest import mock

import pytest

from webspider.errors import MirrorWriteError
from webspider.save_engine import (
    SENTINEL_NAME,
    MirrorSaveEngine,
    compute_filename_for_url,
    is_slash_redirect,
    parse_http_date,
)

LAST_MODIFIED = "Wed, 21 Oct 2015 07:28:00 GMT"


@pytest.fixture
def engine(tmp_path):
    return MirrorSaveEngine(tmp_path / "out", hostname="example.com")


class TestFilenames:
    @pytest.mark.parametrize(
        "url,content_type,expected",
        [
            ("https://example.com/", "text/html", "/index.html"),
            ("https://example.com/dir/", "", "/dir/index.html"),
            ("https://example.com/about", "text/html", "/about/index.html"),
            ("https://example.com/about", "application/json", "/about"),
            ("https://example.com/about", None, "/about"),
            ("https://example.com/style.css", "text/css", "/style.css"),
            ("https://example.com/page.html", "text/html", "/page.html"),
            ("https://example.com/search?q=a&p=2", "text/html", "/search/index.html?q=a&p=2"),
            ("https://example.com/data.json?v=1", "application/json", "/data.json?v=1"),
        ],
    )
    def test_compute_filename(self, url, content_type, expected):
        assert compute_filename_for_url(url, content_type) == expected

    def test_path_outside_root_is_refused(self, engine):
        with pytest.raises(MirrorWriteError):
            engine.path_for("https://example.com/../../etc/passwd")

    def test_slash_redirect(self):
        assert is_slash_redirect("https://example.com/dir", "https://example.com/dir/")
        assert not is_slash_redirect("https://example.com/dir", "https://example.com/other/")
        assert not is_slash_redirect("https://example.com/dir", "https://other.org/dir/")

    def test_parse_http_date(self):
        assert parse_http_date(LAST_MODIFIED) == parsedate_to_datetime(LAST_MODIFIED).timestamp()
        assert parse_http_date("yesterday") is None
        assert parse_http_date(None) is None


class TestSave:
    def test_writes_file(self, engine):
        path = engine.save("https://example.com/", b"<p>home</p>", "text/html")
        assert path == engine.output_dir / "index.html"
        assert path.read_bytes() == b"<p>home</p>"
        assert engine.files_written == 1

    def test_no_temp_files_left(self, engine):
        engine.save("https://example.com/a.css", b"a{}", "text/css")
        assert sorted(p.name for p in engine.output_dir.iterdir()) == ["a.css"]

    def test_unchanged_content_is_not_rewritten(self, tmp_path):
        first = MirrorSaveEngine(tmp_path)
        path = first.save("https://example.com/a.css", b"a{}", "text/css")
        inode = path.stat().st_ino

        second = MirrorSaveEngine(tmp_path)
        second.save("https://example.com/a.css", b"a{}", "text/css")

        assert path.stat().st_ino == inode
        assert second.files_written == 0

    def test_changed_content_is_rewritten(self, tmp_path):
        MirrorSaveEngine(tmp_path).save("https://example.com/a.css", b"a{}", "text/css")
        second = MirrorSaveEngine(tmp_path)
        path = second.save("https://example.com/a.css", b"b{color:red}", "text/css")
        assert path.read_bytes() == b"b{color:red}"
        assert second.files_written == 1

    def test_last_modified_sets_mtime(self, engine):
        path = engine.save("https://example.com/a.css", b"a{}", "text/css", LAST_MODIFIED)
        assert path.stat().st_mtime == parse_http_date(LAST_MODIFIED)

    def test_last_modified_not_newer_skips_write(self, tmp_path):
        MirrorSaveEngine(tmp_path).save("https://example.com/a.css", b"a{}", "text/css", LAST_MODIFIED)
        second = MirrorSaveEngine(tmp_path)
        second.save("https://example.com/a.css", b"b{}", "text/css", LAST_MODIFIED)
        assert second.files_written == 0

    def test_identical_bodies_are_hard_linked(self, engine):
        a = engine.save("https://example.com/a.html", b"same", "text/html")
        b = engine.save("https://example.com/b.html", b"same", "text/html")
        assert os.path.samefile(a, b)
        assert engine.files_written == 1
        assert engine.files_linked == 1

    def test_dedup_checks_content_of_first_path(self, engine):
        engine.save("https://example.com/x", b"AAAA", "text/html")
        # same file as /x, now holds other content of the same size
        engine.save("https://example.com/x/", b"BBBB", "text/html")
        z = engine.save("https://example.com/z.html", b"AAAA", "text/html")
        assert z.read_bytes() == b"AAAA"
        assert (engine.output_dir / "x" / "index.html").read_bytes() == b"BBBB"
        assert engine.files_linked == 0

    def test_existing_link_is_kept(self, tmp_path):
        first = MirrorSaveEngine(tmp_path)
        first.save("https://example.com/a.html", b"same", "text/html")
        first.save("https://example.com/b.html", b"same", "text/html")

        second = MirrorSaveEngine(tmp_path)
        a = second.save("https://example.com/a.html", b"same", "text/html")
        b = second.save("https://example.com/b.html", b"same", "text/html")

        assert os.path.samefile(a, b)
        assert second.files_written == second.files_linked == 0

    def test_rewriting_a_linked_file_leaves_the_other_alone(self, tmp_path):
        first = MirrorSaveEngine(tmp_path)
        a = first.save("https://example.com/a.html", b"same", "text/html")
        first.save("https://example.com/b.html", b"same", "text/html")

        second = MirrorSaveEngine(tmp_path)
        b = second.save("https://example.com/b.html", b"changed", "text/html")

        assert a.read_bytes() == b"same"
        assert b.read_bytes() == b"changed"
        assert not os.path.samefile(a, b)

    def test_failed_write_raises_and_cleans_up(self, engine):
        with mock.patch("webspider.save_engine.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(MirrorWriteError) as excinfo:
                engine.save("https://example.com/a.css", b"a{}", "text/css")
        assert excinfo.value.path == engine.output_dir / "a.css"
        assert list(engine.output_dir.iterdir()) == []
        assert engine.output_dir / "a.css" in engine.files_seen


class TestRedirects:
    def test_alias_registered_before_target_is_saved(self, engine):
        assert engine.add_redirect("https://example.com/old.html", "https://example.com/new/page.html")
        target = engine.save("https://example.com/new/page.html", b"page", "text/html")

        alias = engine.output_dir / "old.html"
        assert alias.is_symlink()
        assert os.readlink(alias) == os.path.join("new", "page.html")
        assert alias.resolve() == target

    def test_alias_registered_after_target_is_saved(self, engine):
        target = engine.save("https://example.com/new.css", b"x{}", "text/css")
        engine.add_redirect("https://example.com/old.css", "https://example.com/new.css")
        assert (engine.output_dir / "old.css").resolve() == target

    def test_alias_uses_target_content_type(self, engine):
        engine.add_redirect("https://example.com/about", "https://example.com/about-us")
        engine.save("https://example.com/about-us", b"about", "text/html")
        alias = engine.output_dir / "about" / "index.html"
        assert alias.is_symlink()
        assert os.readlink(alias) == os.path.join("..", "about-us", "index.html")

    def test_redirect_chain(self, engine):
        engine.add_redirect("https://example.com/a.css", "https://example.com/b.css")
        engine.add_redirect("https://example.com/b.css", "https://example.com/c.css")
        target = engine.save("https://example.com/c.css", b"c{}", "text/css")
        assert (engine.output_dir / "a.css").resolve() == target
        assert (engine.output_dir / "b.css").resolve() == target

    def test_redirect_chain_in_reverse_order(self, engine):
        engine.add_redirect("https://example.com/b.css", "https://example.com/c.css")
        engine.add_redirect("https://example.com/a.css", "https://example.com/b.css")
        target = engine.save("https://example.com/c.css", b"c{}", "text/css")
        assert engine.redirect_aliases == {
            "https://example.com/c.css": ["https://example.com/b.css", "https://example.com/a.css"]
        }
        assert (engine.output_dir / "a.css").resolve() == target
        assert (engine.output_dir / "b.css").resolve() == target

    def test_redirect_loop_is_not_tracked(self, engine):
        assert engine.add_redirect("https://example.com/a.css", "https://example.com/b.css")
        assert not engine.add_redirect("https://example.com/b.css", "https://example.com/a.css")

    def test_foreign_target_is_ignored(self, engine):
        assert not engine.add_redirect("https://example.com/x", "https://other.org/x")
        assert engine.redirect_aliases == {}

    def test_slash_redirects_not_tracked_by_default(self, engine):
        assert not engine.add_redirect("https://example.com/dir", "https://example.com/dir/")

    def test_slash_redirects_tracked_on_request(self, tmp_path):
        engine = MirrorSaveEngine(tmp_path, "example.com", track_slash_redirects=True)
        assert engine.add_redirect("https://example.com/files", "https://example.com/files/")
        engine.save("https://example.com/files/", b"listing", "application/octet-stream")
        alias = tmp_path / "files"
        assert not alias.is_symlink()
        assert alias.is_dir()

    def test_slash_redirect_with_query(self, tmp_path):
        engine = MirrorSaveEngine(tmp_path, "example.com", track_slash_redirects=True)
        engine.add_redirect("https://example.com/list?page=2", "https://example.com/list/?page=2")
        engine.save("https://example.com/list/?page=2", b"{}", "application/json")
        alias = engine.output_dir / "list?page=2"
        assert alias.is_symlink()
        assert os.readlink(alias) == os.path.join("list", "index.html?page=2")

    def test_symlink_replaces_file(self, engine):
        stale = engine.output_dir / "old.css"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"stale")
        engine.add_redirect("https://example.com/old.css", "https://example.com/new.css")
        engine.save("https://example.com/new.css", b"new", "text/css")
        assert stale.is_symlink()
        assert stale.read_bytes() == b"new"

    def test_symlink_replaces_directory(self, engine):
        stale = engine.output_dir / "old"
        (stale / "sub").mkdir(parents=True)
        (stale / "sub" / "f.txt").write_bytes(b"x")
        engine.add_redirect("https://example.com/old", "https://example.com/new.css")
        engine.save("https://example.com/new.css", b"new", "text/css")
        assert stale.is_symlink()
        assert os.readlink(stale) == "new.css"

    def test_existing_symlink_is_kept(self, tmp_path):
        for _ in range(2):
            engine = MirrorSaveEngine(tmp_path, "example.com")
            engine.add_redirect("https://example.com/old.css", "https://example.com/new.css")
            engine.save("https://example.com/new.css", b"new", "text/css")
        assert os.readlink(tmp_path / "old.css") == "new.css"


class TestGarbageCollection:
    def test_removes_files_not_produced_by_run(self, engine):
        engine.write_sentinel()
        (engine.output_dir / "sub").mkdir()
        stale = engine.output_dir / "sub" / "stale.html"
        stale.write_bytes(b"old")
        hidden = engine.output_dir / ".keep"
        hidden.write_bytes(b"")
        kept = engine.save("https://example.com/", b"home", "text/html")
        engine.add_redirect("https://example.com/old.html", "https://example.com/")

        deleted = engine.collect_garbage()

        assert deleted == [stale]
        assert not stale.exists()
        assert kept.exists()
        assert hidden.exists()
        assert (engine.output_dir / SENTINEL_NAME).exists()
        assert (engine.output_dir / "old.html").is_symlink()

    def test_sentinel(self, engine):
        sentinel = engine.write_sentinel()
        assert sentinel.name == SENTINEL_NAME
        assert sentinel.read_text(encoding="utf-8")
