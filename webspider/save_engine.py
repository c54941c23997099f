import hashlib
import logging
import os
import posixpath
import tempfile
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union
from urllib.parse import urlsplit

from .errors import MirrorWriteError

LOGGER = logging.getLogger(__name__)

SENTINEL_NAME = ".archive"


# -------------------- Utils --------------------


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def md5_bytes(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def md5_file(p: Path) -> str:
    h = hashlib.md5()
    with open(p, "rb") as f:
        for chunk in iter(lambda: f.read(64 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def parse_http_date(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError):
        LOGGER.debug("unparseable Last-Modified header: %r", value)
        return None
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def remove_tree(path: Path) -> None:
    for dirpath, dirnames, filenames in os.walk(path, topdown=False):
        for name in filenames:
            os.unlink(os.path.join(dirpath, name))
        for name in dirnames:
            sub = os.path.join(dirpath, name)
            if os.path.islink(sub):
                os.unlink(sub)
            else:
                os.rmdir(sub)
    os.rmdir(path)


def compute_filename_for_url(url: str, content_type: Optional[str] = None) -> str:
    """Map ``url`` to a path below the mirror root.

    ``/dir/`` becomes ``/dir/index.html``; an HTML document whose last path
    segment has no extension becomes ``<path>/index.html``; a query string is
    kept verbatim as ``?query`` suffix.
    """
    p = urlsplit(url)
    path = p.path or "/"
    filename = posixpath.basename(path)
    if path.endswith("/"):
        path += "index.html"
    elif "." not in filename and content_type == "text/html":
        path += "/index.html"
    if p.query:
        path = f"{path}?{p.query}"
    return path


def is_slash_redirect(request_url: str, target_url: str) -> bool:
    r, t = urlsplit(request_url), urlsplit(target_url)
    return (r.netloc, r.query) == (t.netloc, t.query) and t.path == r.path + "/"


# -------------------- Engine --------------------


class MirrorSaveEngine:
    """Write fetched documents below ``output_dir`` and keep the tree tidy.

    Identical bodies share one inode (hard links), redirected URLs become
    relative symlinks to the file of their target, unchanged files are not
    rewritten and ``collect_garbage`` removes whatever the current run did
    not produce. State is scoped to one crawl run.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        hostname: str = "",
        track_slash_redirects: bool = False,
    ):
        self.output_dir = Path(output_dir).resolve()
        self.hostname = hostname.lower()
        self.track_slash_redirects = track_slash_redirects
        # md5 of body -> paths that received it, in order
        self.hashes: Dict[str, List[Path]] = {}
        # redirect target url -> urls redirecting to it
        self.redirect_aliases: Dict[str, List[str]] = {}
        # request url -> redirect target url
        self.redirect_targets: Dict[str, str] = {}
        # url -> (path, content type) for everything saved in this run
        self.saved: Dict[str, Tuple[Path, str]] = {}
        self.files_seen: Set[Path] = set()
        self.files_written = 0
        self.files_linked = 0

    def path_for(self, url: str, content_type: Optional[str] = None) -> Path:
        filename = compute_filename_for_url(url, content_type)
        path = Path(os.path.normpath(os.path.join(self.output_dir, filename.lstrip("/"))))
        if os.path.commonpath([self.output_dir, path]) != str(self.output_dir):
            raise MirrorWriteError(path, f"{url} maps outside of {self.output_dir}")
        return path

    def write_sentinel(self) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        sentinel = self.output_dir / SENTINEL_NAME
        sentinel.write_text(datetime.now().strftime("%Y-%m-%d %H:%M"), encoding="utf-8")
        return sentinel

    # -------------------- Redirects --------------------

    def add_redirect(self, request_url: str, target_url: str) -> bool:
        if self.hostname and (urlsplit(target_url).hostname or "") != self.hostname:
            return False
        if not self.track_slash_redirects and is_slash_redirect(request_url, target_url):
            LOGGER.debug("trailing slash redirect %s not tracked as alias", request_url)
            return False
        # b -> c seen before a -> b: a is an alias of c
        seen = {request_url}
        while target_url in self.redirect_targets and target_url not in seen:
            seen.add(target_url)
            target_url = self.redirect_targets[target_url]
        if target_url == request_url:
            LOGGER.warning("redirect loop at %s not tracked as alias", request_url)
            return False
        self.redirect_targets[request_url] = target_url
        aliases = self.redirect_aliases.setdefault(target_url, [])
        # a -> b followed by b -> c makes a an alias of c as well
        for alias in [request_url] + self.redirect_aliases.get(request_url, []):
            if alias != target_url and alias not in aliases:
                aliases.append(alias)
        if target_url in self.saved:
            path, content_type = self.saved[target_url]
            self.link_aliases(target_url, path, content_type)
        return True

    def link_aliases(self, url: str, path: Path, content_type: str = "") -> None:
        for alias in self.redirect_aliases.get(url, []):
            try:
                alias_path = self.path_for(alias, content_type)
            except MirrorWriteError as e:
                LOGGER.warning("alias skipped: %s", e)
                continue
            if alias_path == path or alias_path in path.parents:
                LOGGER.debug("alias %s would contain %s, not linked", alias_path, path)
                continue
            self.files_seen.add(alias_path)
            rel = os.path.relpath(path, alias_path.parent)
            try:
                if alias_path.is_symlink():
                    if os.readlink(alias_path) == rel:
                        continue
                    alias_path.unlink()
                elif alias_path.is_dir():
                    remove_tree(alias_path)
                elif alias_path.exists():
                    alias_path.unlink()
                ensure_parent_dir(alias_path)
                os.symlink(rel, alias_path)
            except OSError as e:
                LOGGER.warning("inconsistent mirror: symlink %s -> %s failed: %s", alias_path, rel, e)
                continue
            LOGGER.info("%s created as symlink to %s because of redirect", alias_path, path)

    # -------------------- Save --------------------

    def needs_save(self, path: Path, body: bytes, checksum: str, last_modified: Optional[float]) -> bool:
        if path.is_symlink() or not path.is_file():
            return True
        st = path.stat()
        if last_modified is not None and last_modified <= st.st_mtime and st.st_size == len(body):
            LOGGER.debug("%s not saved because it is not older than Last-Modified", path)
            return False
        if st.st_size == len(body) and md5_file(path) == checksum:
            LOGGER.debug("%s not saved because checksum has not changed", path)
            return False
        return True

    def save(
        self,
        url: str,
        body: bytes,
        content_type: str = "",
        last_modified: Optional[str] = None,
    ) -> Path:
        path = self.path_for(url, content_type)
        checksum = md5_bytes(body)
        paths = self.hashes.setdefault(checksum, [])
        if path not in paths:
            paths.append(path)
        mtime = parse_http_date(last_modified)

        try:
            if self.needs_save(path, body, checksum, mtime):
                first = paths[0]
                if first != path and self._is_copy_of(first, body, checksum):
                    self._link(first, path)
                    LOGGER.info("%s created as link to %s because of identical content", path, first)
                else:
                    self._write(path, body, checksum)
                    LOGGER.info("File saved: %s", path)
                if mtime is not None:
                    os.utime(path, (mtime, mtime))
            else:
                LOGGER.info("File already exists: %s", path)
        except MirrorWriteError:
            raise
        except OSError as e:
            raise MirrorWriteError(path, str(e)) from e
        finally:
            # an existing file is kept even when refreshing it failed
            self.files_seen.add(path)

        self.saved[url] = (path, content_type)
        self.link_aliases(url, path, content_type)
        return path

    @staticmethod
    def _is_copy_of(first: Path, body: bytes, checksum: str) -> bool:
        # first may have been overwritten by another url mapping to the same path
        if first.is_symlink() or not first.is_file() or first.stat().st_size != len(body):
            return False
        return md5_file(first) == checksum

    def _write(self, path: Path, body: bytes, checksum: str) -> None:
        ensure_parent_dir(path)
        # hidden temp name so an interrupted write is never garbage collected as content
        fd, tmp = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                written = f.write(body)
            if written != len(body):
                raise MirrorWriteError(path, f"wrote {written} of {len(body)} bytes")
            if md5_file(Path(tmp)) != checksum:
                raise MirrorWriteError(path, "checksum mismatch after write")
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self.files_written += 1

    def _link(self, first: Path, path: Path) -> None:
        ensure_parent_dir(path)
        tmp = path.with_name(f".{path.name}.link")
        if tmp.exists() or tmp.is_symlink():
            tmp.unlink()
        os.link(first, tmp)
        os.replace(tmp, path)
        self.files_linked += 1

    # -------------------- Garbage collection --------------------

    def collect_garbage(self) -> List[Path]:
        deleted: List[Path] = []
        for dirpath, _, filenames in os.walk(self.output_dir):
            for name in filenames:
                if name.startswith("."):
                    continue
                p = Path(dirpath) / name
                if p in self.files_seen:
                    continue
                try:
                    p.unlink()
                except OSError as e:
                    LOGGER.warning("could not delete stale file %s: %s", p, e)
                    continue
                LOGGER.info("file %s does not exist anymore, deleted.", p)
                deleted.append(p)
        return deleted
