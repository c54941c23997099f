"""Tests for webspider.events."""

from __future__ import annotations

import dataclasses

import pytest

from webspider.events import RedirectEvent, ResponseEvent, classify_response

from .conftest import make_response


class TestClassify:
    @pytest.mark.parametrize("status", [301, 302, 303, 307, 308])
    def test_redirects(self, status):
        r = make_response("https://example.com/a", status, {"Location": "/b"})
        event = classify_response("https://example.com/a", r)
        assert isinstance(event, RedirectEvent)
        assert event.redirect_url == "/b"
        assert event.status_code == status

    @pytest.mark.parametrize("status", [200, 204, 300, 304])
    def test_responses(self, status):
        r = make_response("https://example.com/a", status, {"Content-Type": "text/html; charset=UTF-8"})
        event = classify_response("https://example.com/a", r)
        assert isinstance(event, ResponseEvent)
        assert event.content_type == "text/html"

    def test_events_are_immutable(self):
        r = make_response("https://example.com/a", 200, {}, b"x")
        event = ResponseEvent("https://example.com/a", r)
        assert event.body == b"x"
        assert event.content_type == ""
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.request_url = "other"
