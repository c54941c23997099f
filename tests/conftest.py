"""Shared fixtures: an in-process HTTP transport returning real responses."""

from __future__ import annotations

import threading
import time
from http import HTTPStatus
from typing import Dict, List, Optional, Tuple, Union

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from webspider.client import FetchScheduler
from webspider.settings import ClientSettings

Route = Union[Tuple[int, Dict[str, str], bytes], Exception]


def make_response(
    url: str,
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r.headers = CaseInsensitiveDict(headers or {})
    r._content = body
    r.url = url
    r.reason = HTTPStatus(status).phrase
    r.encoding = "utf-8"
    return r


class FakeSession:
    """Stands in for ``requests.Session``; unknown URLs fail to connect."""

    def __init__(self, delay: float = 0.0):
        self.routes: Dict[str, Route] = {}
        self.delay = delay
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def add(
        self,
        url: str,
        body: Union[str, bytes] = b"",
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        h = {"Content-Type": content_type}
        h.update(headers or {})
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, h, body)

    def redirect(self, url: str, location: str, status: int = 301) -> None:
        self.routes[url] = (status, {"Location": location}, b"")

    def fail(self, url: str, exc: Exception) -> None:
        self.routes[url] = exc

    def request(self, method, url, allow_redirects=True, timeout=None):
        assert allow_redirects is False
        with self._lock:
            self.calls.append(url)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            route = self.routes.get(url)
            if route is None:
                raise requests.ConnectionError(f"no route to {url}")
            if isinstance(route, Exception):
                raise route
            status, headers, body = route
            return make_response(url, status, headers, body)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(session: FakeSession) -> FetchScheduler:
    return FetchScheduler(ClientSettings(concurrency=1), session=session)


@pytest.fixture
def concurrent_client(session: FakeSession) -> FetchScheduler:
    return FetchScheduler(
        ClientSettings(concurrency=4, poll_interval=0.01), session=session
    )
