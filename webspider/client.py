import enum
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Type

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import InvalidUrlError
from .events import ExceptionEvent, FetchEvent, RedirectEvent, ResponseEvent, classify_response
from .settings import DEFAULT_HEADERS, ClientSettings
from .urlqueue import BaseUrlQueue, UrlQueue
from .urls import is_http_url, normalize_url

LOGGER = logging.getLogger(__name__)

Listener = Callable[[FetchEvent], None]


def build_session(
    headers: Optional[Dict[str, str]] = None, retries: int = 3
) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=retries,
        redirect=0,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=32, pool_maxsize=32)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


class FetchScheduler:
    """Drain a URL queue over HTTP and dispatch one event per request.

    Redirects are never followed by the transport. Every finished request
    produces exactly one ``ResponseEvent``, ``RedirectEvent`` or
    ``ExceptionEvent``; listeners registered for that event type are called
    in registration order on the thread that called ``start()``. Listeners
    may call ``add_url()``; new URLs are picked up by the running loop.

    With ``concurrency > 1`` up to that many requests are in flight at once
    on a thread pool. Worker threads only perform the HTTP call, queue and
    listener state is touched by the coordinating loop alone.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        session: Optional[requests.Session] = None,
        url_queue: Optional[BaseUrlQueue] = None,
    ):
        self.settings = settings or ClientSettings()
        self.session = session or build_session(
            self.settings.headers, retries=self.settings.retries
        )
        self.url_queue = url_queue if url_queue is not None else UrlQueue()
        self.state = SchedulerState.IDLE
        self.in_flight = 0
        self.max_in_flight = 0
        self.requests_sent = 0
        self._cancel = threading.Event()
        self._listeners: Dict[Type, List[Listener]] = {
            ResponseEvent: [],
            RedirectEvent: [],
            ExceptionEvent: [],
        }

    # -------------------- Queue --------------------

    def add_url(self, url: str, force: bool = False) -> bool:
        url = str(url).strip()
        if not is_http_url(url):
            raise InvalidUrlError(url)
        try:
            url = normalize_url(url)
        except ValueError as e:
            raise InvalidUrlError(url, str(e)) from e
        added = self.url_queue.add_url(url, force)
        if self.state is SchedulerState.FINISHED and added:
            LOGGER.debug("crawl already finished, %s stays queued", url)
        return added

    # -------------------- Listeners --------------------

    def add_response_listener(self, listener: Listener) -> None:
        self._listeners[ResponseEvent].append(listener)

    def add_redirect_listener(self, listener: Listener) -> None:
        self._listeners[RedirectEvent].append(listener)

    def add_exception_listener(self, listener: Listener) -> None:
        self._listeners[ExceptionEvent].append(listener)

    def dispatch(self, event: FetchEvent) -> None:
        for listener in self._listeners[type(event)]:
            listener(event)

    # -------------------- Run --------------------

    @property
    def running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def stop(self) -> None:
        """Stop dispatching new requests; in-flight ones are still reported."""
        self._cancel.set()

    def start(self) -> None:
        if self.state is SchedulerState.RUNNING:
            return
        if self.state is SchedulerState.FINISHED:
            LOGGER.warning("crawl run already finished, create a new scheduler to crawl again")
            return
        self.state = SchedulerState.RUNNING
        LOGGER.debug("FetchScheduler: start running.")
        try:
            if self.settings.concurrency > 1:
                self._run_concurrent()
            else:
                self._run_serial()
        finally:
            self.state = SchedulerState.FINISHED
            LOGGER.debug("FetchScheduler: stop running.")

    def _request(self, url: str) -> requests.Response:
        # runs on worker threads: no shared state besides the session
        r = self.session.request(
            self.settings.method,
            url,
            allow_redirects=False,
            timeout=self.settings.timeout,
        )
        r.raise_for_status()
        return r

    def _failed(self, url: str, e: requests.RequestException) -> ExceptionEvent:
        LOGGER.debug("request for %s failed: %s", url, e)
        return ExceptionEvent(url, e, e.response)

    def _complete(self, url: str, fut: Future) -> FetchEvent:
        try:
            response = fut.result()
        except requests.RequestException as e:
            return self._failed(url, e)
        return classify_response(url, response)

    def _run_serial(self) -> None:
        LOGGER.debug("FetchScheduler: run in synchronous mode.")
        while not self.cancelled:
            url = self.url_queue.next()
            if url is None:
                break
            self.in_flight = self.max_in_flight = 1
            self.requests_sent += 1
            try:
                response = self._request(url)
            except requests.RequestException as e:
                event: FetchEvent = self._failed(url, e)
            else:
                event = classify_response(url, response)
            self.in_flight = 0
            self.dispatch(event)

    def _run_concurrent(self) -> None:
        limit = self.settings.concurrency
        LOGGER.debug("FetchScheduler: use %d concurrent requests.", limit)
        pending: Dict[Future, str] = {}
        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="webspider") as pool:
            while True:
                while not self.cancelled and len(pending) < limit:
                    url = self.url_queue.next()
                    if url is None:
                        break
                    pending[pool.submit(self._request, url)] = url
                    self.requests_sent += 1
                    self.in_flight = len(pending)
                    self.max_in_flight = max(self.max_in_flight, self.in_flight)
                    LOGGER.debug("Async request started for %s", url)
                if not pending:
                    break
                done, _ = wait(
                    list(pending),
                    timeout=self.settings.poll_interval,
                    return_when=FIRST_COMPLETED,
                )
                for fut in done:
                    url = pending.pop(fut)
                    self.in_flight = len(pending)
                    self.dispatch(self._complete(url, fut))
