import abc
from urllib.parse import urlsplit

import requests

from .events import ResponseEvent
from .spider import AbstractSpider


class Indexer(AbstractSpider):
    """Base class for a search indexer restricted to the start host.

    Additional hosts can be allowed through ``url_filter_fetch``.
    """

    start_host = ""

    def crawl(self, start_url: str) -> None:
        self.start_host = (urlsplit(start_url).hostname or "").lower()
        self.url_filter_fetch.add_allowed_host(self.start_host)
        super().crawl(start_url)

    def handle_response_event(self, event: ResponseEvent) -> None:
        self.index(event.request_url, event.content_type, event.response)
        self.work_on_response(event.request_url, event.content_type, event.body)

    @abc.abstractmethod
    def index(self, request_url: str, content_type: str, response: requests.Response) -> None:
        """Store the content of ``response``; ``response.content`` holds the body."""
