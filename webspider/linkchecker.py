import logging
from typing import Dict, List, Optional
from urllib.parse import urlsplit

import requests

from .client import FetchScheduler
from .events import ExceptionEvent, ResponseEvent
from .settings import SpiderSettings
from .spider import AbstractSpider

LOGGER = logging.getLogger(__name__)


class Linkchecker(AbstractSpider):
    """Check a site for broken links.

    Every found URL is fetched, but only pages on the start host are
    scanned for further links. URLs answering 404 are collected and can be
    reported per referring page after the run.
    """

    def __init__(self, client: FetchScheduler, settings: Optional[SpiderSettings] = None):
        super().__init__(client, settings)
        self.broken_links: List[str] = []

    def crawl(self, start_url: str) -> None:
        self.url_filter_link_extract.add_allowed_host(urlsplit(start_url).hostname or "")
        super().crawl(start_url)

    def handle_exception_event(self, event: ExceptionEvent) -> None:
        url = event.request_url
        if isinstance(event.exception, requests.HTTPError) and event.status_code == 404:
            if url not in self.broken_links:
                self.broken_links.append(url)
            LOGGER.error(
                "Error %s on URL %s. Referring pages: %s",
                event.status_code,
                url,
                ", ".join(self.get_referring_pages(url)),
            )
        else:
            LOGGER.error("Error on URL %s: %s", url, event.exception)

    def handle_response_event(self, event: ResponseEvent) -> None:
        self.work_on_response(event.request_url, event.content_type, event.body)

    def report_broken_links(self) -> Dict[str, List[str]]:
        pages: Dict[str, List[str]] = {}
        for link in self.broken_links:
            for page in self.get_referring_pages(link):
                pages.setdefault(page, []).append(link)
        for page, links in pages.items():
            LOGGER.warning("Broken links on page %s: %s", page, ", ".join(links))
        return pages
