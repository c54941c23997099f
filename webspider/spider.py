import abc
import logging
from typing import Dict, List, Optional

import requests

from .client import FetchScheduler
from .discovery import FoundUrl, LinkDiscoverer, UrlNormalizer, UrlRewriter
from .events import ExceptionEvent, RedirectEvent, ResponseEvent
from .settings import DiscoveryOptions, SpiderSettings
from .urlfilter import UrlFilter
from .urls import is_absolute, normalize_url, resolve_url

LOGGER = logging.getLogger(__name__)


class AbstractSpider(abc.ABC):
    """Base class for crawl consumers.

    Registers itself as listener for all three event types of ``client``.
    Subclasses implement ``handle_response_event`` and usually call
    ``work_on_response`` there to discover more URLs. One instance holds the
    state of one crawl run.
    """

    def __init__(self, client: FetchScheduler, settings: Optional[SpiderSettings] = None):
        self.client = client
        self.settings = settings or SpiderSettings()
        self.discoverer = LinkDiscoverer(
            client, settings=self.settings, on_rejected=self.handle_rejected_url
        )
        client.add_response_listener(self.handle_response_event)
        client.add_exception_listener(self.handle_exception_event)
        client.add_redirect_listener(self.handle_redirect_event)

    def crawl(self, start_url: str) -> None:
        self.client.add_url(start_url)
        self.client.start()

    # -------------------- Filters --------------------

    @property
    def url_filter_fetch(self) -> UrlFilter:
        """URLs rejected by this filter are not fetched."""
        return self.discoverer.fetch_filter

    @url_filter_fetch.setter
    def url_filter_fetch(self, value: UrlFilter) -> None:
        self.discoverer.fetch_filter = value

    @property
    def url_filter_link_extract(self) -> UrlFilter:
        """Documents rejected by this filter are fetched but not scanned for links."""
        return self.discoverer.link_extract_filter

    @url_filter_link_extract.setter
    def url_filter_link_extract(self, value: UrlFilter) -> None:
        self.discoverer.link_extract_filter = value

    # -------------------- Referers --------------------

    def get_referring_pages(self, url: str) -> List[str]:
        return self.discoverer.get_referring_pages(url)

    def get_link_texts(self, url: str) -> Dict[str, str]:
        return self.discoverer.get_link_texts(url)

    def add_url_normalizer(self, normalizer: UrlNormalizer) -> None:
        self.discoverer.add_url_normalizer(normalizer)

    def add_url_rewriter(self, rewriter: UrlRewriter) -> None:
        self.discoverer.add_url_rewriter(rewriter)

    # -------------------- Event handlers --------------------

    @abc.abstractmethod
    def handle_response_event(self, event: ResponseEvent) -> None:
        raise NotImplementedError

    def handle_exception_event(self, event: ExceptionEvent) -> None:
        e = event.exception
        status = event.status_code
        if isinstance(e, requests.HTTPError) and status is not None and 400 <= status < 500:
            LOGGER.error(
                "Error %s on URL %s. Referring pages: %s",
                status,
                event.request_url,
                ", ".join(self.get_referring_pages(event.request_url)),
            )
        else:
            LOGGER.error("Error on URL %s: %s", event.request_url, e)

    def resolve_redirect(self, event: RedirectEvent) -> Optional[str]:
        location = event.redirect_url.strip()
        if not location:
            LOGGER.warning("URL %s redirects without a Location header", event.request_url)
            return None
        try:
            target = normalize_url(location)
            if not is_absolute(target):
                target = normalize_url(resolve_url(normalize_url(event.request_url), target))
        except ValueError as e:
            LOGGER.warning("invalid redirect from %s to %r: %s", event.request_url, location, e)
            return None
        return target

    def handle_redirect_event(self, event: RedirectEvent) -> Optional[FoundUrl]:
        target = self.resolve_redirect(event)
        if target is None:
            return None
        LOGGER.info("URL %s redirects to %s", event.request_url, target)
        # pages linking to the request url also link to the redirect target
        self.discoverer.inherit_referers(event.request_url, target)
        return self.discoverer.handle_found_url(target, "")

    def handle_rejected_url(self, url: str, referring_url: str, linktext: str = "") -> None:
        LOGGER.debug("REJECTED by UrlFilter: %s", url)

    # -------------------- Discovery --------------------

    def work_on_response(
        self,
        request_url: str,
        content_type: str,
        body: bytes,
        options: Optional[DiscoveryOptions] = None,
    ) -> bytes:
        """Look for more URLs in ``body`` and return it, rewritten if asked to."""
        return self.discoverer.discover_links(request_url, content_type, body, options).body
