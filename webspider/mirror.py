import logging
from typing import Callable, List, Optional
from urllib.parse import urlsplit, urlunsplit

from .client import FetchScheduler
from .discovery import FoundUrl
from .errors import InvalidUrlError, MirrorWriteError
from .events import RedirectEvent, ResponseEvent
from .save_engine import MirrorSaveEngine
from .settings import DiscoveryOptions, MirrorSettings, SpiderSettings
from .spider import AbstractSpider

LOGGER = logging.getLogger(__name__)

BodySaveListener = Callable[[str, bytes], bytes]


class Webmirror(AbstractSpider):
    """Mirror one host into a directory.

    Only URLs on the host of the start URL are fetched. After the run, files
    below the output directory that were not produced by it are deleted.
    """

    def __init__(
        self,
        settings: MirrorSettings,
        client: FetchScheduler,
        spider_settings: Optional[SpiderSettings] = None,
    ):
        super().__init__(client, spider_settings)
        self.mirror_settings = settings
        self.additional_urls: List[str] = list(settings.additional_urls)
        self.body_save_listeners: List[BodySaveListener] = []
        self.hostname = ""
        self.save_engine = MirrorSaveEngine(
            settings.output_dir, track_slash_redirects=settings.track_slash_redirects
        )
        self.discovery_options = DiscoveryOptions(
            extract_href=True,
            extract_src=True,
            look_in_css=True,
            rewrite_urls=settings.rewrite_links,
        )
        if settings.rewrite_links:
            self.add_url_rewriter(self.rewrite_link)

    @property
    def output_dir(self):
        return self.save_engine.output_dir

    def add_additional_url(self, url: str) -> None:
        self.additional_urls.append(url)

    def add_body_save_listener(self, listener: BodySaveListener) -> None:
        """``listener(content_type, body)`` returns the body to save."""
        self.body_save_listeners.append(listener)

    def crawl(self, start_url: str) -> None:
        self.hostname = (urlsplit(start_url).hostname or "").lower()
        self.save_engine.hostname = self.hostname
        self.url_filter_fetch.add_allowed_host(self.hostname)
        self.client.add_url(start_url)
        for url in self.additional_urls:
            try:
                self.client.add_url(url)
            except InvalidUrlError as e:
                LOGGER.warning("additional URL %s could not be added to spider: %s", url, e)

        self.save_engine.write_sentinel()
        self.client.start()

        if self.client.cancelled:
            LOGGER.warning("crawl was stopped, stale files are kept")
            return
        self.save_engine.collect_garbage()

    def handle_response_event(self, event: ResponseEvent) -> None:
        body = self.work_on_response(
            event.request_url, event.content_type, event.body, self.discovery_options
        )
        for listener in self.body_save_listeners:
            body = listener(event.content_type, body)
        try:
            self.save_engine.save(
                event.request_url,
                body,
                event.content_type,
                event.response.headers.get("Last-Modified"),
            )
        except MirrorWriteError as e:
            LOGGER.error("inconsistent mirror, could not save %s: %s", event.request_url, e)

    def handle_redirect_event(self, event: RedirectEvent) -> Optional[FoundUrl]:
        found = super().handle_redirect_event(event)
        if found is not None and found.url:
            self.save_engine.add_redirect(event.request_url, found.url)
        return found

    def rewrite_link(self, accepted: bool, url: str, resolved: Optional[str]) -> str:
        # same-host links become host relative so the mirror can be served anywhere
        if not accepted or not resolved:
            return url
        p = urlsplit(resolved)
        if (p.hostname or "").lower() != self.hostname:
            return url
        fragment = urlsplit(url).fragment
        return urlunsplit(("", "", p.path, p.query, fragment))
