import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, FeatureNotFound

from .errors import InvalidUrlError
from .settings import DiscoveryOptions, SpiderSettings
from .urlfilter import UrlFilter
from .urls import (
    can_fetch_url,
    is_absolute,
    is_equivalent,
    is_same_document_reference,
    normalize_url,
    resolve_url,
    strip_fragment,
)

LOGGER = logging.getLogger(__name__)

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")

UrlNormalizer = Callable[[str], str]
UrlRewriter = Callable[[bool, str, Optional[str]], str]
RejectedUrlHandler = Callable[[str, str, str], None]


class FoundUrl(NamedTuple):
    accepted: bool
    raw: str
    # absolute form, None when the raw value was skipped before resolution
    url: Optional[str]


@dataclass
class DiscoveryResult:
    body: bytes
    found: List[FoundUrl] = field(default_factory=list)


# -------------------- HTML utils --------------------


def bs4_parse(html) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"].strip())
    return fallback


def serialize_html(soup: BeautifulSoup) -> str:
    return soup.decode(formatter="html")


def link_text(tag) -> str:
    return WS_RE.sub(" ", tag.get_text(" ")).strip()


def parse_srcset(v: str) -> List[Tuple[str, str]]:
    """Split a srcset value into (url, descriptor) candidates."""
    candidates: List[Tuple[str, str]] = []
    if not v:
        return candidates
    for cand in SRCSET_SPLIT_RE.split(v.strip()):
        if not cand:
            continue
        parts = WS_RE.split(cand.strip(), maxsplit=1)
        candidates.append((parts[0], parts[1] if len(parts) > 1 else ""))
    return candidates


# -------------------- Discoverer --------------------


class LinkDiscoverer:
    """Find URLs in fetched documents and feed accepted ones to the scheduler.

    Every URL found on a page is resolved against that page and recorded in
    the referer index before the fetch filter decides whether it is queued.
    Documents are only scanned when the link-extraction filter accepts the
    URL they were fetched from.
    """

    def __init__(
        self,
        scheduler,
        fetch_filter: Optional[UrlFilter] = None,
        link_extract_filter: Optional[UrlFilter] = None,
        settings: Optional[SpiderSettings] = None,
        on_rejected: Optional[RejectedUrlHandler] = None,
    ):
        self.scheduler = scheduler
        self.fetch_filter = fetch_filter or UrlFilter()
        self.link_extract_filter = link_extract_filter or UrlFilter()
        self.settings = settings or SpiderSettings()
        self.on_rejected = on_rejected or self.handle_rejected_url
        # found url -> {referring page -> raw attribute value}
        self.referers: Dict[str, Dict[str, str]] = {}
        # found url -> {referring page -> link text}
        self.link_texts: Dict[str, Dict[str, str]] = {}
        self.url_normalizers: List[UrlNormalizer] = []
        self.url_rewriters: List[UrlRewriter] = []

    def add_url_normalizer(self, normalizer: UrlNormalizer) -> None:
        self.url_normalizers.append(normalizer)

    def add_url_rewriter(self, rewriter: UrlRewriter) -> None:
        self.url_rewriters.append(rewriter)

    # -------------------- Referer index --------------------

    @staticmethod
    def _key(url: str) -> str:
        try:
            return normalize_url(url.strip())
        except ValueError:
            return url

    def get_referring_pages(self, url: str) -> List[str]:
        return list(self.referers.get(self._key(url), {}))

    def get_link_texts(self, url: str) -> Dict[str, str]:
        return dict(self.link_texts.get(self._key(url), {}))

    def inherit_referers(self, from_url: str, to_url: str) -> None:
        from_key, to_key = self._key(from_url), self._key(to_url)
        for index in (self.referers, self.link_texts):
            entries = index.get(from_key)
            if entries:
                target = index.setdefault(to_key, {})
                for page, value in entries.items():
                    target.setdefault(page, value)

    # -------------------- Scanning --------------------

    def discover_links(
        self,
        request_url: str,
        content_type: str,
        body: bytes,
        options: Optional[DiscoveryOptions] = None,
    ) -> DiscoveryResult:
        options = options or DiscoveryOptions()
        if not self.link_extract_filter.filter(request_url):
            LOGGER.debug("UrlFilter Linkextract: not looking for more links in %s", request_url)
            return DiscoveryResult(body)
        if content_type == "text/html":
            LOGGER.debug("HTML document: looking for more links in %s", request_url)
            return self._scan_html(request_url, body, options)
        if options.look_in_css and content_type == "text/css":
            return self._scan_css(request_url, body, options)
        return DiscoveryResult(body)

    def _scan_html(self, request_url: str, body: bytes, options: DiscoveryOptions) -> DiscoveryResult:
        soup = bs4_parse(body)
        base = effective_base_url(soup, request_url)
        result = DiscoveryResult(body)

        if options.extract_href:
            links = soup.select("[href]")
            LOGGER.debug("Found number of HREFs: %d", len(links))
            for tag in links:
                found = self.handle_found_url(
                    tag.get("href") or "", request_url, link_text(tag), base_url=base
                )
                result.found.append(found)
                if options.rewrite_urls:
                    tag["href"] = self.rewrite_url(found)

        if options.extract_src:
            links = soup.select("[src]")
            LOGGER.debug("Found number of SRCs: %d", len(links))
            for tag in links:
                found = self.handle_found_url(tag.get("src") or "", request_url, base_url=base)
                result.found.append(found)
                if options.rewrite_urls:
                    tag["src"] = self.rewrite_url(found)

            for tag in soup.select("img[srcset], source[srcset]"):
                parts = []
                for u, desc in parse_srcset(tag.get("srcset", "")):
                    found = self.handle_found_url(u, request_url, base_url=base)
                    result.found.append(found)
                    if options.rewrite_urls:
                        u = self.rewrite_url(found)
                    parts.append(f"{u} {desc}".strip())
                if options.rewrite_urls:
                    tag["srcset"] = ", ".join(parts)

        if options.rewrite_urls:
            result.body = serialize_html(soup).encode("utf-8")
        return result

    def _scan_css(self, request_url: str, body: bytes, options: DiscoveryOptions) -> DiscoveryResult:
        # surrogateescape keeps undecodable bytes intact for rewriting
        css = body.decode("utf-8", errors="surrogateescape")
        result = DiscoveryResult(body)

        def repl(m: re.Match) -> str:
            q = m.group(1) or ""
            u = m.group(2).strip()
            if u.lower().startswith("data:"):
                return m.group(0)
            found = self.handle_found_url(u, request_url)
            result.found.append(found)
            if options.rewrite_urls:
                return f"url({q}{self.rewrite_url(found)}{q})"
            return m.group(0)

        new_css = CSS_URL_RE.sub(repl, css)
        LOGGER.debug("Found CSS urls: %d", len(result.found))
        if options.rewrite_urls:
            result.body = new_css.encode("utf-8", errors="surrogateescape")
        return result

    # -------------------- Found urls --------------------

    def handle_found_url(
        self,
        url: str,
        referring_url: str,
        linktext: str = "",
        base_url: Optional[str] = None,
    ) -> FoundUrl:
        raw = url.strip()
        if not raw or raw == referring_url:
            return FoundUrl(False, raw, None)
        if not can_fetch_url(raw):
            LOGGER.debug("not crawlable: %s", raw)
            return FoundUrl(False, raw, None)

        try:
            found = normalize_url(raw)
            if self.settings.discard_fragment:
                found = strip_fragment(found)
            referer = normalize_url(referring_url) if referring_url else ""
            if not is_absolute(found):
                found = resolve_url(normalize_url(base_url) if base_url else referer, found)
            for normalizer in self.url_normalizers:
                found = normalizer(found)
            found = normalize_url(found)
        except ValueError as e:
            LOGGER.warning("URL %s found on %s could not be resolved: %s", raw, referring_url, e)
            return FoundUrl(False, raw, None)

        if is_same_document_reference(found, referer) or (
            referer and is_equivalent(found, referer)
        ):
            # self references are not followed but count as accepted for rewriting
            return FoundUrl(True, raw, found)

        if referring_url:
            self.referers.setdefault(found, {})[referring_url] = raw
            if linktext:
                self.link_texts.setdefault(found, {})[referring_url] = linktext

        if not self.fetch_filter.filter(found):
            self.on_rejected(found, referring_url, linktext)
            return FoundUrl(False, raw, found)

        LOGGER.debug("URL will be added to spider: %s", found)
        try:
            self.scheduler.add_url(found)
        except InvalidUrlError as e:
            LOGGER.warning("URL %s could not be added to spider: %s", found, e)
            return FoundUrl(False, raw, found)
        return FoundUrl(True, raw, found)

    def handle_rejected_url(self, url: str, referring_url: str, linktext: str = "") -> None:
        LOGGER.debug("REJECTED by UrlFilter: %s", url)

    def rewrite_url(self, found: FoundUrl) -> str:
        url = found.raw
        for rewriter in self.url_rewriters:
            url = rewriter(found.accepted, url, found.url)
        return url
