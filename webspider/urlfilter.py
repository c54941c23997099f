import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Set, Tuple
from urllib.parse import parse_qsl, urlsplit

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

# "tag[]" and "tag[0]" are both values of the "tag" parameter
ARRAY_PARAM_RE = re.compile(r"\[[^\]]*\]$")


def query_params(query: str) -> Dict[str, List[str]]:
    params: Dict[str, List[str]] = {}
    for k, v in parse_qsl(query, keep_blank_values=True):
        params.setdefault(ARRAY_PARAM_RE.sub("", k), []).append(v)
    return params


class UrlFilter:
    """Decide whether a URL may be processed.

    A URL passes when its scheme is allowed, its host is allowed (an empty
    host list allows every host), no path pattern matches, no query rule
    matches and every filter function returns a truthy value. The checks
    run in that order and stop at the first failure.
    """

    def __init__(self) -> None:
        self.allowed_schemes: Set[str] = {"http", "https"}
        self.allowed_hosts: List[str] = []
        self.reject_paths: List[Pattern[str]] = []
        self.reject_params: List[Tuple[str, Optional[str]]] = []
        self.filter_functions: List[Callable[[str], bool]] = []

    def set_allowed_schemes(self, schemes: Iterable[str] = ("http", "https")) -> "UrlFilter":
        self.allowed_schemes = {s.lower() for s in schemes}
        return self

    def add_allowed_host(self, hostname: str) -> "UrlFilter":
        host = hostname.lower()
        if host not in self.allowed_hosts:
            self.allowed_hosts.append(host)
        return self

    def reject_path_by_regex(self, regex: str) -> "UrlFilter":
        try:
            self.reject_paths.append(re.compile(regex))
        except re.error as e:
            raise ConfigurationError(f"invalid path pattern {regex!r}: {e}") from e
        return self

    def reject_by_queryparam(self, name: str, value: Optional[str] = None) -> "UrlFilter":
        # value None rejects any occurrence of the parameter
        if not name:
            raise ConfigurationError("query parameter name must not be empty")
        self.reject_params.append((ARRAY_PARAM_RE.sub("", name), value))
        return self

    def add_filter_function(self, func: Callable[[str], bool]) -> "UrlFilter":
        if not callable(func):
            raise ConfigurationError(f"filter function is not callable: {func!r}")
        self.filter_functions.append(func)
        return self

    def filter(self, url: str) -> bool:
        try:
            p = urlsplit(str(url))
            host = (p.hostname or "").lower()
        except ValueError:
            LOGGER.debug("unparseable url rejected: %s", url)
            return False
        return (
            self._filter_scheme(p.scheme.lower())
            and self._filter_host(host)
            and self._filter_path(p.path)
            and self._filter_query(p.query)
            and self._filter_functions(str(url))
        )

    __call__ = filter

    def _filter_scheme(self, scheme: str) -> bool:
        return scheme in self.allowed_schemes

    def _filter_host(self, host: str) -> bool:
        if not self.allowed_hosts:
            return True
        return host in self.allowed_hosts

    def _filter_path(self, path: str) -> bool:
        return not any(r.search(path) for r in self.reject_paths)

    def _filter_query(self, query: str) -> bool:
        if not self.reject_params or not query:
            return True
        params = query_params(query)
        for name, value in self.reject_params:
            values = params.get(name)
            if values is None:
                continue
            if value is None or value in values:
                return False
        return True

    def _filter_functions(self, url: str) -> bool:
        for func in self.filter_functions:
            if not func(url):
                return False
        return True
