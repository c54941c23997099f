import re
import string
from typing import Optional
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

DEFAULT_PORTS = {"http": "80", "https": "443"}
HTTP_SCHEMES = {"http", "https"}
NON_CRAWLABLE_PREFIXES = ("mailto:", "tel:", "data:", "javascript:", "blob:")

UNRESERVED_CHARS = frozenset(string.ascii_letters + string.digits + "-._~")
PERCENT_ENCODED_RE = re.compile(r"%([0-9A-Fa-f]{2})")


def _normalize_percent_encoding(s: str) -> str:
    # decode unreserved characters, upper-case every other escape
    def repl(m: re.Match) -> str:
        ch = chr(int(m.group(1), 16))
        if ch in UNRESERVED_CHARS:
            return ch
        return "%" + m.group(1).upper()

    return PERCENT_ENCODED_RE.sub(repl, s)


def _normalize_netloc(scheme: str, netloc: str) -> str:
    if not netloc:
        return netloc
    userinfo, at, hostport = netloc.rpartition("@")
    port = ""
    if hostport.startswith("["):
        end = hostport.find("]")
        host, rest = hostport[: end + 1], hostport[end + 1 :]
        if rest.startswith(":"):
            port = rest[1:]
    elif ":" in hostport:
        host, _, port = hostport.rpartition(":")
    else:
        host = hostport
    if port and port == DEFAULT_PORTS.get(scheme):
        port = ""
    return f"{userinfo}{at}{host.lower()}" + (f":{port}" if port else "")


def remove_dot_segments(path: str) -> str:
    if path in ("", "/"):
        return path
    results = []
    segment = ""
    for segment in path.split("/"):
        if segment == "..":
            if results:
                results.pop()
        elif segment != ".":
            results.append(segment)
    new_path = "/".join(results)
    if path.startswith("/") and not new_path.startswith("/"):
        new_path = "/" + new_path
    elif new_path and segment in (".", ".."):
        new_path += "/"
    return new_path


def normalize_url(u: str) -> str:
    """Return a canonical form of ``u`` without changing what it points to.

    Lower-cases scheme and host, drops default ports, canonicalizes
    percent-encoding, turns an empty http(s) path into ``/`` and removes dot
    segments. Relative references are normalized as far as possible.
    """
    p = urlsplit(u)
    scheme = p.scheme.lower()
    netloc = _normalize_netloc(scheme, p.netloc)
    path = _normalize_percent_encoding(p.path)
    if scheme in HTTP_SCHEMES and netloc and not path:
        path = "/"
    if scheme or netloc or path.startswith("/"):
        path = remove_dot_segments(path)
    query = _normalize_percent_encoding(p.query)
    fragment = _normalize_percent_encoding(p.fragment)
    return urlunsplit((scheme, netloc, path, query, fragment))


def is_absolute(u: str) -> bool:
    return bool(urlsplit(u).scheme)


def is_http_url(u: str) -> bool:
    p = urlsplit(u)
    return p.scheme.lower() in HTTP_SCHEMES and bool(p.netloc)


def resolve_url(base: str, ref: str) -> str:
    return urljoin(base, ref)


def strip_fragment(u: str) -> str:
    return urldefrag(u).url if "#" in u else u


def is_same_document_reference(u: str, base: Optional[str]) -> bool:
    if base:
        a, b = urlsplit(resolve_url(base, u)), urlsplit(base)
        return (a.scheme, a.netloc, a.path, a.query) == (
            b.scheme,
            b.netloc,
            b.path,
            b.query,
        )
    p = urlsplit(u)
    return not (p.scheme or p.netloc or p.path or p.query)


def is_equivalent(a: str, b: str) -> bool:
    return normalize_url(a) == normalize_url(b)


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    return not u.strip().lower().startswith(NON_CRAWLABLE_PREFIXES)


def split_content_type(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.split(";")[0].strip().lower()
