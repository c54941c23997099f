from dataclasses import dataclass, field
from typing import Optional, Union

import requests

from .urls import split_content_type

REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})


@dataclass(frozen=True)
class ResponseEvent:
    request_url: str
    response: requests.Response
    content_type: str = field(init=False)

    def __post_init__(self) -> None:
        # charset and other parameters are dropped
        object.__setattr__(
            self, "content_type", split_content_type(self.response.headers.get("Content-Type"))
        )

    @property
    def body(self) -> bytes:
        return self.response.content


@dataclass(frozen=True)
class RedirectEvent:
    request_url: str
    redirect_url: str
    status_code: int
    response: requests.Response


@dataclass(frozen=True)
class ExceptionEvent:
    request_url: str
    exception: requests.RequestException
    response: Optional[requests.Response] = None

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


FetchEvent = Union[ResponseEvent, RedirectEvent, ExceptionEvent]


def classify_response(request_url: str, response: requests.Response) -> FetchEvent:
    if response.status_code in REDIRECT_CODES:
        # Location stays unresolved, listeners resolve it against request_url
        return RedirectEvent(
            request_url,
            response.headers.get("Location", ""),
            response.status_code,
            response,
        )
    return ResponseEvent(request_url, response)
