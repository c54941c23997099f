from .client import FetchScheduler, SchedulerState, build_session
from .discovery import FoundUrl, LinkDiscoverer
from .errors import ConfigurationError, InvalidUrlError, MirrorWriteError, SpiderError
from .events import ExceptionEvent, RedirectEvent, ResponseEvent
from .indexer import Indexer
from .linkchecker import Linkchecker
from .mirror import Webmirror
from .save_engine import MirrorSaveEngine, compute_filename_for_url
from .settings import ClientSettings, DiscoveryOptions, MirrorSettings, SpiderSettings
from .spider import AbstractSpider
from .urlfilter import UrlFilter
from .urlqueue import BaseUrlQueue, UrlQueue

__version__ = "1.0.0"

__all__ = [
    "AbstractSpider",
    "BaseUrlQueue",
    "ClientSettings",
    "ConfigurationError",
    "DiscoveryOptions",
    "ExceptionEvent",
    "FetchScheduler",
    "FoundUrl",
    "Indexer",
    "InvalidUrlError",
    "LinkDiscoverer",
    "Linkchecker",
    "MirrorSaveEngine",
    "MirrorSettings",
    "MirrorWriteError",
    "RedirectEvent",
    "ResponseEvent",
    "SchedulerState",
    "SpiderError",
    "SpiderSettings",
    "UrlFilter",
    "UrlQueue",
    "Webmirror",
    "build_session",
    "compute_filename_for_url",
]
