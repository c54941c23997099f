import abc
import logging
from collections import deque
from typing import Deque, Optional, Set

LOGGER = logging.getLogger(__name__)


class BaseUrlQueue(abc.ABC):
    @abc.abstractmethod
    def add_url(self, url: str, force: bool = False) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def next(self) -> Optional[str]:
        raise NotImplementedError

    @abc.abstractmethod
    def is_queued(self, url: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def is_visited(self, url: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError


class UrlQueue(BaseUrlQueue):
    """FIFO of pending URLs plus the set of URLs already handed out.

    A URL is queued at most once at a time and is not queued again after it
    was returned by ``next()`` unless ``force`` is given.
    """

    def __init__(self) -> None:
        self._queue: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._visited: Set[str] = set()

    def add_url(self, url: str, force: bool = False) -> bool:
        if url in self._queued:
            LOGGER.debug("URL %s is already queued.", url)
            return False
        if url in self._visited and not force:
            LOGGER.debug("URL %s has already been visited.", url)
            return False
        self._queue.append(url)
        self._queued.add(url)
        LOGGER.info("URL %s added to spider queue.", url)
        return True

    def next(self) -> Optional[str]:
        if not self._queue:
            return None
        url = self._queue.popleft()
        self._queued.discard(url)
        self._visited.add(url)
        return url

    def is_queued(self, url: str) -> bool:
        return url in self._queued

    def is_visited(self, url: str) -> bool:
        return url in self._visited

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    def __len__(self) -> int:
        return len(self._queue)
