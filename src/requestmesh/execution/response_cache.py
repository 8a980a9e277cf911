"""Response cache contract and in-memory implementation."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

from requestmesh.core.models import Result
from requestmesh.execution.queues import ConcurrentQueue, DispatchQueue
from requestmesh.utils.exceptions import CacheStorageError

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64

# Result of a lookup: the stored payload, None for a miss, or a storage error.
LookupCallback = Callable[[Result[dict[str, Any] | None]], None]


class ResponseCache(ABC):
    """Abstract base class for response payload storage."""

    @abstractmethod
    def lookup(self, key: str, callback: LookupCallback) -> None:
        """Look up a payload asynchronously.

        Args:
            key: Cache key of the request
            callback: Receives the payload, None on a miss, or a failure
        """
        pass

    @abstractmethod
    def store(self, key: str, payload: dict[str, Any]) -> None:
        """Store a payload under ``key``, replacing any previous entry."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove the payload stored under ``key``, if any."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored payload."""
        pass


class InMemoryResponseCache(ResponseCache):
    """In-memory response cache.

    Keys hash onto a fixed set of lock stripes, so writes to the same key are
    serialized (last write wins) and the lock table does not grow with the
    number of keys.
    """

    def __init__(self, queue: DispatchQueue | None = None):
        self._data: dict[str, dict[str, Any]] = {}
        self._stripes = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._owns_queue = queue is None
        self._queue = queue or ConcurrentQueue(max_workers=2, name="requestmesh-cache")

    def _lock_for(self, key: str) -> threading.Lock:
        return self._stripes[hash(key) % LOCK_STRIPES]

    def lookup(self, key: str, callback: LookupCallback) -> None:
        self._queue.dispatch(self._lookup, key, callback)

    def _lookup(self, key: str, callback: LookupCallback) -> None:
        try:
            payload = self.get(key)
        except Exception as e:
            callback(Result.failure(CacheStorageError(f"Cache lookup failed for {key}: {e}")))
            return
        callback(Result.success(payload))

    def get(self, key: str) -> dict[str, Any] | None:
        """Synchronously read a stored payload."""
        with self._lock_for(key):
            payload = self._data.get(key)
            return copy.deepcopy(payload) if payload is not None else None

    def store(self, key: str, payload: dict[str, Any]) -> None:
        with self._lock_for(key):
            self._data[key] = copy.deepcopy(payload)
        logger.debug("Stored response for %s", key)

    def remove(self, key: str) -> None:
        with self._lock_for(key):
            removed = self._data.pop(key, None)
        if removed is not None:
            logger.debug("Removed cached response for %s", key)

    def clear(self) -> None:
        # Stripes are always taken in index order.
        for lock in self._stripes:
            lock.acquire()
        try:
            self._data.clear()
        finally:
            for lock in reversed(self._stripes):
                lock.release()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)

    def shutdown(self) -> None:
        if self._owns_queue and isinstance(self._queue, ConcurrentQueue):
            self._queue.shutdown(wait=False)
