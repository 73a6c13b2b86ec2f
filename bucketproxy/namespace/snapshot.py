import asyncio
import functools
import logging
import time
from typing import Awaitable, Callable

from bucketproxy.config import get_settings
from bucketproxy.namespace import Namespace, NamespaceUnavailable
from bucketproxy.namespace.builder import load_namespace

logger = logging.getLogger("bucketproxy.namespace")

NamespaceLoader = Callable[[], Awaitable[Namespace]]


class NamespaceCache:
    """
    Holds the current namespace snapshot and rebuilds it when it is older than the ttl.

    Readers that find a fresh snapshot never wait. When the snapshot is stale, callers queue
    on a single lock; whoever gets it first rebuilds, the others re-check freshness once they
    get the lock and simply return the new snapshot. The new namespace is published by
    replacing the reference, so a reader either has the old snapshot or the new one.

    A failed rebuild keeps the previous snapshot in place and records the error. A new
    attempt is only made after retry_seconds, so waiters do not each repeat a failing listing.
    """

    def __init__(
        self,
        loader: NamespaceLoader,
        ttl: float = 15.0,
        retry_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self.ttl = ttl
        self.retry_seconds = retry_seconds
        self.clock = clock
        self.last_error: Exception | None = None
        self.last_attempt: float | None = None
        self.rebuilds = 0
        self._current: Namespace | None = None
        self._built: float | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Namespace | None:
        """The installed snapshot, without checking whether it is fresh"""
        return self._current

    def age(self) -> float | None:
        if self._built is None:
            return None
        return self.clock() - self._built

    def is_stale(self) -> bool:
        now = self.clock()
        if self._built is not None and now - self._built <= self.ttl:
            return False
        if self.last_error is not None and self.last_attempt is not None:
            # Back off after a failure
            return now - self.last_attempt >= self.retry_seconds
        return True

    def invalidate(self):
        """Make the next get_current rebuild the snapshot (e.g. after a write through this proxy)"""
        self._built = None
        self.last_attempt = None

    async def get_current(self) -> Namespace:
        if self.is_stale():
            async with self._lock:
                if self.is_stale():
                    await self._rebuild()
        if self._current is None:
            raise NamespaceUnavailable(f"Bucket listing is not available: {self.last_error}")
        return self._current

    async def rebuild(self) -> Namespace:
        """Rebuild now, regardless of the age of the current snapshot"""
        async with self._lock:
            await self._rebuild()
        if self._current is None:
            raise NamespaceUnavailable(f"Bucket listing is not available: {self.last_error}")
        return self._current

    async def _rebuild(self) -> None:
        self.last_attempt = self.clock()
        try:
            namespace = await self.loader()
        except Exception as e:
            self.last_error = e
            if self._current is None:
                logger.exception("Could not list bucket, no namespace available")
            else:
                logger.exception(f"Could not list bucket, keeping namespace built at {self._current.built_at}")
            return
        self._current = namespace
        self._built = self.clock()
        self.last_error = None
        self.rebuilds += 1


@functools.cache
def get_namespace_cache() -> NamespaceCache:
    settings = get_settings()
    return NamespaceCache(
        loader=load_namespace,
        ttl=settings.namespace_ttl,
        retry_seconds=settings.rebuild_retry_seconds,
    )
