"""Fire-and-forget recomputation of cached results."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Executor

    from replayscan.sources.cache import ResultCache

logger = logging.getLogger(__name__)


class BackgroundRefresher:
    """Recomputes cache entries off the request path.

    Each :meth:`spawn` runs ``compute()`` on the executor and overwrites
    the cache entry with its result. The caller never waits on or sees
    the outcome; failures are logged and dropped. Concurrent refreshes
    of the same key are not de-duplicated, the last write wins.

    Attributes:
        _cache: Cache the results are written to.
        _executor: Executor running the refreshes.
    """

    __slots__ = ("_cache", "_executor", "_owns_executor")

    def __init__(
        self,
        cache: ResultCache,
        executor: Executor | None = None,
        max_workers: int = 2,
    ) -> None:
        """Initialize the refresher.

        Args:
            cache: Cache to overwrite.
            executor: Optional executor; a private pool is created when
                omitted.
            max_workers: Pool size when no executor is supplied.
        """
        self._cache = cache
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="cache-refresh"
        )

    def spawn(self, key: str, compute: Callable[[], Any]) -> None:
        """Schedule a refresh of *key*."""
        logger.debug("Scheduling refresh of %s", key)
        self._executor.submit(self._refresh, key, compute)

    def shutdown(self, wait: bool = True) -> None:
        """Release the executor if this refresher created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _refresh(self, key: str, compute: Callable[[], Any]) -> None:
        try:
            payload = compute()
            self._cache.put(key, payload)
        except Exception:
            logger.exception("Background refresh of %s failed", key)
            return
        logger.debug("Refreshed %s", key)

