"""Request handling for sequence, combo, replay-data and tag requests.

Public API
----------
.. class:: ReplayScanService

    Tenant-scoped orchestration with stale-while-revalidate caching.

.. class:: BackgroundRefresher

    Fire-and-forget recomputation of cache entries.

.. class:: TagEnricher

    Fail-open tag reads and optimistic tag writes.
"""

from replayscan.service.core import ReplayScanService
from replayscan.service.refresh import BackgroundRefresher
from replayscan.service.requests import (
    ComboQueryRequest,
    ReplayDataRequest,
    SequenceQueryRequest,
    TagUpdateRequest,
)
from replayscan.service.stubs import ReplayStub
from replayscan.service.tags import BUGGED_TAG, TagEnricher

__all__ = [
    "BUGGED_TAG",
    "BackgroundRefresher",
    "ComboQueryRequest",
    "ReplayDataRequest",
    "ReplayScanService",
    "ReplayStub",
    "SequenceQueryRequest",
    "TagEnricher",
    "TagUpdateRequest",
]
