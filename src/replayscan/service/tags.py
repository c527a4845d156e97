"""Attach and update the ``bugged`` tag on replay stubs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from replayscan.exceptions import TagStoreError
from replayscan.sources.tags import TagKey

if TYPE_CHECKING:
    from collections.abc import Iterable

    from replayscan.service.requests import TagUpdateRequest
    from replayscan.service.stubs import ReplayStub
    from replayscan.sources.tags import TagStore

logger = logging.getLogger(__name__)

BUGGED_TAG = "bugged"


class TagEnricher:
    """Reads and writes stub tags through a :class:`TagStore`.

    Reads fail open: a store error leaves the tag ``False`` and is
    logged. Writes are applied optimistically to the caller's stub and
    rolled back if the store rejects them.

    Attributes:
        _store: Backing tag store.
    """

    __slots__ = ("_store",)

    def __init__(self, store: TagStore) -> None:
        self._store = store

    def enrich(self, stubs: Iterable[ReplayStub], tenant_id: str) -> None:
        """Set ``bugged`` on every stub from the tag store.

        Args:
            stubs: Stubs to enrich in place.
            tenant_id: Tenant the stubs belong to.
        """
        for stub in stubs:
            key = TagKey(tenant_id, stub.match_id, stub.frame_start, stub.frame_end, BUGGED_TAG)
            try:
                value = self._store.get_tag(key)
            except TagStoreError as exc:
                logger.warning(
                    "Tag read failed for %s %d-%d, defaulting to false: %s",
                    stub.match_id,
                    stub.frame_start,
                    stub.frame_end,
                    exc,
                )
                value = None
            stub.bugged = bool(value)

    def update(
        self,
        request: TagUpdateRequest,
        tenant_id: str,
        stubs: Iterable[ReplayStub] = (),
    ) -> bool:
        """Store a new ``bugged`` value for one clip.

        A stub in *stubs* addressing the same clip is updated before the
        write and reverted if the write fails.

        Args:
            request: Parsed tag update.
            tenant_id: Tenant the clip belongs to.
            stubs: Caller-held stubs to update optimistically.

        Returns:
            The value as stored.

        Raises:
            TagStoreError: If the store write fails.
        """
        target = next(
            (
                s
                for s in stubs
                if s.match_id == request.match_id
                and s.frame_start == request.frame_start
                and s.frame_end == request.frame_end
            ),
            None,
        )
        previous = target.bugged if target is not None else None
        if target is not None:
            target.bugged = request.bugged

        key = TagKey(
            tenant_id, request.match_id, request.frame_start, request.frame_end, BUGGED_TAG
        )
        try:
            stored = self._store.set_tag(key, request.bugged)
        except TagStoreError:
            if target is not None and previous is not None:
                target.bugged = previous
            logger.error(
                "Tag write failed for %s %d-%d; reverted local update",
                request.match_id,
                request.frame_start,
                request.frame_end,
            )
            raise

        stored = bool(stored)
        if target is not None:
            target.bugged = stored
        logger.info(
            "Set %s=%s on %s %d-%d",
            BUGGED_TAG,
            stored,
            request.match_id,
            request.frame_start,
            request.frame_end,
        )
        return stored
