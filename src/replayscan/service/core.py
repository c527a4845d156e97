"""Request-level orchestration of searches, replay fetches and tags.

:class:`ReplayScanService` is the single entry point used by the request
boundary. It scopes every data access by tenant, serves stub searches
stale-while-revalidate through the :class:`ResultCache`, and serves
replay-data fetches read-through.

Pipeline for a sequence search::

    frames + actions -> runs -> chains -> clips -> stubs -> tags
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from replayscan.config import ServiceConfig
from replayscan.exceptions import CacheError, MatchNotFoundError, RequestValidationError
from replayscan.frames.assembler import assemble_replay, log_frame_range
from replayscan.matching.combos import rank_combos
from replayscan.matching.runs import StateTimeline, encode_runs, label_states
from replayscan.matching.sequence import find_chains
from replayscan.matching.windows import build_combo_clips, build_sequence_clips
from replayscan.service.stubs import ReplayStub
from replayscan.service.tags import TagEnricher
from replayscan.sources.base import FrameQuery
from replayscan.sources.cache import replay_cache_key, stub_cache_key
from replayscan.sources.engine import is_valid_tenant_id
from replayscan.sources.jobs import run_query
from replayscan.sources.schemas import (
    ACTIONS_TABLE,
    FRAMES_TABLE,
    ITEMS_TABLE,
    MATCH_SETTINGS_TABLE,
    PLATFORMS_TABLE,
    PLAYER_SETTINGS_TABLE,
    PUNISHES_TABLE,
    MatchSettings,
    PlayerSettings,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    import polars as pl

    from replayscan.service.refresh import BackgroundRefresher
    from replayscan.service.requests import (
        ComboQueryRequest,
        ReplayDataRequest,
        SequenceQueryRequest,
        TagUpdateRequest,
    )
    from replayscan.sources.base import QueryEngine
    from replayscan.sources.cache import ResultCache
    from replayscan.sources.tags import TagStore

logger = logging.getLogger(__name__)

_FRAME_LOG_COLUMNS: tuple[str, ...] = ("match_id", "player_index", "frame_number", "action_post")

# A player may log a leader and a follower row per frame.
_MAX_ROWS_PER_PLAYER = 2


class ReplayScanService:
    """Serves sequence, combo, replay-data and tag requests.

    Attributes:
        _engine: Frame-log query engine.
        _cache: Result cache.
        _tags: Tag enricher over the tag store.
        _config: Service configuration.
        _refresher: Background refresher, or ``None`` to disable
            revalidation of cache hits.
        _sleep: Sleep function used between job polls.
    """

    __slots__ = ("_cache", "_config", "_engine", "_refresher", "_sleep", "_tags")

    def __init__(
        self,
        engine: QueryEngine,
        cache: ResultCache,
        tag_store: TagStore,
        config: ServiceConfig | None = None,
        refresher: BackgroundRefresher | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._cache = cache
        self._tags = TagEnricher(tag_store)
        self._config = config or ServiceConfig()
        self._refresher = refresher
        self._sleep = sleep

    @property
    def config(self) -> ServiceConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def find_sequences(self, request: SequenceQueryRequest, tenant_id: str) -> list[ReplayStub]:
        """Find clips matching a sequence template.

        Args:
            request: Parsed sequence query.
            tenant_id: Tenant whose frame log is searched.

        Returns:
            Tagged stubs ordered by ``(match_id, frame_start)``.

        Raises:
            RequestValidationError: If the tenant id is invalid.
            MatchNotFoundError: If ``request.match_id`` is unknown.
            QueryJobError: If a frame-log query fails.
        """
        _require_tenant(tenant_id)
        buffer_frames = (
            request.buffer_frames
            if request.buffer_frames is not None
            else self._config.matcher.buffer_frames
        )
        params = {"actions": request.spec.to_params(), "bufferFrames": buffer_frames}
        key = stub_cache_key("sequence", tenant_id, params, request.match_id)

        def compute() -> list[dict[str, Any]]:
            return self._compute_sequence_stubs(request, buffer_frames, tenant_id)

        payload = self._stale_while_revalidate(key, compute)
        return self._tagged(payload, tenant_id)

    def rank_combos(self, request: ComboQueryRequest, tenant_id: str) -> list[ReplayStub]:
        """Return the top punishes of every match as combo stubs.

        Args:
            request: Parsed combo query.
            tenant_id: Tenant whose punish table is ranked.

        Returns:
            Tagged combo stubs ordered by ``(match_id, frame_start)``.

        Raises:
            RequestValidationError: If the tenant id is invalid.
            MatchNotFoundError: If ``request.match_id`` is unknown.
            QueryJobError: If a frame-log query fails.
        """
        _require_tenant(tenant_id)
        params = {"comboType": request.mode.value}
        key = stub_cache_key("combo", tenant_id, params, request.match_id)

        def compute() -> list[dict[str, Any]]:
            return self._compute_combo_stubs(request, tenant_id)

        payload = self._stale_while_revalidate(key, compute)
        return self._tagged(payload, tenant_id)

    def fetch_replay(self, request: ReplayDataRequest, tenant_id: str) -> dict[str, Any]:
        """Return assembled frame data for a match window.

        Cached results are served as is; a miss computes and stores.

        Args:
            request: Parsed replay-data request.
            tenant_id: Tenant owning the match.

        Returns:
            ``{"settings", "frames", "ending"}`` plus ``"warning"`` when a
            full replay was truncated.

        Raises:
            RequestValidationError: If the tenant id is invalid.
            MatchNotFoundError: If the match is unknown.
            QueryJobError: If a frame-log query fails.
        """
        _require_tenant(tenant_id)
        key = replay_cache_key(
            tenant_id,
            request.match_id,
            None if request.full_replay else request.frame_start,
            None if request.full_replay else request.frame_end,
        )
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        payload = self._compute_replay(request, tenant_id)
        self._cache_put(key, payload)
        return payload

    def update_tag(
        self,
        request: TagUpdateRequest,
        tenant_id: str,
        local_stubs: Iterable[ReplayStub] = (),
    ) -> bool:
        """Store the ``bugged`` tag of one clip.

        Raises:
            RequestValidationError: If the tenant id is invalid.
            TagStoreError: If the store write fails.
        """
        _require_tenant(tenant_id)
        return self._tags.update(request, tenant_id, local_stubs)

    # ------------------------------------------------------------------
    # Cache discipline
    # ------------------------------------------------------------------

    def _stale_while_revalidate(
        self,
        key: str,
        compute: Callable[[], list[dict[str, Any]]],
    ) -> list[dict[str, Any]]:
        cached = self._cache_get(key)
        if cached is not None:
            if self._refresher is not None:
                self._refresher.spawn(key, compute)
            return cached

        payload = compute()
        self._cache_put(key, payload)
        return payload

    def _cache_get(self, key: str) -> Any | None:
        try:
            return self._cache.get(key)
        except CacheError as exc:
            logger.warning("Cache lookup for %s failed, recomputing: %s", key, exc)
            return None

    def _cache_put(self, key: str, payload: Any) -> None:
        try:
            self._cache.put(key, payload)
        except CacheError as exc:
            logger.warning("Cache write for %s failed: %s", key, exc)

    def _tagged(self, payload: list[dict[str, Any]], tenant_id: str) -> list[ReplayStub]:
        stubs = [ReplayStub.from_payload(p) for p in payload]
        self._tags.enrich(stubs, tenant_id)
        return stubs

    # ------------------------------------------------------------------
    # Compute paths
    # ------------------------------------------------------------------

    def _query(self, query: FrameQuery) -> pl.DataFrame:
        return run_query(self._engine, query, self._config.job, sleep=self._sleep)

    def _compute_sequence_stubs(
        self,
        request: SequenceQueryRequest,
        buffer_frames: int,
        tenant_id: str,
    ) -> list[dict[str, Any]]:
        if request.match_id is not None:
            self._load_match(tenant_id, request.match_id)

        frames = self._query(
            FrameQuery(
                table=FRAMES_TABLE,
                tenant_id=tenant_id,
                match_id=request.match_id,
                columns=_FRAME_LOG_COLUMNS,
            )
        )
        actions = self._query(
            FrameQuery(
                table=ACTIONS_TABLE,
                tenant_id=tenant_id,
                columns=("action_post", "action_name"),
            )
        )

        if frames.is_empty():
            return []

        labelled = label_states(frames, actions)
        runs = encode_runs(labelled)
        chains = find_chains(runs, request.spec, StateTimeline(labelled))
        logger.info(
            "Sequence search over %d runs found %d chains for tenant %s",
            len(runs),
            len(chains),
            tenant_id,
        )

        settings, players = self._match_metadata(tenant_id, {c.match_id for c in chains})
        clips = build_sequence_clips(
            chains,
            settings,
            players,
            buffer_frames,
            frame_offset=self._config.assembler.pre_game_offset,
        )
        return [ReplayStub.from_clip(c).to_payload() for c in clips]

    def _compute_combo_stubs(
        self,
        request: ComboQueryRequest,
        tenant_id: str,
    ) -> list[dict[str, Any]]:
        if request.match_id is not None:
            self._load_match(tenant_id, request.match_id)

        punishes = self._query(
            FrameQuery(table=PUNISHES_TABLE, tenant_id=tenant_id, match_id=request.match_id)
        )
        ranked = rank_combos(punishes, request.mode, self._config.combo)
        logger.info(
            "Ranked %d %s combos for tenant %s", len(ranked), request.mode.value, tenant_id
        )

        settings, players = self._match_metadata(tenant_id, {p.match_id for p in ranked})
        clips = build_combo_clips(
            ranked,
            settings,
            players,
            pre_frames=self._config.combo.pre_buffer_frames,
            post_frames=self._config.combo.post_buffer_frames,
            frame_offset=self._config.assembler.pre_game_offset,
        )
        return [ReplayStub.from_clip(c).to_payload() for c in clips]

    def _compute_replay(self, request: ReplayDataRequest, tenant_id: str) -> dict[str, Any]:
        settings, players = self._load_match(tenant_id, request.match_id)
        assembler = self._config.assembler

        frame_range: tuple[int, int] | None = None
        row_limit: int | None = None
        if request.frame_start is not None and request.frame_end is not None:
            frame_range = log_frame_range(request.frame_start, request.frame_end, assembler)
        else:
            # One frame past the cap, so the assembler can tell it truncated.
            row_limit = (
                (assembler.full_replay_frame_cap + 1)
                * _MAX_ROWS_PER_PLAYER
                * max(len(players), 1)
            )

        player_rows = self._query(
            FrameQuery(
                table=FRAMES_TABLE,
                tenant_id=tenant_id,
                match_id=request.match_id,
                frame_range=frame_range,
                order_by=("frame_number", "player_index"),
                limit=row_limit,
            )
        )

        side_range = frame_range
        if side_range is None and not player_rows.is_empty():
            frame_numbers = player_rows["frame_number"]
            side_range = (int(frame_numbers.min()), int(frame_numbers.max()))

        item_rows = self._query(
            FrameQuery(
                table=ITEMS_TABLE,
                tenant_id=tenant_id,
                match_id=request.match_id,
                frame_range=side_range,
                filters=(("item_type", assembler.item_type_ids),),
            )
        )
        platform_rows = self._query(
            FrameQuery(
                table=PLATFORMS_TABLE,
                tenant_id=tenant_id,
                match_id=request.match_id,
                frame_range=side_range,
            )
        )

        replay = assemble_replay(
            settings,
            players,
            player_rows,
            item_rows,
            platform_rows,
            assembler,
            full_replay=frame_range is None,
        )
        logger.info(
            "Assembled %d frames of %s for tenant %s (%d gaps)",
            len(replay.frames),
            request.match_id,
            tenant_id,
            len(replay.gaps),
        )
        return replay.to_payload()

    # ------------------------------------------------------------------
    # Match metadata
    # ------------------------------------------------------------------

    def _load_match(
        self,
        tenant_id: str,
        match_id: str,
    ) -> tuple[MatchSettings, tuple[PlayerSettings, ...]]:
        settings, players = self._match_metadata(tenant_id, {match_id})
        if match_id not in settings:
            msg = f"Unknown match {match_id!r}"
            raise MatchNotFoundError(msg)
        return settings[match_id], players.get(match_id, ())

    def _match_metadata(
        self,
        tenant_id: str,
        match_ids: set[str],
    ) -> tuple[dict[str, MatchSettings], dict[str, tuple[PlayerSettings, ...]]]:
        if not match_ids:
            return {}, {}
        wanted = (("match_id", tuple(sorted(match_ids))),)

        settings_df = self._query(
            FrameQuery(table=MATCH_SETTINGS_TABLE, tenant_id=tenant_id, filters=wanted)
        )
        players_df = self._query(
            FrameQuery(
                table=PLAYER_SETTINGS_TABLE,
                tenant_id=tenant_id,
                filters=wanted,
                order_by=("match_id", "player_index"),
            )
        )

        settings = {
            str(row["match_id"]): MatchSettings.from_row(row)
            for row in settings_df.iter_rows(named=True)
        }
        grouped: dict[str, list[PlayerSettings]] = {}
        for row in players_df.iter_rows(named=True):
            player = PlayerSettings.from_row(row)
            grouped.setdefault(player.match_id, []).append(player)
        return settings, {k: tuple(v) for k, v in grouped.items()}


def _require_tenant(tenant_id: str) -> None:
    if not is_valid_tenant_id(tenant_id):
        msg = f"Invalid tenant id {tenant_id!r}"
        raise RequestValidationError(msg)
