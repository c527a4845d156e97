"""Shared test fixtures for the replay sequence search engine.

Provides reusable fixtures used across multiple test modules:

* :func:`build_frames` -- factory turning ``(state, length)`` segments
  into a synthetic ``frames`` table for one player.
* :func:`actions_table` -- the action-state lookup table.
* :func:`frame_log` -- a :class:`MemoryTables` holding two tenants with
  a full frame log each.
* :func:`inline_executor` / :func:`deferred_executor` -- executors that
  run work synchronously or on demand, so no test sleeps.
* :func:`service` -- a :class:`ReplayScanService` wired to the above.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import TYPE_CHECKING, Any

import polars as pl
import pytest

from replayscan.config import ServiceConfig
from replayscan.service.core import ReplayScanService
from replayscan.service.refresh import BackgroundRefresher
from replayscan.sources.cache import ResultCache
from replayscan.sources.engine import LocalQueryEngine, MemoryTables
from replayscan.sources.schemas import (
    ACTIONS_TABLE,
    FRAMES_TABLE,
    ITEMS_TABLE,
    MATCH_SETTINGS_TABLE,
    PLATFORMS_TABLE,
    PLAYER_SETTINGS_TABLE,
    PUNISHES_TABLE,
)
from replayscan.sources.tags import MemoryTagStore

if TYPE_CHECKING:
    from pathlib import Path

# ------------------------------------------------------------------
# Action states
# ------------------------------------------------------------------

ACTION_IDS: dict[str, int] = {
    "WAIT": 14,
    "JUMP": 25,
    "FALL": 29,
    "DAMAGE": 75,
    "AIR_DODGE": 236,
    "CLIFF_WAIT": 253,
}

TENANT = "acme"
OTHER_TENANT = "globex"
PRE_GAME_OFFSET = 123

# ------------------------------------------------------------------
# Executors
# ------------------------------------------------------------------


class InlineExecutor(Executor):
    """Runs every submitted callable immediately on the calling thread."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        self.submitted += 1
        future: Future[Any] = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class DeferredExecutor(Executor):
    """Queues submitted callables until :meth:`run_all` is called."""

    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        self.pending.append((fn, args, kwargs))
        return Future()

    def run_all(self) -> None:
        while self.pending:
            fn, args, kwargs = self.pending.pop(0)
            fn(*args, **kwargs)


# ------------------------------------------------------------------
# Frame-log builders
# ------------------------------------------------------------------


def _build_frames(
    match_id: str,
    player_index: int,
    segments: list[tuple[str, int]],
    start_frame: int = 0,
    skip: tuple[int, ...] = (),
) -> pl.DataFrame:
    """Expand ``(state, length)`` segments into per-frame rows.

    Frame numbers listed in *skip* are left out of the log.
    """
    rows: list[dict[str, Any]] = []
    frame = start_frame
    for state, length in segments:
        for _ in range(length):
            if frame not in skip:
                rows.append(
                    {
                        "match_id": match_id,
                        "player_index": player_index,
                        "frame_number": frame,
                        "action_post": ACTION_IDS[state],
                        "buttons": 0x0100 if state == "JUMP" else 0,
                        "pos_x_post": float(frame),
                        "pos_y_post": 0.0,
                        "percent_post": 0.0,
                        "stocks": 4,
                        "airborne": state in ("JUMP", "FALL", "AIR_DODGE"),
                        "alive": True,
                        "seed": 7,
                    }
                )
            frame += 1
    return pl.DataFrame(rows)


@pytest.fixture()
def build_frames() -> Callable[..., pl.DataFrame]:
    """Factory for synthetic per-player frame tables."""
    return _build_frames


@pytest.fixture()
def actions_table() -> pl.DataFrame:
    """Action-state lookup (``action_post`` -> ``action_name``)."""
    return pl.DataFrame(
        {
            "action_post": list(ACTION_IDS.values()),
            "action_name": list(ACTION_IDS.keys()),
        }
    )


# Player 0 performs the ledge dash over log frames 623-636, which is
# replay frames 500-513 once the pre-game offset is removed.
LEDGE_DASH_SEGMENTS: list[tuple[str, int]] = [
    ("WAIT", 623),
    ("CLIFF_WAIT", 8),
    ("FALL", 2),
    ("JUMP", 3),
    ("AIR_DODGE", 1),
    ("WAIT", 63),
]


def _tenant_tables(tables: MemoryTables, tenant_id: str, match_id: str) -> None:
    actions = pl.DataFrame(
        {"action_post": list(ACTION_IDS.values()), "action_name": list(ACTION_IDS.keys())}
    )
    frames = pl.concat(
        [
            _build_frames(match_id, 0, LEDGE_DASH_SEGMENTS),
            _build_frames(match_id, 1, [("WAIT", 700)]),
        ]
    )
    tables.add(tenant_id, FRAMES_TABLE, frames)
    tables.add(tenant_id, ACTIONS_TABLE, actions)
    tables.add(
        tenant_id,
        MATCH_SETTINGS_TABLE,
        pl.DataFrame(
            {
                "match_id": [match_id],
                "stage": [2],
                "frame_count": [10_000],
                "slippi_version": ["3.16.0"],
                "timer": [480],
            }
        ),
    )
    tables.add(
        tenant_id,
        PLAYER_SETTINGS_TABLE,
        pl.DataFrame(
            {
                "match_id": [match_id, match_id],
                "player_index": [0, 1],
                "port": [1, 2],
                "ext_char": [2, 20],
                "player_tag": ["FOX", "FALCO"],
                "slippi_code": ["FOX#1", "FALC#2"],
            }
        ),
    )
    tables.add(
        tenant_id,
        PUNISHES_TABLE,
        pl.DataFrame(
            {
                "match_id": [match_id] * 3,
                "player_index": [0, 1, 0],
                "start_frame": [1123, 2123, 3123],
                "end_frame": [1200, 2180, 3150],
                "num_moves": [5, 3, 2],
                "start_pct": [10.0, 10.0, 0.0],
                "end_pct": [55.0, 45.0, 12.0],
            }
        ),
    )
    tables.add(
        tenant_id,
        ITEMS_TABLE,
        pl.DataFrame(
            {
                "match_id": [match_id, match_id],
                "frame": [630, 631],
                "item_type": [54, 1],
                "state": [1, 1],
                "face_dir": [1.0, 1.0],
                "xvel": [2.0, 0.0],
                "yvel": [0.0, 0.0],
                "xpos": [10.0, 0.0],
                "ypos": [5.0, 0.0],
                "spawn_id": [3, 4],
                "owner": [0, 1],
            }
        ),
    )
    tables.add(
        tenant_id,
        PLATFORMS_TABLE,
        pl.DataFrame(
            {
                "match_id": [match_id],
                "frame": [625],
                "left_height": [20.0],
                "right_height": [28.0],
            }
        ),
    )


@pytest.fixture()
def frame_log() -> MemoryTables:
    """Two tenants, one match each; only ``acme`` owns ``m1``."""
    tables = MemoryTables()
    _tenant_tables(tables, TENANT, "m1")
    _tenant_tables(tables, OTHER_TENANT, "g1")
    return tables


# ------------------------------------------------------------------
# Service wiring
# ------------------------------------------------------------------


@pytest.fixture()
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture()
def deferred_executor() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture()
def engine(frame_log: MemoryTables, inline_executor: InlineExecutor) -> LocalQueryEngine:
    """Query engine running every job inline."""
    return LocalQueryEngine(frame_log, executor=inline_executor)


@pytest.fixture()
def result_cache(tmp_path: Path) -> ResultCache:
    return ResultCache(tmp_path / "cache")


@pytest.fixture()
def tag_store() -> MemoryTagStore:
    return MemoryTagStore()


@pytest.fixture()
def refresher(
    result_cache: ResultCache, deferred_executor: DeferredExecutor
) -> BackgroundRefresher:
    return BackgroundRefresher(result_cache, executor=deferred_executor)


@pytest.fixture()
def service(
    engine: LocalQueryEngine,
    result_cache: ResultCache,
    tag_store: MemoryTagStore,
    refresher: BackgroundRefresher,
) -> ReplayScanService:
    """Service over the in-memory frame log with deferred refreshes."""
    return ReplayScanService(
        engine,
        result_cache,
        tag_store,
        ServiceConfig(),
        refresher=refresher,
        sleep=lambda _: None,
    )
