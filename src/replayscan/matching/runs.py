"""Run-length encoding of per-entity action-state logs.

Collapses each ``(match_id, player_index)`` frame log into maximal runs
of identical state. A run ends when the state name changes or when the
next logged frame is not the immediate successor of the previous one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import polars as pl

from replayscan.exceptions import FrameLogError

if TYPE_CHECKING:
    from collections.abc import Iterator

ENTITY_KEYS: tuple[str, ...] = ("match_id", "player_index")

_REQUIRED_COLUMNS: tuple[str, ...] = (*ENTITY_KEYS, "frame_number", "action_post")


@dataclass(frozen=True, slots=True)
class Run:
    """A maximal span of frames with one action state.

    Attributes:
        match_id: Identifier of the match.
        entity_id: Player index of the entity.
        state_name: Action state held throughout the run.
        start_frame: First frame of the run (inclusive).
        end_frame: Last frame of the run (inclusive).
        frame_count: Number of frames, ``end_frame - start_frame + 1``.
    """

    match_id: str
    entity_id: int
    state_name: str
    start_frame: int
    end_frame: int
    frame_count: int


def label_states(
    frames: pl.DataFrame,
    actions: pl.DataFrame | None = None,
) -> pl.DataFrame:
    """Attach a ``state_name`` column to a frames table.

    State ids are resolved through the ``actions`` lookup
    (``action_post`` -> ``action_name``). Ids missing from the lookup
    are named ``UNKNOWN_<id>``; with no lookup the id itself is used.

    Args:
        frames: Frames table with at least the entity keys,
            ``frame_number`` and ``action_post``.
        actions: Optional action lookup table.

    Returns:
        The frames sorted by entity and frame number, with
        ``state_name`` appended.

    Raises:
        FrameLogError: If a required column is missing.
    """
    missing = [c for c in _REQUIRED_COLUMNS if c not in frames.columns]
    if missing:
        msg = f"frames table is missing columns {missing}"
        raise FrameLogError(msg)

    ordered = frames.sort([*ENTITY_KEYS, "frame_number"])

    if actions is None:
        return ordered.with_columns(
            pl.col("action_post").cast(pl.Utf8).alias("state_name")
        )

    lookup = actions.select(
        pl.col("action_post").cast(ordered.schema["action_post"]),
        pl.col("action_name").alias("state_name"),
    ).unique(subset="action_post", keep="first")

    return (
        ordered.join(lookup, on="action_post", how="left")
        .with_columns(
            pl.col("state_name").fill_null(
                pl.lit("UNKNOWN_") + pl.col("action_post").cast(pl.Utf8)
            )
        )
        .sort([*ENTITY_KEYS, "frame_number"])
    )


def encode_runs(
    frames: pl.DataFrame,
    actions: pl.DataFrame | None = None,
) -> list[Run]:
    """Collapse per-entity frame logs into maximal runs.

    Frames are visited once in ``(match_id, player_index, frame_number)``
    order; a new run starts at the first frame of each entity, whenever
    the state name differs from the previous frame, and after any
    missing frame number.

    Args:
        frames: Frames table (see :func:`label_states`). A
            ``state_name`` column, if already present, is used as is.
        actions: Optional action lookup table.

    Returns:
        Runs ordered by entity and start frame.
    """
    if frames.is_empty():
        return []

    labelled = (
        frames.sort([*ENTITY_KEYS, "frame_number"])
        if "state_name" in frames.columns
        else label_states(frames, actions)
    )

    prev_state = pl.col("state_name").shift(1).over(ENTITY_KEYS)
    prev_frame = pl.col("frame_number").shift(1).over(ENTITY_KEYS)
    starts_run = (
        prev_state.is_null()
        | (pl.col("state_name") != prev_state)
        | (pl.col("frame_number") != prev_frame + 1)
    ).fill_null(True)

    runs_df = (
        labelled.with_columns(starts_run.cast(pl.Int64).cum_sum().alias("_run_id"))
        .group_by("_run_id", maintain_order=True)
        .agg(
            pl.col("match_id").first(),
            pl.col("player_index").first(),
            pl.col("state_name").first(),
            pl.col("frame_number").min().alias("start_frame"),
            pl.col("frame_number").max().alias("end_frame"),
        )
        .sort([*ENTITY_KEYS, "start_frame"])
    )

    return [
        Run(
            match_id=str(row["match_id"]),
            entity_id=int(row["player_index"]),
            state_name=str(row["state_name"]),
            start_frame=int(row["start_frame"]),
            end_frame=int(row["end_frame"]),
            frame_count=int(row["end_frame"]) - int(row["start_frame"]) + 1,
        )
        for row in runs_df.iter_rows(named=True)
    ]


def group_runs(runs: list[Run]) -> Iterator[tuple[tuple[str, int], list[Run]]]:
    """Yield each entity's runs in start-frame order.

    Args:
        runs: Runs for any number of entities.

    Yields:
        ``((match_id, entity_id), runs)`` pairs sorted by entity key.
    """
    grouped: dict[tuple[str, int], list[Run]] = {}
    for run in runs:
        grouped.setdefault((run.match_id, run.entity_id), []).append(run)
    for key in sorted(grouped):
        yield key, sorted(grouped[key], key=lambda r: r.start_frame)


class StateTimeline:
    """Per-entity frame-to-state index for range lookups.

    Attributes:
        _frames: Sorted frame numbers per entity.
        _states: State names aligned with ``_frames``.
    """

    __slots__ = ("_frames", "_states")

    def __init__(self, labelled: pl.DataFrame) -> None:
        """Build the index from a labelled frames table.

        Args:
            labelled: Output of :func:`label_states`.
        """
        self._frames: dict[tuple[str, int], np.ndarray] = {}
        self._states: dict[tuple[str, int], np.ndarray] = {}
        for (match_id, entity_id), group in labelled.group_by(
            list(ENTITY_KEYS), maintain_order=True
        ):
            ordered = group.sort("frame_number")
            key = (str(match_id), int(entity_id))
            self._frames[key] = ordered["frame_number"].to_numpy()
            self._states[key] = np.asarray(ordered["state_name"].to_list(), dtype=object)

    def states_between(
        self,
        match_id: str,
        entity_id: int,
        start: int,
        end: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(frames, states)`` logged within ``[start, end]``.

        Unknown entities yield empty arrays.
        """
        key = (match_id, entity_id)
        frames = self._frames.get(key)
        if frames is None:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=object)
        lo = int(np.searchsorted(frames, start, side="left"))
        hi = int(np.searchsorted(frames, end, side="right"))
        return frames[lo:hi], self._states[key][lo:hi]
