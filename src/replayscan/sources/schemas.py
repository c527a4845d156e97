"""Frame-log schemas for the replay sequence search engine.

Defines the table names and column layouts of the frame log, plus the
canonical records built from them. Every record is a frozen, slotted
dataclass to guarantee immutability and memory efficiency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import polars as pl

# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------

FRAMES_TABLE = "frames"
ACTIONS_TABLE = "actions"
MATCH_SETTINGS_TABLE = "match_settings"
PLAYER_SETTINGS_TABLE = "player_settings"
ITEMS_TABLE = "items"
PLATFORMS_TABLE = "platform_frames"
PUNISHES_TABLE = "punishes"

KNOWN_TABLES: frozenset[str] = frozenset(
    {
        FRAMES_TABLE,
        ACTIONS_TABLE,
        MATCH_SETTINGS_TABLE,
        PLAYER_SETTINGS_TABLE,
        ITEMS_TABLE,
        PLATFORMS_TABLE,
        PUNISHES_TABLE,
    }
)

# Column holding the absolute frame number of each table.
FRAME_COLUMNS: dict[str, str] = {
    FRAMES_TABLE: "frame_number",
    ITEMS_TABLE: "frame",
    PLATFORMS_TABLE: "frame",
    PUNISHES_TABLE: "start_frame",
}

FRAME_KEY_COLUMNS: tuple[str, ...] = ("match_id", "player_index", "frame_number")

PUNISH_COLUMNS: tuple[str, ...] = (
    "match_id",
    "player_index",
    "start_frame",
    "end_frame",
    "num_moves",
    "start_pct",
    "end_pct",
)


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FrameRecord:
    """A single per-entity frame of the frame log.

    Attributes:
        match_id: Identifier of the match.
        entity_id: Player index of the entity within the match.
        frame_number: Absolute frame number in log coordinates.
        state_id: Categorical action state id at this frame.
        attributes: Numeric attributes (position, percent, ...).
    """

    match_id: str
    entity_id: int
    frame_number: int
    state_id: int
    attributes: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate that *frame_number* is non-negative."""
        if self.frame_number < 0:
            msg = f"frame_number must be >= 0, got {self.frame_number}"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class MatchSettings:
    """Per-match metadata.

    Attributes:
        match_id: Identifier of the match.
        stage_id: Stage the match was played on.
        frame_count: Total number of frames in the match.
        replay_format_version: Version string of the source replay.
        timer_start: Match timer at start, in seconds.
    """

    match_id: str
    stage_id: int
    frame_count: int
    replay_format_version: str = ""
    timer_start: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> MatchSettings:
        """Build settings from a ``match_settings`` row."""
        return cls(
            match_id=str(row["match_id"]),
            stage_id=int(row["stage"]),
            frame_count=int(row["frame_count"]),
            replay_format_version=str(row.get("slippi_version") or ""),
            timer_start=int(row.get("timer") or 0),
        )


@dataclass(frozen=True, slots=True)
class PlayerSettings:
    """Per-player metadata for one match.

    Attributes:
        match_id: Identifier of the match.
        player_index: Stable index of the player within the match.
        port: Controller port.
        character_id: External character id.
        tag: Display tag of the player.
        connect_code: Online connect code, or empty.
    """

    match_id: str
    player_index: int
    port: int
    character_id: int
    tag: str
    connect_code: str = ""

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PlayerSettings:
        """Build settings from a ``player_settings`` row."""
        return cls(
            match_id=str(row["match_id"]),
            player_index=int(row["player_index"]),
            port=int(row.get("port") or 0),
            character_id=int(row["ext_char"]),
            tag=str(row.get("player_tag") or ""),
            connect_code=str(row.get("slippi_code") or ""),
        )


def frames_to_dataframe(records: list[FrameRecord]) -> pl.DataFrame:
    """Convert frame records to a ``frames`` table.

    Attribute keys become columns; records lacking an attribute get
    null in that column.

    Args:
        records: Frame records in any order.

    Returns:
        A :class:`polars.DataFrame` with ``match_id``, ``player_index``,
        ``frame_number``, ``action_post`` and one column per attribute.
    """
    rows = [
        {
            "match_id": r.match_id,
            "player_index": r.entity_id,
            "frame_number": r.frame_number,
            "action_post": r.state_id,
            **r.attributes,
        }
        for r in records
    ]
    if not rows:
        return pl.DataFrame(
            schema={
                "match_id": pl.Utf8,
                "player_index": pl.Int64,
                "frame_number": pl.Int64,
                "action_post": pl.Int64,
            }
        )
    return pl.DataFrame(rows, infer_schema_length=None)
