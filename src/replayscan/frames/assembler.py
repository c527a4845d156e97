"""Reconstruction of per-frame replay objects from frame-log rows.

Turns the raw per-player rows of a requested window, together with item
and platform rows, into an ordered list of :class:`FrameObject` values
numbered from zero relative to the window. Holes in the absolute frame
numbering are detected and logged but never fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable

    import polars as pl

    from replayscan.config import AssemblerConfig
    from replayscan.sources.schemas import MatchSettings, PlayerSettings

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Column mappings
# ------------------------------------------------------------------

_BUTTON_BITS: tuple[tuple[str, int], ...] = (
    ("dPadLeft", 0x0001),
    ("dPadRight", 0x0002),
    ("dPadDown", 0x0004),
    ("dPadUp", 0x0008),
    ("z", 0x0010),
    ("rTriggerDigital", 0x0020),
    ("lTriggerDigital", 0x0040),
    ("a", 0x0100),
    ("b", 0x0200),
    ("x", 0x0400),
    ("y", 0x0800),
    ("start", 0x1000),
)

# (payload field, frame-log column, cast)
_STATE_FIELDS: tuple[tuple[str, str, Callable[[Any], Any]], ...] = (
    ("internalCharacterId", "char_id", int),
    ("actionStateId", "action_post", int),
    ("xPosition", "pos_x_post", float),
    ("yPosition", "pos_y_post", float),
    ("facingDirection", "face_dir_post", float),
    ("percent", "percent_post", float),
    ("shieldSize", "shield", float),
    ("lastHittingAttackId", "hit_with", int),
    ("currentComboCount", "combo", int),
    ("lastHitBy", "hurt_by", int),
    ("stocksRemaining", "stocks", int),
    ("actionStateFrameCounter", "action_fc", float),
    ("hitstunRemaining", "hitstun", float),
    ("lastGroundId", "ground_id", int),
    ("jumpsRemaining", "jumps", int),
    ("lCancelStatus", "l_cancel", int),
    ("hurtboxCollisionState", "hurtbox", int),
    ("selfInducedAirXSpeed", "self_air_x", float),
    ("selfInducedAirYSpeed", "self_air_y", float),
    ("attackBasedXSpeed", "attack_x", float),
    ("attackBasedYSpeed", "attack_y", float),
    ("selfInducedGroundXSpeed", "self_grd_x", float),
    ("hitlagRemaining", "hitlag", float),
)

_ITEM_FIELDS: tuple[tuple[str, str, Callable[[Any], Any]], ...] = (
    ("typeId", "item_type", int),
    ("state", "state", int),
    ("facingDirection", "face_dir", float),
    ("xVelocity", "xvel", float),
    ("yVelocity", "yvel", float),
    ("xPosition", "xpos", float),
    ("yPosition", "ypos", float),
    ("spawnId", "spawn_id", int),
    ("owner", "owner", int),
)


def _num(row: dict[str, Any], column: str, cast: Callable[[Any], Any]) -> Any:
    value = row.get(column)
    return cast(0) if value is None else cast(value)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


# ------------------------------------------------------------------
# Output types
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FrameGap:
    """A hole in the absolute frame numbering.

    Attributes:
        after_frame: Relative index of the frame preceding the hole.
        missing_start: First missing absolute frame.
        missing_end: Last missing absolute frame.
    """

    after_frame: int
    missing_start: int
    missing_end: int


@dataclass(frozen=True, slots=True)
class FrameObject:
    """All entity, item and stage state for one frame.

    Attributes:
        frame_number: 0-based index relative to the requested window.
        absolute_frame: Frame number in log coordinates.
        random_seed: RNG seed recorded for the frame.
        players: Player payloads sorted by player index.
        items: Item payloads present on the frame.
        stage: Stage payload, or ``None`` without platform data.
    """

    frame_number: int
    absolute_frame: int
    random_seed: int
    players: tuple[dict[str, Any], ...]
    items: tuple[dict[str, Any], ...]
    stage: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "frameNumber": self.frame_number,
            "randomSeed": self.random_seed,
            "players": list(self.players),
            "items": list(self.items),
        }
        if self.stage is not None:
            payload["stage"] = self.stage
        return payload


@dataclass(frozen=True, slots=True)
class ReplayData:
    """Materialized frames of a match window.

    Attributes:
        settings: Match and player settings payload.
        frames: Frames in ascending order.
        ending: Game-ending payload.
        warning: Truncation warning in full-replay mode, else ``None``.
        gaps: Holes detected in the absolute frame numbering.
    """

    settings: dict[str, Any]
    frames: tuple[FrameObject, ...]
    ending: dict[str, Any]
    warning: str | None = None
    gaps: tuple[FrameGap, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "settings": self.settings,
            "frames": [f.to_payload() for f in self.frames],
            "ending": self.ending,
        }
        if self.warning is not None:
            payload["warning"] = self.warning
        return payload


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------


def log_frame_range(frame_start: int, frame_end: int, config: AssemblerConfig) -> tuple[int, int]:
    """Translate a replay-coordinate range into log coordinates."""
    return frame_start + config.pre_game_offset, frame_end + config.pre_game_offset


def settings_payload(
    settings: MatchSettings,
    players: tuple[PlayerSettings, ...],
) -> dict[str, Any]:
    """Build the ``settings`` section of a replay payload."""
    return {
        "matchId": settings.match_id,
        "replayFormatVersion": settings.replay_format_version,
        "stageId": settings.stage_id,
        "timerStart": settings.timer_start,
        "frameCount": settings.frame_count,
        "playerSettings": [
            {
                "playerIndex": p.player_index,
                "port": p.port,
                "externalCharacterId": p.character_id,
                "nametag": p.tag,
                "displayName": p.tag,
                "connectCode": p.connect_code,
            }
            for p in sorted(players, key=lambda p: p.player_index)
        ],
    }


def _player_payload(row: dict[str, Any], relative: int) -> dict[str, Any]:
    player_index = int(row["player_index"])
    is_nana = _flag(row.get("follower"))
    buttons = int(row.get("buttons") or 0)
    pressed = {name: bool(buttons & bit) for name, bit in _BUTTON_BITS}
    phys_l = _num(row, "phys_l", float)
    phys_r = _num(row, "phys_r", float)

    state: dict[str, Any] = {
        "frameNumber": relative,
        "playerIndex": player_index,
        "isNana": is_nana,
    }
    state.update({name: _num(row, column, cast) for name, column, cast in _STATE_FIELDS})
    state["isGrounded"] = not _flag(row.get("airborne"))
    state["isInHitstun"] = state["hitstunRemaining"] > 0
    state["isDead"] = not _flag(row.get("alive", True))

    return {
        "frameNumber": relative,
        "playerIndex": player_index,
        "inputs": {
            "frameNumber": relative,
            "playerIndex": player_index,
            "isNana": is_nana,
            "physical": {**pressed, "lTriggerAnalog": phys_l, "rTriggerAnalog": phys_r},
            "processed": {
                **pressed,
                "joystickX": _num(row, "joy_x", float),
                "joystickY": _num(row, "joy_y", float),
                "cStickX": _num(row, "c_x", float),
                "cStickY": _num(row, "c_y", float),
                "anyTrigger": max(phys_l, phys_r),
            },
        },
        "state": state,
    }


def _item_payloads(
    item_rows: pl.DataFrame | None,
    item_type_ids: tuple[int, ...],
) -> dict[int, list[dict[str, Any]]]:
    by_frame: dict[int, list[dict[str, Any]]] = {}
    if item_rows is None or item_rows.is_empty():
        return by_frame
    allowed = set(item_type_ids)
    for row in item_rows.iter_rows(named=True):
        if int(row["item_type"]) not in allowed:
            continue
        item = {name: _num(row, column, cast) for name, column, cast in _ITEM_FIELDS}
        by_frame.setdefault(int(row["frame"]), []).append(item)
    return by_frame


def _platform_payloads(platform_rows: pl.DataFrame | None) -> dict[int, dict[str, float]]:
    if platform_rows is None or platform_rows.is_empty():
        return {}
    return {
        int(row["frame"]): {
            "fodLeftPlatformHeight": _num(row, "left_height", float),
            "fodRightPlatformHeight": _num(row, "right_height", float),
        }
        for row in platform_rows.iter_rows(named=True)
    }


def detect_gaps(absolute_frames: np.ndarray) -> tuple[FrameGap, ...]:
    """Find holes between consecutive absolute frame numbers.

    Args:
        absolute_frames: Sorted, unique absolute frame numbers.

    Returns:
        One :class:`FrameGap` per hole, in frame order.
    """
    if absolute_frames.size < 2:
        return ()
    steps = np.diff(absolute_frames)
    return tuple(
        FrameGap(
            after_frame=int(i),
            missing_start=int(absolute_frames[i]) + 1,
            missing_end=int(absolute_frames[i + 1]) - 1,
        )
        for i in np.flatnonzero(steps > 1)
    )


def assemble_replay(
    settings: MatchSettings,
    players: tuple[PlayerSettings, ...],
    player_rows: pl.DataFrame,
    item_rows: pl.DataFrame | None,
    platform_rows: pl.DataFrame | None,
    config: AssemblerConfig,
    full_replay: bool = False,
) -> ReplayData:
    """Build replay frames for a window of a match.

    Player rows are grouped by absolute frame number, the frame numbers
    sorted ascending and re-indexed from zero. Within a frame, players
    are ordered by ``player_index``. Item and platform rows are attached
    by absolute frame number. In full-replay mode only the first
    ``config.full_replay_frame_cap`` frames are kept and a truncation
    warning is attached when frames were dropped.

    Args:
        settings: Settings of the match.
        players: Player settings of the match.
        player_rows: ``frames`` table rows for the window.
        item_rows: ``items`` table rows for the window, if any.
        platform_rows: ``platform_frames`` rows for the window, if any.
        config: Assembler configuration.
        full_replay: Whether the whole match was requested.

    Returns:
        The assembled :class:`ReplayData`.
    """
    grouped: dict[int, list[dict[str, Any]]] = {}
    for row in player_rows.iter_rows(named=True):
        grouped.setdefault(int(row["frame_number"]), []).append(row)

    absolute = np.array(sorted(grouped), dtype=np.int64)

    warning: str | None = None
    if full_replay and absolute.size > config.full_replay_frame_cap:
        absolute = absolute[: config.full_replay_frame_cap]
        warning = (
            f"Full replay truncated to first {absolute.size} frames due to size limits"
        )
        logger.warning("Match %s: %s", settings.match_id, warning)

    items = _item_payloads(item_rows, config.item_type_ids)
    platforms = _platform_payloads(platform_rows)

    frames: list[FrameObject] = []
    for relative, frame_number in enumerate(absolute.tolist()):
        rows = sorted(grouped[frame_number], key=lambda r: int(r["player_index"]))
        platform = platforms.get(frame_number)
        frames.append(
            FrameObject(
                frame_number=relative,
                absolute_frame=frame_number,
                random_seed=int(rows[0].get("seed") or 0),
                players=tuple(_player_payload(r, relative) for r in rows),
                items=tuple(
                    {"frameNumber": relative, **item} for item in items.get(frame_number, ())
                ),
                stage=None if platform is None else {"frameNumber": relative, **platform},
            )
        )

    gaps = detect_gaps(absolute)
    for gap in gaps:
        logger.warning(
            "Match %s: frames %d-%d missing after relative frame %d",
            settings.match_id,
            gap.missing_start,
            gap.missing_end,
            gap.after_frame,
        )

    return ReplayData(
        settings=settings_payload(settings, players),
        frames=tuple(frames),
        ending={"gameEndMethod": None, "lrasInitiatorIndex": None, "placements": []},
        warning=warning,
        gaps=gaps,
    )
