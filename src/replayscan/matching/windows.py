"""Buffered, clamped clip windows around matched spans.

Converts matched chains and ranked punishes into :class:`Clip` objects
whose frame range adds lead-in and follow-through context, clamped to
``[0, frame_count]`` of the match.

Frame numbers in the frame log may include a fixed pre-game offset;
clips are expressed in replay coordinates (log frame minus offset) so
they can be handed straight back to a replay-data fetch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from replayscan.matching.combos import PunishInterval
    from replayscan.matching.sequence import Chain
    from replayscan.sources.schemas import MatchSettings, PlayerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Clip:
    """A matched span after buffering and clamping.

    Invariant: ``0 <= frame_start <= sequence_start <= sequence_end
    <= frame_end <= frame_count``.

    Attributes:
        match_id: Identifier of the match.
        frame_start: First frame of the clip.
        frame_end: Last frame of the clip.
        stage_id: Stage the match was played on.
        entities: Every player of the match.
        entity_id: Player index whose behaviour was matched.
        sequence_start: Start of the matched span.
        sequence_end: End of the matched span.
        punish: Ranked punish behind a combo clip, else ``None``.
    """

    match_id: str
    frame_start: int
    frame_end: int
    stage_id: int
    entities: tuple[PlayerSettings, ...]
    entity_id: int
    sequence_start: int
    sequence_end: int
    punish: PunishInterval | None = None


def resolve_window(
    sequence_start: int,
    sequence_end: int,
    frame_count: int,
    pre_frames: int,
    post_frames: int,
) -> tuple[int, int]:
    """Expand a span by a buffer and clamp it to the match.

    Args:
        sequence_start: First frame of the span.
        sequence_end: Last frame of the span.
        frame_count: Total frames in the match.
        pre_frames: Frames of context before the span.
        post_frames: Frames of context after the span.

    Returns:
        ``(frame_start, frame_end)`` with
        ``frame_start = max(0, sequence_start - pre_frames)`` and
        ``frame_end = min(frame_count, sequence_end + post_frames)``.
    """
    return max(0, sequence_start - pre_frames), min(frame_count, sequence_end + post_frames)


def _clip_for_span(
    match_id: str,
    entity_id: int,
    log_start: int,
    log_end: int,
    settings: dict[str, MatchSettings],
    players: dict[str, tuple[PlayerSettings, ...]],
    pre_frames: int,
    post_frames: int,
    frame_offset: int,
    punish: PunishInterval | None = None,
) -> Clip | None:
    match = settings.get(match_id)
    if match is None:
        logger.warning("No match settings for %s; dropping clip", match_id)
        return None

    start = log_start - frame_offset
    end = log_end - frame_offset
    if start < 0 or end > match.frame_count:
        logger.debug(
            "Span %d-%d of %s lies outside the match timeline; dropping clip",
            start,
            end,
            match_id,
        )
        return None

    frame_start, frame_end = resolve_window(start, end, match.frame_count, pre_frames, post_frames)
    return Clip(
        match_id=match_id,
        frame_start=frame_start,
        frame_end=frame_end,
        stage_id=match.stage_id,
        entities=players.get(match_id, ()),
        entity_id=entity_id,
        sequence_start=start,
        sequence_end=end,
        punish=punish,
    )


def _dedupe_and_sort(clips: list[Clip]) -> list[Clip]:
    seen: set[tuple[str, int, int]] = set()
    unique: list[Clip] = []
    for clip in sorted(clips, key=lambda c: (c.match_id, c.frame_start, c.frame_end, c.entity_id)):
        key = (clip.match_id, clip.frame_start, clip.frame_end)
        if key in seen:
            continue
        seen.add(key)
        unique.append(clip)
    return unique


def build_sequence_clips(
    chains: list[Chain],
    settings: dict[str, MatchSettings],
    players: dict[str, tuple[PlayerSettings, ...]],
    buffer_frames: int,
    frame_offset: int = 0,
) -> list[Clip]:
    """Turn matched chains into clips.

    The lead-in is twice the buffer (``2 * buffer_frames``) and the
    follow-through is one buffer. Chains resolving to the same
    ``(match_id, frame_start, frame_end)`` collapse into one clip.

    Args:
        chains: Matched chains in log coordinates.
        settings: Match settings keyed by match id.
        players: Player settings keyed by match id.
        buffer_frames: Base buffer size.
        frame_offset: Pre-game offset subtracted from log frames.

    Returns:
        Clips ordered by ``(match_id, frame_start)``.
    """
    clips = [
        _clip_for_span(
            chain.match_id,
            chain.entity_id,
            chain.sequence_start,
            chain.sequence_end,
            settings,
            players,
            pre_frames=2 * buffer_frames,
            post_frames=buffer_frames,
            frame_offset=frame_offset,
        )
        for chain in chains
    ]
    return _dedupe_and_sort([c for c in clips if c is not None])


def build_combo_clips(
    punishes: list[PunishInterval],
    settings: dict[str, MatchSettings],
    players: dict[str, tuple[PlayerSettings, ...]],
    pre_frames: int,
    post_frames: int,
    frame_offset: int = 0,
) -> list[Clip]:
    """Turn ranked punishes into clips with the combo buffer.

    Args:
        punishes: Ranked punishes in log coordinates.
        settings: Match settings keyed by match id.
        players: Player settings keyed by match id.
        pre_frames: Frames of context before each punish.
        post_frames: Frames of context after each punish.
        frame_offset: Pre-game offset subtracted from log frames.

    Returns:
        Clips ordered by ``(match_id, frame_start)``.
    """
    clips = [
        _clip_for_span(
            p.match_id,
            p.entity_id,
            p.start_frame,
            p.end_frame,
            settings,
            players,
            pre_frames=pre_frames,
            post_frames=post_frames,
            frame_offset=frame_offset,
            punish=p,
        )
        for p in punishes
    ]
    return _dedupe_and_sort([c for c in clips if c is not None])
