"""Replay stubs returned by sequence and combo searches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from replayscan.matching.windows import Clip


@dataclass(slots=True)
class ReplayStub:
    """A clip enriched with player metadata and its ``bugged`` tag.

    Stubs are the only mutable result type: the tag enricher sets
    ``bugged`` in place.

    Attributes:
        match_id: Identifier of the match.
        stage_id: Stage the match was played on.
        frame_start: First frame of the clip.
        frame_end: Last frame of the clip.
        original_sequence_start: Start of the matched span.
        original_sequence_end: End of the matched span.
        entity_id: Player index whose behaviour was matched.
        players: ``{"characterId", "tag", "playerIndex"}`` per player.
        bugged: Whether the clip has been tagged as bugged.
        num_moves: Moves landed, for combo stubs.
        start_pct: Victim percent at punish start, for combo stubs.
        end_pct: Victim percent at punish end, for combo stubs.
    """

    match_id: str
    stage_id: int
    frame_start: int
    frame_end: int
    original_sequence_start: int
    original_sequence_end: int
    entity_id: int
    players: list[dict[str, Any]] = field(default_factory=list)
    bugged: bool = False
    num_moves: int | None = None
    start_pct: float | None = None
    end_pct: float | None = None

    @property
    def damage_dealt(self) -> float | None:
        if self.start_pct is None or self.end_pct is None:
            return None
        return self.end_pct - self.start_pct

    @property
    def is_combo(self) -> bool:
        return self.num_moves is not None

    @classmethod
    def from_clip(cls, clip: Clip) -> ReplayStub:
        """Build an untagged stub from a resolved clip."""
        stub = cls(
            match_id=clip.match_id,
            stage_id=clip.stage_id,
            frame_start=clip.frame_start,
            frame_end=clip.frame_end,
            original_sequence_start=clip.sequence_start,
            original_sequence_end=clip.sequence_end,
            entity_id=clip.entity_id,
            players=[
                {"characterId": p.character_id, "tag": p.tag, "playerIndex": p.player_index}
                for p in sorted(clip.entities, key=lambda p: p.player_index)
            ],
        )
        if clip.punish is not None:
            stub.num_moves = clip.punish.num_moves
            stub.start_pct = clip.punish.start_pct
            stub.end_pct = clip.punish.end_pct
        return stub

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "matchId": self.match_id,
            "stageId": self.stage_id,
            "frameStart": self.frame_start,
            "frameEnd": self.frame_end,
            "originalSequenceStart": self.original_sequence_start,
            "originalSequenceEnd": self.original_sequence_end,
            "entityId": self.entity_id,
            "players": [dict(p) for p in self.players],
            "bugged": self.bugged,
        }
        if self.is_combo:
            payload.update(
                numMoves=self.num_moves,
                startPct=self.start_pct,
                endPct=self.end_pct,
                damageDealt=self.damage_dealt,
            )
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ReplayStub:
        """Rebuild a stub from its cached payload form."""
        return cls(
            match_id=str(payload["matchId"]),
            stage_id=int(payload["stageId"]),
            frame_start=int(payload["frameStart"]),
            frame_end=int(payload["frameEnd"]),
            original_sequence_start=int(payload["originalSequenceStart"]),
            original_sequence_end=int(payload["originalSequenceEnd"]),
            entity_id=int(payload["entityId"]),
            players=[dict(p) for p in payload.get("players", [])],
            bugged=bool(payload.get("bugged", False)),
            num_moves=payload.get("numMoves"),
            start_pct=payload.get("startPct"),
            end_pct=payload.get("endPct"),
        )
