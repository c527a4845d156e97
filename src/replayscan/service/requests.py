"""Typed request shapes and their parsers.

Request bodies arrive as decoded JSON objects. Each parser validates the
fields it needs and raises :class:`RequestValidationError` on anything
missing or malformed, before any data source is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from replayscan.exceptions import RequestValidationError
from replayscan.matching.combos import ComboMode
from replayscan.matching.sequence import SequenceSpec


def _require_object(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        msg = "Request body must be a JSON object"
        raise RequestValidationError(msg)
    return body


def _optional_match_id(body: dict[str, Any]) -> str | None:
    match_id = body.get("matchId")
    if match_id is None:
        return None
    if not isinstance(match_id, str) or not match_id:
        msg = "matchId must be a non-empty string"
        raise RequestValidationError(msg)
    return match_id


def _require_match_id(body: dict[str, Any]) -> str:
    match_id = _optional_match_id(body)
    if match_id is None:
        msg = "matchId is required"
        raise RequestValidationError(msg)
    return match_id


def _frame(body: dict[str, Any], name: str) -> int | None:
    value = body.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"{name} must be a non-negative integer"
        raise RequestValidationError(msg)
    return value


def _required_frame(body: dict[str, Any], name: str) -> int:
    value = _frame(body, name)
    if value is None:
        msg = f"{name} is required"
        raise RequestValidationError(msg)
    return value


def _frame_bounds(body: dict[str, Any]) -> tuple[int | None, int | None]:
    start = _frame(body, "frameStart")
    end = _frame(body, "frameEnd")
    if start is not None and end is not None and start > end:
        msg = f"frameStart ({start}) must be <= frameEnd ({end})"
        raise RequestValidationError(msg)
    return start, end


@dataclass(frozen=True, slots=True)
class SequenceQueryRequest:
    """A sequence-template search.

    Attributes:
        spec: Parsed template.
        buffer_frames: Buffer around matched chains, or ``None`` to use
            the configured default.
        match_id: Restrict the search to one match.
    """

    spec: SequenceSpec
    buffer_frames: int | None = None
    match_id: str | None = None

    @classmethod
    def parse(cls, body: Any) -> SequenceQueryRequest:
        body = _require_object(body)
        buffer_frames = body.get("bufferFrames")
        if buffer_frames is not None and (
            isinstance(buffer_frames, bool)
            or not isinstance(buffer_frames, int)
            or buffer_frames < 0
        ):
            msg = "bufferFrames must be a non-negative integer"
            raise RequestValidationError(msg)
        return cls(
            spec=SequenceSpec.from_actions(body.get("actions")),
            buffer_frames=buffer_frames,
            match_id=_optional_match_id(body),
        )


@dataclass(frozen=True, slots=True)
class ComboQueryRequest:
    """A top-K punish search.

    Attributes:
        mode: Ranking statistic.
        match_id: Restrict the search to one match.
    """

    mode: ComboMode
    match_id: str | None = None

    @classmethod
    def parse(cls, body: Any) -> ComboQueryRequest:
        body = _require_object(body)
        combo_type = body.get("comboType")
        try:
            mode = ComboMode(combo_type)
        except ValueError as exc:
            allowed = ", ".join(m.value for m in ComboMode)
            msg = f"comboType must be one of: {allowed}"
            raise RequestValidationError(msg) from exc
        return cls(mode=mode, match_id=_optional_match_id(body))


@dataclass(frozen=True, slots=True)
class ReplayDataRequest:
    """A frame-data fetch for one match.

    Omitting either bound requests the full replay.

    Attributes:
        match_id: Match to fetch.
        frame_start: First frame, in replay coordinates.
        frame_end: Last frame, in replay coordinates.
    """

    match_id: str
    frame_start: int | None = None
    frame_end: int | None = None

    @property
    def full_replay(self) -> bool:
        return self.frame_start is None or self.frame_end is None

    @classmethod
    def parse(cls, body: Any) -> ReplayDataRequest:
        body = _require_object(body)
        start, end = _frame_bounds(body)
        return cls(match_id=_require_match_id(body), frame_start=start, frame_end=end)


@dataclass(frozen=True, slots=True)
class TagUpdateRequest:
    """An update of the ``bugged`` tag on one clip.

    Attributes:
        match_id: Match of the clip.
        frame_start: Clip start frame.
        frame_end: Clip end frame.
        bugged: New tag value.
    """

    match_id: str
    frame_start: int
    frame_end: int
    bugged: bool

    @classmethod
    def parse(cls, body: Any) -> TagUpdateRequest:
        body = _require_object(body)
        start = _required_frame(body, "frameStart")
        end = _required_frame(body, "frameEnd")
        if start > end:
            msg = f"frameStart ({start}) must be <= frameEnd ({end})"
            raise RequestValidationError(msg)
        bugged = body.get("bugged")
        if not isinstance(bugged, bool):
            msg = "bugged must be a boolean"
            raise RequestValidationError(msg)
        return cls(
            match_id=_require_match_id(body),
            frame_start=start,
            frame_end=end,
            bugged=bugged,
        )
