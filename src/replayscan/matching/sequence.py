"""Template matching over ordered action-state runs.

A :class:`SequenceSpec` is an ordered list of steps, each naming an
action state with optional frame-count bounds. A chain matches when an
entity's runs, taken in order and without skipping any run, satisfy the
steps one for one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from replayscan.exceptions import RequestValidationError
from replayscan.matching.runs import group_runs

if TYPE_CHECKING:
    from replayscan.matching.runs import Run, StateTimeline

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Template
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SequenceStep:
    """One step of a sequence template.

    Attributes:
        state_name: Action state the run must hold.
        min_frames: Minimum run length (inclusive), if bounded.
        max_frames: Maximum run length (inclusive), if bounded.
    """

    state_name: str
    min_frames: int | None = None
    max_frames: int | None = None

    def __post_init__(self) -> None:
        """Validate the bounds."""
        if not self.state_name:
            msg = "state_name must be non-empty"
            raise ValueError(msg)
        for name, bound in (("min_frames", self.min_frames), ("max_frames", self.max_frames)):
            if bound is not None and bound < 0:
                msg = f"{name} must be >= 0, got {bound}"
                raise ValueError(msg)
        if (
            self.min_frames is not None
            and self.max_frames is not None
            and self.min_frames > self.max_frames
        ):
            msg = (
                f"min_frames ({self.min_frames}) must be <= "
                f"max_frames ({self.max_frames})"
            )
            raise ValueError(msg)

    def accepts(self, run: Run) -> bool:
        """Return whether *run* satisfies this step."""
        if run.state_name != self.state_name:
            return False
        if self.min_frames is not None and run.frame_count < self.min_frames:
            return False
        return self.max_frames is None or run.frame_count <= self.max_frames


@dataclass(frozen=True, slots=True)
class SequenceSpec:
    """An ordered sequence template.

    Attributes:
        steps: Steps in the order they must occur.
    """

    steps: tuple[SequenceStep, ...]

    def __post_init__(self) -> None:
        """Reject empty templates."""
        if not self.steps:
            msg = "A sequence template needs at least one step"
            raise ValueError(msg)

    @property
    def vocabulary(self) -> frozenset[str]:
        """State names mentioned anywhere in the template."""
        return frozenset(step.state_name for step in self.steps)

    @classmethod
    def from_actions(cls, actions: Any) -> SequenceSpec:
        """Build a template from request action dicts.

        Each entry is ``{"action": str, "minFrames"?: int, "maxFrames"?: int}``.

        Args:
            actions: List of action dicts from a request body.

        Returns:
            The validated template.

        Raises:
            RequestValidationError: If the list is empty or an entry is
                malformed.
        """
        if not isinstance(actions, list) or not actions:
            msg = "actions must be a non-empty list"
            raise RequestValidationError(msg)

        steps: list[SequenceStep] = []
        for idx, entry in enumerate(actions):
            if not isinstance(entry, dict) or not isinstance(entry.get("action"), str):
                msg = f"actions[{idx}] must be an object with a string 'action'"
                raise RequestValidationError(msg)
            try:
                steps.append(
                    SequenceStep(
                        state_name=entry["action"],
                        min_frames=_optional_int(entry.get("minFrames"), idx, "minFrames"),
                        max_frames=_optional_int(entry.get("maxFrames"), idx, "maxFrames"),
                    )
                )
            except ValueError as exc:
                msg = f"actions[{idx}]: {exc}"
                raise RequestValidationError(msg) from exc
        return cls(steps=tuple(steps))

    def to_params(self) -> list[dict[str, Any]]:
        """Return the normalized, JSON-ready form of the template."""
        return [
            {
                "action": step.state_name,
                "minFrames": step.min_frames,
                "maxFrames": step.max_frames,
            }
            for step in self.steps
        ]


def _optional_int(value: Any, idx: int, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"actions[{idx}].{name} must be a number"
        raise RequestValidationError(msg)
    if isinstance(value, float) and not value.is_integer():
        msg = f"actions[{idx}].{name} must be a whole number"
        raise RequestValidationError(msg)
    return int(value)


# ------------------------------------------------------------------
# Chains
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Chain:
    """A run sequence matching a template, one run per step.

    Attributes:
        match_id: Identifier of the match.
        entity_id: Player index of the entity.
        runs: Matched runs in step order.
    """

    match_id: str
    entity_id: int
    runs: tuple[Run, ...]

    @property
    def sequence_start(self) -> int:
        return self.runs[0].start_frame

    @property
    def sequence_end(self) -> int:
        return self.runs[-1].end_frame


def find_candidate_chains(runs: list[Run], spec: SequenceSpec) -> list[Chain]:
    """Find run sequences matching the template, before validity checks.

    For every entity, each run matching step 0 anchors a candidate; the
    next ``N - 1`` runs of that entity must then match steps ``1..N-1``
    in order. Entities with fewer than ``N`` runs yield nothing.

    Args:
        runs: Runs for any number of entities.
        spec: Template to match.

    Returns:
        Candidate chains ordered by entity and start frame.
    """
    n = len(spec.steps)
    chains: list[Chain] = []

    for (match_id, entity_id), entity_runs in group_runs(runs):
        if len(entity_runs) < n:
            continue
        for pos in range(len(entity_runs) - n + 1):
            window = entity_runs[pos : pos + n]
            if all(step.accepts(run) for step, run in zip(spec.steps, window)):
                chains.append(Chain(match_id=match_id, entity_id=entity_id, runs=tuple(window)))

    return chains


def is_valid_chain(chain: Chain, timeline: StateTimeline, vocabulary: frozenset[str]) -> bool:
    """Check that no stray vocabulary state falls inside the chain.

    Every frame of the chain's entity within
    ``[sequence_start, sequence_end]`` whose state belongs to the
    template vocabulary must lie inside one of the chain's runs holding
    that same state.

    Args:
        chain: Candidate chain.
        timeline: Frame-to-state index for the chain's entity.
        vocabulary: State names of the template.

    Returns:
        ``True`` if the chain accounts for every vocabulary frame.
    """
    frames, states = timeline.states_between(
        chain.match_id, chain.entity_id, chain.sequence_start, chain.sequence_end
    )
    for frame, state in zip(frames.tolist(), states.tolist()):
        if state not in vocabulary:
            continue
        covered = any(
            run.state_name == state and run.start_frame <= frame <= run.end_frame
            for run in chain.runs
        )
        if not covered:
            return False
    return True


def find_chains(
    runs: list[Run],
    spec: SequenceSpec,
    timeline: StateTimeline | None = None,
) -> list[Chain]:
    """Find template matches, discarding chains that fail validity.

    Args:
        runs: Runs for any number of entities.
        spec: Template to match.
        timeline: Frame-to-state index used for the validity check;
            when ``None`` the check is skipped.

    Returns:
        Surviving chains ordered by entity and start frame.
    """
    candidates = find_candidate_chains(runs, spec)
    if timeline is None:
        return candidates

    vocabulary = spec.vocabulary
    valid = [c for c in candidates if is_valid_chain(c, timeline, vocabulary)]
    if len(valid) != len(candidates):
        logger.debug(
            "Discarded %d of %d candidate chains with stray template states",
            len(candidates) - len(valid),
            len(candidates),
        )
    return valid
