"""Configuration dataclasses for the replay sequence search engine.

All configuration containers are frozen (immutable) and slotted for
memory efficiency and safety. Each dataclass provides sensible defaults
so that a zero-argument ``ServiceConfig()`` is always valid.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

# Item type ids rendered by the viewer (projectiles, turnips, missiles, ...).
DEFAULT_ITEM_TYPE_IDS: tuple[int, ...] = (79, 54, 55, 99, 86, 105, 48, 95, 93, 94, 210)


@dataclass(frozen=True, slots=True)
class MatcherConfig:
    """Configuration for sequence matching.

    Attributes:
        buffer_frames: Base buffer around a matched chain. The clip
            extends ``2 * buffer_frames`` before the chain and
            ``buffer_frames`` after it.
    """

    buffer_frames: int = 120


@dataclass(frozen=True, slots=True)
class ComboConfig:
    """Configuration for the combo ranker.

    Attributes:
        pre_buffer_frames: Frames of lead-in kept before a punish.
        post_buffer_frames: Frames kept after a punish ends.
        top_k: Maximum number of punishes returned per match.
        damage_threshold: Minimum percent dealt (exclusive) for a
            punish to qualify in ``damage`` mode.
    """

    pre_buffer_frames: int = 60
    post_buffer_frames: int = 30
    top_k: int = 3
    damage_threshold: float = 40.0


@dataclass(frozen=True, slots=True)
class AssemblerConfig:
    """Configuration for frame assembly.

    Attributes:
        pre_game_offset: Number of pre-game frames stored in the frame
            log before frame zero of the replay timeline.
        full_replay_frame_cap: Maximum number of frames returned when no
            frame range is requested.
        item_type_ids: Item types attached to assembled frames.
    """

    pre_game_offset: int = 123
    full_replay_frame_cap: int = 10_000
    item_type_ids: tuple[int, ...] = DEFAULT_ITEM_TYPE_IDS


@dataclass(frozen=True, slots=True)
class JobConfig:
    """Configuration for frame-log query jobs.

    Attributes:
        poll_interval_seconds: Delay between status polls.
        max_polls: Number of polls before a job is abandoned.
        max_workers: Worker threads of the local query engine.
    """

    poll_interval_seconds: float = 1.0
    max_polls: int = 300
    max_workers: int = 4


@dataclass(frozen=True, slots=True)
class CacheConfig:
    """Configuration for the result cache.

    Attributes:
        cache_dir: Root directory of cached query results.
    """

    cache_dir: Path = field(default_factory=lambda: Path("data/cache"))


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Master configuration for the replay search service.

    Aggregates all sub-configurations. Validation is performed in
    ``__post_init__`` to ensure invariants hold.

    Attributes:
        matcher: Sequence matcher configuration.
        combo: Combo ranker configuration.
        assembler: Frame assembler configuration.
        job: Query job polling configuration.
        cache: Result cache configuration.

    Raises:
        ValueError: If any configuration invariant is violated.
    """

    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    combo: ComboConfig = field(default_factory=ComboConfig)
    assembler: AssemblerConfig = field(default_factory=AssemblerConfig)
    job: JobConfig = field(default_factory=JobConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    def __post_init__(self) -> None:
        """Validate configuration invariants after initialization."""
        if self.matcher.buffer_frames < 0:
            msg = f"matcher.buffer_frames must be >= 0, got {self.matcher.buffer_frames}"
            raise ValueError(msg)

        if self.combo.pre_buffer_frames < 0 or self.combo.post_buffer_frames < 0:
            msg = (
                f"combo buffers must be >= 0, got "
                f"({self.combo.pre_buffer_frames}, {self.combo.post_buffer_frames})"
            )
            raise ValueError(msg)

        if self.combo.top_k < 1:
            msg = f"combo.top_k must be >= 1, got {self.combo.top_k}"
            raise ValueError(msg)

        if self.assembler.full_replay_frame_cap < 1:
            msg = (
                f"assembler.full_replay_frame_cap must be >= 1, "
                f"got {self.assembler.full_replay_frame_cap}"
            )
            raise ValueError(msg)

        if self.job.poll_interval_seconds <= 0.0:
            msg = (
                f"job.poll_interval_seconds must be positive, "
                f"got {self.job.poll_interval_seconds}"
            )
            raise ValueError(msg)

        if self.job.max_polls < 1:
            msg = f"job.max_polls must be >= 1, got {self.job.max_polls}"
            raise ValueError(msg)
