"""Replay frame reconstruction."""

from replayscan.frames.assembler import (
    FrameGap,
    FrameObject,
    ReplayData,
    assemble_replay,
    detect_gaps,
    log_frame_range,
)

__all__ = [
    "FrameGap",
    "FrameObject",
    "ReplayData",
    "assemble_replay",
    "detect_gaps",
    "log_frame_range",
]
