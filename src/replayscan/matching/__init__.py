"""Run encoding, sequence matching, combo ranking and clip windows."""

from replayscan.matching.combos import ComboMode, PunishInterval, rank_combos
from replayscan.matching.runs import Run, StateTimeline, encode_runs, label_states
from replayscan.matching.sequence import (
    Chain,
    SequenceSpec,
    SequenceStep,
    find_candidate_chains,
    find_chains,
    is_valid_chain,
)
from replayscan.matching.windows import (
    Clip,
    build_combo_clips,
    build_sequence_clips,
    resolve_window,
)

__all__ = [
    "Chain",
    "Clip",
    "ComboMode",
    "PunishInterval",
    "Run",
    "SequenceSpec",
    "SequenceStep",
    "StateTimeline",
    "build_combo_clips",
    "build_sequence_clips",
    "encode_runs",
    "find_candidate_chains",
    "find_chains",
    "is_valid_chain",
    "label_states",
    "rank_combos",
    "resolve_window",
]
