"""Top-K punish ranking per match.

Ranks precomputed punish intervals independently of any sequence
template. Two modes are supported:

* ``length`` -- most moves first.
* ``damage`` -- only punishes dealing more than the damage threshold,
  most damage first.

Ties are broken by earlier ``start_frame``; at most ``top_k`` punishes
are kept per match.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

import polars as pl

from replayscan.exceptions import FrameLogError
from replayscan.sources.schemas import PUNISH_COLUMNS

if TYPE_CHECKING:
    from replayscan.config import ComboConfig


class ComboMode(enum.Enum):
    """Ranking statistic for punishes."""

    LENGTH = "length"
    DAMAGE = "damage"


@dataclass(frozen=True, slots=True)
class PunishInterval:
    """A punish performed by one entity.

    Attributes:
        match_id: Identifier of the match.
        entity_id: Player index of the punishing entity.
        start_frame: First frame of the punish.
        end_frame: Last frame of the punish.
        num_moves: Number of moves landed.
        start_pct: Victim percent when the punish began.
        end_pct: Victim percent when the punish ended.
    """

    match_id: str
    entity_id: int
    start_frame: int
    end_frame: int
    num_moves: int
    start_pct: float
    end_pct: float

    @property
    def damage_dealt(self) -> float:
        return self.end_pct - self.start_pct


def rank_combos(
    punishes: pl.DataFrame,
    mode: ComboMode,
    config: ComboConfig,
) -> list[PunishInterval]:
    """Select the top punishes of every match.

    Args:
        punishes: Punish table with the columns of
            :data:`~replayscan.sources.schemas.PUNISH_COLUMNS`.
        mode: Ranking statistic.
        config: Combo configuration (``top_k``, ``damage_threshold``).

    Returns:
        Ranked punishes ordered by ``match_id`` then rank.

    Raises:
        FrameLogError: If a required column is missing.
    """
    missing = [c for c in PUNISH_COLUMNS if c not in punishes.columns]
    if missing:
        msg = f"punishes table is missing columns {missing}"
        raise FrameLogError(msg)

    if punishes.is_empty():
        return []

    df = punishes.with_columns(
        (pl.col("end_pct") - pl.col("start_pct")).alias("damage_dealt")
    )

    if mode is ComboMode.DAMAGE:
        df = df.filter(pl.col("damage_dealt") > config.damage_threshold)
        rank_col = "damage_dealt"
    else:
        rank_col = "num_moves"

    ranked = (
        df.sort(
            ["match_id", rank_col, "start_frame"],
            descending=[False, True, False],
        )
        .with_columns(pl.int_range(pl.len()).over("match_id").alias("_rank"))
        .filter(pl.col("_rank") < config.top_k)
    )

    return [
        PunishInterval(
            match_id=str(row["match_id"]),
            entity_id=int(row["player_index"]),
            start_frame=int(row["start_frame"]),
            end_frame=int(row["end_frame"]),
            num_moves=int(row["num_moves"]),
            start_pct=float(row["start_pct"]),
            end_pct=float(row["end_pct"]),
        )
        for row in ranked.iter_rows(named=True)
    ]
