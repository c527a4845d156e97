"""Run a sequence and a combo search over a local frame log.

Reads the hive-partitioned parquet frame log under ``data/frame_log``,
searches every match of the tenant for the ledge-dash template below,
ranks the damage combos of each match, then writes the stubs to
``data/output`` and logs clip-length statistics.

Usage::

    python scripts/run_sequence_query.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import orjson
from tqdm import tqdm

# ---------------------------------------------------------------------------
# Ensure the src package is importable when running as a standalone script.
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT / "src"))

from replayscan.config import CacheConfig, ServiceConfig  # noqa: E402
from replayscan.exceptions import ReplayScanError  # noqa: E402
from replayscan.matching.combos import ComboMode  # noqa: E402
from replayscan.matching.sequence import SequenceSpec  # noqa: E402
from replayscan.service import (  # noqa: E402
    ComboQueryRequest,
    ReplayScanService,
    ReplayStub,
    SequenceQueryRequest,
)
from replayscan.sources import (  # noqa: E402
    FrameQuery,
    JsonTagStore,
    LocalQueryEngine,
    ParquetTables,
    ResultCache,
    run_query,
)
from replayscan.sources.schemas import MATCH_SETTINGS_TABLE  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

FRAME_LOG_DIR = _PROJECT_ROOT / "data" / "frame_log"
OUTPUT_DIR = _PROJECT_ROOT / "data" / "output"
TENANT_ID = "local"

LEDGE_DASH = [
    {"action": "CLIFF_WAIT", "minFrames": 7},
    {"action": "FALL", "minFrames": 1, "maxFrames": 3},
    {"action": "JUMP", "minFrames": 1, "maxFrames": 5},
    {"action": "AIR_DODGE"},
]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _format_distribution(values: np.ndarray) -> str:
    """Return a one-line percentile summary string.

    Args:
        values: 1-D numeric array.

    Returns:
        Formatted string with mean, std, min, p25, p50, p75, max.
    """
    if len(values) == 0:
        return "(no data)"
    p25, p50, p75 = np.percentile(values, [25, 50, 75])
    return (
        f"mean={np.mean(values):.2f}  std={np.std(values):.2f}  "
        f"min={np.min(values)}  p25={p25:.0f}  p50={p50:.0f}  "
        f"p75={p75:.0f}  max={np.max(values)}"
    )


def _clip_lengths(stubs: list[ReplayStub]) -> np.ndarray:
    return np.array([s.frame_end - s.frame_start for s in stubs], dtype=np.int64)


def _write_stubs(path: Path, stubs: list[ReplayStub]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(
        orjson.dumps([s.to_payload() for s in stubs], option=orjson.OPT_INDENT_2)
    )
    logger.info("Wrote %d stubs to %s", len(stubs), path)


# ------------------------------------------------------------------
# Main
# ------------------------------------------------------------------


def main() -> None:
    """Search every match of the tenant and log clip statistics."""
    config = ServiceConfig(cache=CacheConfig(cache_dir=_PROJECT_ROOT / "data" / "cache"))
    tables = ParquetTables(FRAME_LOG_DIR)

    with LocalQueryEngine(tables, max_workers=config.job.max_workers) as engine:
        service = ReplayScanService(
            engine,
            ResultCache(config.cache.cache_dir),
            JsonTagStore(_PROJECT_ROOT / "data" / "tags.json"),
            config,
        )

        settings = run_query(
            engine,
            FrameQuery(table=MATCH_SETTINGS_TABLE, tenant_id=TENANT_ID, columns=("match_id",)),
            config.job,
        )
        match_ids = sorted(settings["match_id"].unique().to_list())
        logger.info("Discovered %d matches for tenant %s", len(match_ids), TENANT_ID)

        if not match_ids:
            logger.error("No matches found under %s", FRAME_LOG_DIR)
            return

        spec = SequenceSpec.from_actions(LEDGE_DASH)
        sequence_stubs: list[ReplayStub] = []
        combo_stubs: list[ReplayStub] = []
        failed = 0

        for match_id in tqdm(match_ids, desc="Searching matches", unit="match"):
            try:
                sequence_stubs.extend(
                    service.find_sequences(
                        SequenceQueryRequest(spec=spec, match_id=match_id), TENANT_ID
                    )
                )
                combo_stubs.extend(
                    service.rank_combos(
                        ComboQueryRequest(mode=ComboMode.DAMAGE, match_id=match_id), TENANT_ID
                    )
                )
            except ReplayScanError:
                logger.exception("Search failed for match %s", match_id)
                failed += 1

    _write_stubs(OUTPUT_DIR / "sequence_stubs.json", sequence_stubs)
    _write_stubs(OUTPUT_DIR / "combo_stubs.json", combo_stubs)

    sep = "=" * 72
    logger.info("")
    logger.info(sep)
    logger.info("SEARCH STATISTICS")
    logger.info(sep)
    logger.info(
        "Matches searched: %d  |  Failed: %d  |  Sequence clips: %d  |  Combo clips: %d",
        len(match_ids) - failed,
        failed,
        len(sequence_stubs),
        len(combo_stubs),
    )
    logger.info("")
    logger.info("--- Sequence clip length (frames) ---")
    logger.info("  %s", _format_distribution(_clip_lengths(sequence_stubs)))
    logger.info("")
    logger.info("--- Combo clip length (frames) ---")
    logger.info("  %s", _format_distribution(_clip_lengths(combo_stubs)))
    damage = np.array([s.damage_dealt or 0.0 for s in combo_stubs])
    logger.info("--- Combo damage dealt ---")
    logger.info("  %s", _format_distribution(damage))
    logger.info(sep)


if __name__ == "__main__":
    main()
