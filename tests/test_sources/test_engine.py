"""Tests for structured query execution and the local query engine.

Validates tenant scoping, frame-range and value filters, table
providers (in-memory and hive-partitioned Parquet) and job status
reporting.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import polars as pl
import pytest

from replayscan.config import JobConfig
from replayscan.exceptions import FrameLogError
from replayscan.sources.base import FrameQuery, JobState, QueryEngine
from replayscan.sources.engine import (
    LocalQueryEngine,
    MemoryTables,
    ParquetTables,
    execute_query,
    is_valid_tenant_id,
)
from replayscan.sources.jobs import run_query
from replayscan.sources.schemas import FRAMES_TABLE, ITEMS_TABLE, MATCH_SETTINGS_TABLE

if TYPE_CHECKING:
    from pathlib import Path


def _frames() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "match_id": ["m1"] * 4 + ["m2"] * 2,
            "player_index": [1, 0, 1, 0, 0, 0],
            "frame_number": [11, 10, 10, 11, 10, 11],
            "action_post": [14, 14, 25, 25, 14, 14],
        }
    )


class TestFrameQuery:
    def test_requires_tenant(self) -> None:
        with pytest.raises(ValueError, match="tenant_id"):
            FrameQuery(table=FRAMES_TABLE, tenant_id="")

    def test_rejects_inverted_range(self) -> None:
        with pytest.raises(ValueError, match="frame_range"):
            FrameQuery(table=FRAMES_TABLE, tenant_id="acme", frame_range=(5, 1))


class TestTenantIds:
    @pytest.mark.parametrize("tenant", ["acme", "user@example.com", "a_b-c.d"])
    def test_valid(self, tenant: str) -> None:
        assert is_valid_tenant_id(tenant)

    @pytest.mark.parametrize("tenant", ["", "..", ".", "a/b", "a b", "../etc"])
    def test_invalid(self, tenant: str) -> None:
        assert not is_valid_tenant_id(tenant)


class TestExecuteQuery:
    """Queries filter, order, limit and project in that order."""

    @pytest.fixture()
    def tables(self) -> MemoryTables:
        tables = MemoryTables()
        tables.add("acme", FRAMES_TABLE, _frames())
        tables.add("globex", FRAMES_TABLE, _frames().with_columns(pl.lit("g1").alias("match_id")))
        return tables

    def test_match_and_range(self, tables: MemoryTables) -> None:
        query = FrameQuery(
            table=FRAMES_TABLE,
            tenant_id="acme",
            match_id="m1",
            frame_range=(11, 11),
            order_by=("player_index",),
        )
        result = execute_query(tables, query)
        assert result["player_index"].to_list() == [0, 1]
        assert set(result["frame_number"].to_list()) == {11}

    def test_filters_order_limit_columns(self, tables: MemoryTables) -> None:
        query = FrameQuery(
            table=FRAMES_TABLE,
            tenant_id="acme",
            filters=(("action_post", (14,)),),
            order_by=("match_id", "frame_number", "player_index"),
            limit=3,
            columns=("match_id", "frame_number"),
        )
        result = execute_query(tables, query)
        assert result.columns == ["match_id", "frame_number"]
        assert result.rows() == [("m1", 10), ("m1", 11), ("m2", 10)]

    def test_tenant_isolation(self, tables: MemoryTables) -> None:
        result = execute_query(tables, FrameQuery(table=FRAMES_TABLE, tenant_id="globex"))
        assert set(result["match_id"].to_list()) == {"g1"}

    def test_unknown_tenant_raises(self, tables: MemoryTables) -> None:
        with pytest.raises(FrameLogError, match="tenant"):
            execute_query(tables, FrameQuery(table=FRAMES_TABLE, tenant_id="initech"))

    def test_missing_table_raises(self, tables: MemoryTables) -> None:
        with pytest.raises(FrameLogError, match="not found"):
            execute_query(tables, FrameQuery(table=ITEMS_TABLE, tenant_id="acme"))

    def test_range_on_table_without_frames_raises(self) -> None:
        tables = MemoryTables()
        tables.add("acme", MATCH_SETTINGS_TABLE, pl.DataFrame({"match_id": ["m1"]}))
        with pytest.raises(FrameLogError, match="no frame column"):
            execute_query(
                tables,
                FrameQuery(table=MATCH_SETTINGS_TABLE, tenant_id="acme", frame_range=(0, 1)),
            )

    def test_unknown_table_rejected_on_add(self) -> None:
        with pytest.raises(FrameLogError, match="Unknown table"):
            MemoryTables().add("acme", "users", pl.DataFrame())


class TestParquetTables:
    """Parquet tables live under ``tenant=<id>/<table>``."""

    def test_write_and_scan(self, tmp_path: Path) -> None:
        tables = ParquetTables(tmp_path)
        path = tables.write("acme", FRAMES_TABLE, _frames())

        assert path.parent == tmp_path / "tenant=acme" / FRAMES_TABLE
        assert tables.list_tenants() == ["acme"]

        result = execute_query(
            tables, FrameQuery(table=FRAMES_TABLE, tenant_id="acme", match_id="m2")
        )
        assert result.height == 2

    def test_appended_parts_are_combined(self, tmp_path: Path) -> None:
        tables = ParquetTables(tmp_path)
        tables.write("acme", FRAMES_TABLE, _frames())
        tables.write("acme", FRAMES_TABLE, _frames())
        result = execute_query(tables, FrameQuery(table=FRAMES_TABLE, tenant_id="acme"))
        assert result.height == 12

    def test_missing_partition_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FrameLogError):
            ParquetTables(tmp_path).scan("acme", FRAMES_TABLE)

    def test_tenant_cannot_escape_root(self, tmp_path: Path) -> None:
        with pytest.raises(FrameLogError, match="Invalid tenant"):
            ParquetTables(tmp_path).table_dir("../other", FRAMES_TABLE)


class TestLocalQueryEngine:
    """Job status follows the underlying future."""

    def test_satisfies_protocol(self, engine: LocalQueryEngine) -> None:
        assert isinstance(engine, QueryEngine)

    def test_succeeded_job(self, engine: LocalQueryEngine) -> None:
        execution_id = engine.submit(FrameQuery(table=FRAMES_TABLE, tenant_id="acme"))
        assert engine.status(execution_id).state is JobState.SUCCEEDED
        assert engine.fetch(execution_id).height == 1400

    def test_failed_job_reports_reason(self, engine: LocalQueryEngine) -> None:
        execution_id = engine.submit(FrameQuery(table=FRAMES_TABLE, tenant_id="initech"))
        status = engine.status(execution_id)
        assert status.state is JobState.FAILED
        assert "initech" in status.reason
        assert engine.pending_jobs == 0

    def test_release_drops_job(self, engine: LocalQueryEngine) -> None:
        execution_id = engine.submit(FrameQuery(table=FRAMES_TABLE, tenant_id="acme"))
        assert engine.pending_jobs == 1

        engine.release(execution_id)
        engine.release(execution_id)

        assert engine.pending_jobs == 0
        with pytest.raises(FrameLogError, match="Unknown execution id"):
            engine.fetch(execution_id)

    def test_unknown_execution_id(self, engine: LocalQueryEngine) -> None:
        with pytest.raises(FrameLogError, match="Unknown execution id"):
            engine.status("nope")

    def test_thread_pool_engine(self, frame_log: MemoryTables) -> None:
        with LocalQueryEngine(frame_log, max_workers=1) as engine:
            result = run_query(
                engine,
                FrameQuery(table=FRAMES_TABLE, tenant_id="acme", limit=5),
                JobConfig(poll_interval_seconds=0.01, max_polls=1000),
            )
            assert result.height == 5
