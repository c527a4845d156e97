"""Tests for the query-job polling state machine."""

from __future__ import annotations

from typing import Any

import polars as pl
import pytest

from replayscan.config import JobConfig
from replayscan.exceptions import QueryJobError
from replayscan.sources.base import FrameQuery, JobState, JobStatus
from replayscan.sources.engine import LocalQueryEngine, MemoryTables
from replayscan.sources.jobs import JobPhase, QueryJob, run_query
from replayscan.sources.schemas import FRAMES_TABLE

QUERY = FrameQuery(table=FRAMES_TABLE, tenant_id="acme")


class ScriptedEngine:
    """Engine replaying a fixed sequence of statuses."""

    def __init__(self, statuses: list[JobStatus]) -> None:
        self._statuses = list(statuses)
        self.submitted: list[FrameQuery] = []
        self.polls = 0
        self.fetched = 0
        self.released: list[str] = []

    def submit(self, query: FrameQuery) -> str:
        self.submitted.append(query)
        return "exec-1"

    def status(self, execution_id: str) -> JobStatus:
        self.polls += 1
        if len(self._statuses) > 1:
            return self._statuses.pop(0)
        return self._statuses[0]

    def fetch(self, execution_id: str) -> pl.DataFrame:
        self.fetched += 1
        return pl.DataFrame({"frame_number": [1, 2]})

    def release(self, execution_id: str) -> None:
        self.released.append(execution_id)


class TestJobState:
    @pytest.mark.parametrize(
        ("state", "terminal"),
        [
            (JobState.SUBMITTED, False),
            (JobState.RUNNING, False),
            (JobState.SUCCEEDED, True),
            (JobState.FAILED, True),
        ],
    )
    def test_is_terminal(self, state: JobState, terminal: bool) -> None:
        assert state.is_terminal is terminal


class TestQueryJob:
    """Jobs move SUBMITTED -> POLLING -> {SUCCEEDED, FAILED}."""

    def test_success_after_polling(self) -> None:
        engine = ScriptedEngine(
            [
                JobStatus(JobState.SUBMITTED),
                JobStatus(JobState.RUNNING),
                JobStatus(JobState.SUCCEEDED),
            ]
        )
        sleeps: list[float] = []
        job = QueryJob(engine, QUERY, JobConfig(poll_interval_seconds=0.5), sleep=sleeps.append)

        result = job.run()

        assert result.height == 2
        assert job.phase is JobPhase.SUCCEEDED
        assert job.polls == 3
        assert sleeps == [0.5, 0.5, 0.5]
        assert engine.fetched == 1

    def test_failure_raises_reason(self) -> None:
        engine = ScriptedEngine([JobStatus(JobState.RUNNING), JobStatus(JobState.FAILED, "boom")])
        job = QueryJob(engine, QUERY, JobConfig(), sleep=lambda _: None)

        with pytest.raises(QueryJobError, match="boom") as excinfo:
            job.run()

        assert excinfo.value.reason == "boom"
        assert job.phase is JobPhase.FAILED
        assert engine.fetched == 0
        assert engine.released == ["exec-1"]

    def test_failure_is_not_retried(self) -> None:
        engine = ScriptedEngine([JobStatus(JobState.FAILED, "bad table")])
        with pytest.raises(QueryJobError):
            run_query(engine, QUERY, JobConfig(), sleep=lambda _: None)
        assert len(engine.submitted) == 1
        assert engine.polls == 1

    def test_poll_budget_exhausted(self) -> None:
        engine = ScriptedEngine([JobStatus(JobState.RUNNING)])
        config = JobConfig(poll_interval_seconds=1.0, max_polls=4)

        with pytest.raises(QueryJobError, match="timed out after 4 polls"):
            run_query(engine, QUERY, config, sleep=lambda _: None)
        assert engine.polls == 4
        assert engine.released == ["exec-1"]

    def test_job_runs_once(self) -> None:
        engine = ScriptedEngine([JobStatus(JobState.SUCCEEDED)])
        job = QueryJob(engine, QUERY, JobConfig(), sleep=lambda _: None)
        job.run()
        with pytest.raises(RuntimeError, match="already run"):
            job.run()
        assert engine.released == []


class TestRunQueryWithLocalEngine:
    def test_reads_tenant_rows(self, engine: LocalQueryEngine) -> None:
        result = run_query(
            engine,
            FrameQuery(table=FRAMES_TABLE, tenant_id="acme", match_id="m1", frame_range=(0, 9)),
            JobConfig(),
            sleep=lambda _: None,
        )
        assert result.height == 20

    def test_unknown_tenant_fails_job(self, engine: LocalQueryEngine) -> None:
        with pytest.raises(QueryJobError, match="initech"):
            run_query(
                engine,
                FrameQuery(table=FRAMES_TABLE, tenant_id="initech"),
                JobConfig(),
                sleep=lambda _: None,
            )

    def test_failed_jobs_are_not_retained(self, engine: LocalQueryEngine) -> None:
        """Repeated failures leave nothing behind in the engine."""
        for _ in range(5):
            with pytest.raises(QueryJobError):
                run_query(
                    engine,
                    FrameQuery(table=FRAMES_TABLE, tenant_id="nobody"),
                    JobConfig(),
                    sleep=lambda _: None,
                )
        assert engine.pending_jobs == 0

    def test_succeeded_jobs_are_released_on_fetch(self, engine: LocalQueryEngine) -> None:
        run_query(engine, QUERY, JobConfig(), sleep=lambda _: None)
        assert engine.pending_jobs == 0

    def test_timed_out_job_is_released(
        self, frame_log: MemoryTables, deferred_executor: Any
    ) -> None:
        """A job abandoned after the poll budget is cancelled and dropped."""
        engine = LocalQueryEngine(frame_log, executor=deferred_executor)

        with pytest.raises(QueryJobError, match="timed out after 2 polls"):
            run_query(engine, QUERY, JobConfig(max_polls=2), sleep=lambda _: None)
        assert engine.pending_jobs == 0
