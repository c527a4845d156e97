"""Polling driver for asynchronous frame-log query jobs.

A query job moves through a small finite-state machine::

    SUBMITTED -> POLLING -> SUCCEEDED
                         -> FAILED

Polling happens at a fixed interval with a bounded number of polls.
``FAILED`` is terminal and fatal: the engine's reason string is raised
as :class:`~replayscan.exceptions.QueryJobError` and the job is never
retried automatically.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import TYPE_CHECKING, NoReturn

from replayscan.exceptions import QueryJobError
from replayscan.sources.base import JobState

if TYPE_CHECKING:
    from collections.abc import Callable

    import polars as pl

    from replayscan.config import JobConfig
    from replayscan.sources.base import FrameQuery, QueryEngine

logger = logging.getLogger(__name__)


class JobPhase(enum.Enum):
    """Driver-side phases of a query job."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class QueryJob:
    """Drives one query from submission to a terminal phase.

    Attributes:
        phase: Current phase of the job.
        execution_id: Engine execution id once submitted.
        polls: Number of status polls performed so far.
        reason: Failure reason once the job has failed.
    """

    __slots__ = (
        "_config",
        "_engine",
        "_query",
        "_sleep",
        "execution_id",
        "phase",
        "polls",
        "reason",
    )

    def __init__(
        self,
        engine: QueryEngine,
        query: FrameQuery,
        config: JobConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._query = query
        self._config = config
        self._sleep = sleep
        self.phase = JobPhase.PENDING
        self.execution_id: str | None = None
        self.polls = 0
        self.reason = ""

    def run(self) -> pl.DataFrame:
        """Submit the query, poll until terminal, and return its rows.

        Returns:
            The query result.

        Raises:
            QueryJobError: If the job fails or the poll budget runs out.
            RuntimeError: If the job has already been run.
        """
        if self.phase is not JobPhase.PENDING:
            msg = f"QueryJob already run (phase {self.phase.value})"
            raise RuntimeError(msg)

        self.execution_id = self._engine.submit(self._query)
        self.phase = JobPhase.SUBMITTED

        for poll in range(1, self._config.max_polls + 1):
            self._sleep(self._config.poll_interval_seconds)
            self.phase = JobPhase.POLLING
            self.polls = poll
            status = self._engine.status(self.execution_id)
            logger.debug(
                "Query %s poll %d: %s", self.execution_id, poll, status.state.value
            )

            if not status.state.is_terminal:
                continue
            if status.state is JobState.FAILED:
                self._fail(status.reason or "query failed")
            self.phase = JobPhase.SUCCEEDED
            return self._engine.fetch(self.execution_id)

        self._fail(
            f"timed out after {self._config.max_polls} polls "
            f"({self._config.poll_interval_seconds}s interval)"
        )

    def _fail(self, reason: str) -> NoReturn:
        self.phase = JobPhase.FAILED
        self.reason = reason
        if self.execution_id is not None:
            self._engine.release(self.execution_id)
        logger.error("Query %s failed: %s", self.execution_id, reason)
        raise QueryJobError(reason)


def run_query(
    engine: QueryEngine,
    query: FrameQuery,
    config: JobConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> pl.DataFrame:
    """Run *query* to completion and return its rows.

    Args:
        engine: Engine executing the query.
        query: Structured, tenant-scoped query.
        config: Polling configuration.
        sleep: Sleep function between polls.

    Returns:
        The query result.

    Raises:
        QueryJobError: If the job fails or times out.
    """
    return QueryJob(engine, query, config, sleep=sleep).run()
