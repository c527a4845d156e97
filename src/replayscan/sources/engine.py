"""Local frame-log query engine backed by polars.

Implements the :class:`~replayscan.sources.base.QueryEngine` protocol
by executing :class:`~replayscan.sources.base.FrameQuery` values against
tenant-partitioned polars tables on a worker pool.  Two table providers
are available:

* :class:`MemoryTables` -- in-process DataFrames keyed by tenant.
* :class:`ParquetTables` -- a hive-style directory of Parquet files,
  ``<root>/tenant=<id>/<table>/*.parquet``, scanned lazily.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

import polars as pl

from replayscan.exceptions import FrameLogError
from replayscan.sources.base import JobState, JobStatus
from replayscan.sources.schemas import FRAME_COLUMNS, KNOWN_TABLES

if TYPE_CHECKING:
    from types import TracebackType

    from replayscan.sources.base import FrameQuery, TableProvider

logger = logging.getLogger(__name__)

_TENANT_RE = re.compile(r"^[A-Za-z0-9_.@-]+$")


def is_valid_tenant_id(tenant_id: str) -> bool:
    """Return whether *tenant_id* is safe to use as a partition name."""
    return bool(_TENANT_RE.match(tenant_id)) and tenant_id not in (".", "..")


def _check_tenant(tenant_id: str) -> None:
    if not is_valid_tenant_id(tenant_id):
        msg = f"Invalid tenant id {tenant_id!r}"
        raise FrameLogError(msg)


def _check_table(table: str) -> None:
    if table not in KNOWN_TABLES:
        msg = f"Unknown table {table!r}"
        raise FrameLogError(msg)


# ------------------------------------------------------------------
# Table providers
# ------------------------------------------------------------------


class MemoryTables:
    """In-memory table provider keyed by tenant.

    Attributes:
        _tables: Mapping of tenant id to table name to DataFrame.
    """

    __slots__ = ("_tables",)

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, pl.DataFrame]] = {}

    def add(self, tenant_id: str, table: str, df: pl.DataFrame) -> None:
        """Register (or replace) a table for a tenant.

        Args:
            tenant_id: Owner of the table.
            table: Table name; must be one of the known frame-log tables.
            df: Table contents.
        """
        _check_tenant(tenant_id)
        _check_table(table)
        self._tables.setdefault(tenant_id, {})[table] = df

    def scan(self, tenant_id: str, table: str) -> pl.LazyFrame:
        """Return a lazy view of a tenant's table."""
        _check_table(table)
        tenant_tables = self._tables.get(tenant_id)
        if tenant_tables is None:
            msg = f"No frame log for tenant {tenant_id!r}"
            raise FrameLogError(msg)
        df = tenant_tables.get(table)
        if df is None:
            msg = f"Table {table!r} not found for tenant {tenant_id!r}"
            raise FrameLogError(msg)
        return df.lazy()


class ParquetTables:
    """Parquet directory table provider.

    Layout::

        <root>/tenant=<tenant_id>/<table>/*.parquet

    Attributes:
        _root: Root directory of the partitioned dataset.
    """

    __slots__ = ("_root",)

    def __init__(self, root: Path) -> None:
        self._root = root

    def table_dir(self, tenant_id: str, table: str) -> Path:
        """Return the directory holding a tenant's table files."""
        _check_tenant(tenant_id)
        _check_table(table)
        return self._root / f"tenant={tenant_id}" / table

    def write(self, tenant_id: str, table: str, df: pl.DataFrame) -> Path:
        """Append *df* to a tenant's table as a new Parquet file.

        Args:
            tenant_id: Owner of the table.
            table: Table name.
            df: Rows to write.

        Returns:
            Path of the written file.
        """
        directory = self.table_dir(tenant_id, table)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"part-{uuid.uuid4().hex}.parquet"
        df.write_parquet(path)
        logger.debug("Wrote %d rows to %s", df.height, path)
        return path

    def list_tenants(self) -> list[str]:
        """Return the sorted tenant ids present under the root."""
        if not self._root.is_dir():
            return []
        return sorted(
            p.name.removeprefix("tenant=")
            for p in self._root.iterdir()
            if p.is_dir() and p.name.startswith("tenant=")
        )

    def scan(self, tenant_id: str, table: str) -> pl.LazyFrame:
        """Return a lazy Parquet scan of a tenant's table."""
        directory = self.table_dir(tenant_id, table)
        if not directory.is_dir() or not any(directory.glob("*.parquet")):
            msg = f"Table {table!r} not found for tenant {tenant_id!r}"
            raise FrameLogError(msg)
        return pl.scan_parquet(str(directory / "*.parquet"))


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


def execute_query(tables: TableProvider, query: FrameQuery) -> pl.DataFrame:
    """Evaluate a structured query against a table provider.

    Args:
        tables: Source of tenant-partitioned tables.
        query: Query to evaluate.

    Returns:
        The filtered, ordered and projected rows.

    Raises:
        FrameLogError: If the table cannot be read or the query names a
            frame range on a table without a frame column.
    """
    lf = tables.scan(query.tenant_id, query.table)

    if query.match_id is not None:
        lf = lf.filter(pl.col("match_id") == query.match_id)

    if query.frame_range is not None:
        frame_col = FRAME_COLUMNS.get(query.table)
        if frame_col is None:
            msg = f"Table {query.table!r} has no frame column"
            raise FrameLogError(msg)
        lo, hi = query.frame_range
        lf = lf.filter(pl.col(frame_col).is_between(lo, hi, closed="both"))

    for column, values in query.filters:
        lf = lf.filter(pl.col(column).is_in(list(values)))

    if query.order_by:
        lf = lf.sort(list(query.order_by))

    if query.limit is not None:
        lf = lf.head(query.limit)

    if query.columns is not None:
        lf = lf.select(list(query.columns))

    return lf.collect()


class LocalQueryEngine:
    """Runs frame-log queries on a worker pool.

    Satisfies the :class:`~replayscan.sources.base.QueryEngine` protocol.
    Each submitted query becomes a future; its status is derived from
    the future's state and any exception it raised.

    Attributes:
        _tables: Table provider the queries read from.
        _executor: Executor running the queries.
        _jobs: Futures keyed by execution id.
    """

    __slots__ = ("_executor", "_jobs", "_lock", "_owns_executor", "_tables")

    def __init__(
        self,
        tables: TableProvider,
        max_workers: int = 4,
        executor: Executor | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            tables: Table provider to query.
            max_workers: Pool size when no executor is supplied.
            executor: Optional executor to run queries on.
        """
        self._tables = tables
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="frame-query"
        )
        self._jobs: dict[str, Future[pl.DataFrame]] = {}
        self._lock = threading.Lock()

    def submit(self, query: FrameQuery) -> str:
        """Queue *query* and return its execution id."""
        execution_id = uuid.uuid4().hex
        future = self._executor.submit(execute_query, self._tables, query)
        with self._lock:
            self._jobs[execution_id] = future
        logger.info(
            "Submitted query %s on %s for tenant %s",
            execution_id,
            query.table,
            query.tenant_id,
        )
        return execution_id

    def status(self, execution_id: str) -> JobStatus:
        """Return the job status derived from its future.

        A failed job is forgotten once its status has been reported.
        """
        future = self._future(execution_id)
        if not future.done():
            state = JobState.RUNNING if future.running() else JobState.SUBMITTED
            return JobStatus(state)
        exc = future.exception()
        if exc is not None:
            self.release(execution_id)
            return JobStatus(JobState.FAILED, str(exc) or type(exc).__name__)
        return JobStatus(JobState.SUCCEEDED)

    def release(self, execution_id: str) -> None:
        """Drop a job, cancelling it if it has not started yet."""
        with self._lock:
            future = self._jobs.pop(execution_id, None)
        if future is not None and future.cancel():
            logger.debug("Cancelled query %s", execution_id)

    @property
    def pending_jobs(self) -> int:
        """Number of jobs submitted but not yet fetched or released."""
        with self._lock:
            return len(self._jobs)

    def fetch(self, execution_id: str) -> pl.DataFrame:
        """Return and release the result of a finished job."""
        future = self._future(execution_id)
        result = future.result()
        with self._lock:
            self._jobs.pop(execution_id, None)
        return result

    def close(self) -> None:
        """Shut down the worker pool if this engine created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> LocalQueryEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _future(self, execution_id: str) -> Future[pl.DataFrame]:
        with self._lock:
            future = self._jobs.get(execution_id)
        if future is None:
            msg = f"Unknown execution id {execution_id!r}"
            raise FrameLogError(msg)
        return future
