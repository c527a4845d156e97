"""Abstract query-engine protocol for frame-log providers.

Defines the :class:`QueryEngine` structural interface that every
frame-log backend must satisfy, together with the structured
:class:`FrameQuery` it executes.  Engines are responsible for:

* **Tenant scoping** -- every query names a tenant, and an engine must
  only ever read that tenant's partition.
* **Asynchronous execution** -- :meth:`QueryEngine.submit` returns an
  execution id immediately; callers poll :meth:`QueryEngine.status`
  until the job reaches a terminal state.
* **Structured filtering** -- queries are plain values (table, match,
  frame range, column filters); no query text is ever assembled from
  caller input.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import polars as pl


class JobState(enum.Enum):
    """Lifecycle states of a frame-log query job."""

    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions can happen."""
        return self in (JobState.SUCCEEDED, JobState.FAILED)


@dataclass(frozen=True, slots=True)
class JobStatus:
    """Snapshot of a query job's state.

    Attributes:
        state: Current lifecycle state.
        reason: Failure reason when *state* is ``FAILED``, else empty.
    """

    state: JobState
    reason: str = ""


@dataclass(frozen=True, slots=True)
class FrameQuery:
    """A structured read against one frame-log table.

    Attributes:
        table: Name of the table to read.
        tenant_id: Tenant whose partition is read.
        match_id: Restrict rows to this match, or ``None`` for all.
        frame_range: Inclusive ``(start, end)`` bounds on the table's
            frame column, in log coordinates.
        columns: Columns to project, or ``None`` for all.
        filters: Mapping of column name to the allowed values.
        order_by: Columns to sort the result by.
        limit: Maximum number of rows returned after sorting.
    """

    table: str
    tenant_id: str
    match_id: str | None = None
    frame_range: tuple[int, int] | None = None
    columns: tuple[str, ...] | None = None
    filters: tuple[tuple[str, tuple[object, ...]], ...] = field(default=())
    order_by: tuple[str, ...] = ()
    limit: int | None = None

    def __post_init__(self) -> None:
        """Validate tenant and range invariants."""
        if not self.tenant_id:
            msg = "FrameQuery requires a non-empty tenant_id"
            raise ValueError(msg)
        if self.frame_range is not None and self.frame_range[0] > self.frame_range[1]:
            msg = f"frame_range start must be <= end, got {self.frame_range}"
            raise ValueError(msg)
        if self.limit is not None and self.limit < 1:
            msg = f"limit must be >= 1, got {self.limit}"
            raise ValueError(msg)


@runtime_checkable
class QueryEngine(Protocol):
    """Structural interface for frame-log query engines.

    Any class that implements the methods below is a valid
    ``QueryEngine`` without needing to inherit from this class.
    """

    def submit(self, query: FrameQuery) -> str:
        """Start executing *query* and return its execution id.

        Args:
            query: Structured, tenant-scoped query.

        Returns:
            Opaque execution id used with :meth:`status` and
            :meth:`fetch`.
        """
        ...

    def status(self, execution_id: str) -> JobStatus:
        """Return the current status of a submitted job.

        Args:
            execution_id: Id returned by :meth:`submit`.

        Returns:
            A :class:`JobStatus` snapshot.
        """
        ...

    def fetch(self, execution_id: str) -> pl.DataFrame:
        """Return the result rows of a succeeded job.

        Args:
            execution_id: Id of a job in state ``SUCCEEDED``.

        Returns:
            The result table.
        """
        ...

    def release(self, execution_id: str) -> None:
        """Forget a job that will never be fetched.

        Called for jobs abandoned by the caller. Unknown ids are ignored.

        Args:
            execution_id: Id returned by :meth:`submit`.
        """
        ...


@runtime_checkable
class TableProvider(Protocol):
    """Source of tenant-partitioned frame-log tables."""

    def scan(self, tenant_id: str, table: str) -> pl.LazyFrame:
        """Return a lazy scan of *table* within *tenant_id*'s partition.

        Raises:
            FrameLogError: If the tenant or table does not exist.
        """
        ...
