"""Frame-log access layer.

Re-exports the frame-log schemas, the structured query types, the local
query engine with its table providers, the result cache and the tag
stores so that downstream code can import everything from
:mod:`replayscan.sources`.
"""

from replayscan.sources.base import (
    FrameQuery,
    JobState,
    JobStatus,
    QueryEngine,
    TableProvider,
)
from replayscan.sources.cache import ResultCache, replay_cache_key, stub_cache_key
from replayscan.sources.engine import (
    LocalQueryEngine,
    MemoryTables,
    ParquetTables,
    execute_query,
)
from replayscan.sources.jobs import JobPhase, QueryJob, run_query
from replayscan.sources.schemas import (
    FrameRecord,
    MatchSettings,
    PlayerSettings,
    frames_to_dataframe,
)
from replayscan.sources.tags import JsonTagStore, MemoryTagStore, TagKey, TagStore

__all__ = [
    "FrameQuery",
    "FrameRecord",
    "JobPhase",
    "JobState",
    "JobStatus",
    "JsonTagStore",
    "LocalQueryEngine",
    "MatchSettings",
    "MemoryTables",
    "MemoryTagStore",
    "ParquetTables",
    "PlayerSettings",
    "QueryEngine",
    "QueryJob",
    "ResultCache",
    "TableProvider",
    "TagKey",
    "TagStore",
    "execute_query",
    "frames_to_dataframe",
    "replay_cache_key",
    "run_query",
    "stub_cache_key",
]
