"""Content-addressed disk cache for query results.

Provides a simple JSON-backed key/blob store. Keys are relative POSIX
paths derived from the request shape and tenant, for example
``stubs/sequence/<tenant>/<hash>-all.json``. Writes are atomic (write
to a temporary file, then rename) to prevent corruption if the process
is interrupted mid-write. There is no TTL: entries live until they are
overwritten.
"""

from __future__ import annotations

import hashlib
import logging
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any

import orjson

from replayscan.exceptions import CacheError

logger = logging.getLogger(__name__)

_PARAM_HASH_LENGTH = 16


# ------------------------------------------------------------------
# Keys
# ------------------------------------------------------------------


def fingerprint(params: dict[str, Any]) -> str:
    """Return a stable hash of normalized query parameters.

    Parameters are serialized with sorted keys so that dicts with the
    same content always produce the same fingerprint.

    Args:
        params: JSON-serializable, already normalized parameters.

    Returns:
        Hex digest prefix of the SHA-256 of the canonical JSON.
    """
    canonical = orjson.dumps(params, option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(canonical).hexdigest()[:_PARAM_HASH_LENGTH]


def stub_cache_key(
    kind: str,
    tenant_id: str,
    params: dict[str, Any],
    match_id: str | None = None,
) -> str:
    """Return the cache key for a stub query.

    Args:
        kind: Query kind (``"sequence"`` or ``"combo"``).
        tenant_id: Tenant the results belong to.
        params: Normalized query parameters (excluding ``match_id``).
        match_id: Match the query is restricted to, if any.

    Returns:
        Key of the form ``stubs/{kind}/{tenant}/{hash}-{match|all}.json``.
    """
    return f"stubs/{kind}/{tenant_id}/{fingerprint(params)}-{match_id or 'all'}.json"


def replay_cache_key(
    tenant_id: str,
    match_id: str,
    frame_start: int | None = None,
    frame_end: int | None = None,
) -> str:
    """Return the cache key for a replay-data fetch.

    Omitting either bound selects the full-replay key.
    """
    if frame_start is None or frame_end is None:
        return f"replays/{tenant_id}/{match_id}-full.json"
    return f"replays/{tenant_id}/{match_id}-{frame_start}-{frame_end}.json"


# ------------------------------------------------------------------
# Cache
# ------------------------------------------------------------------


class ResultCache:
    """Disk-based key/blob store for query results.

    Stores orjson-encoded payloads under a configurable cache
    directory. Creates the directory if it doesn't exist.

    Attributes:
        _cache_dir: Root directory where cache files are stored.
    """

    __slots__ = ("_cache_dir",)

    def __init__(self, cache_dir: Path) -> None:
        """Initialize the cache and ensure the directory exists.

        Args:
            cache_dir: Directory for storing cached JSON files.
        """
        self._cache_dir = cache_dir
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    def cache_path(self, key: str) -> Path:
        """Return the file path for a cache key.

        Args:
            key: Relative POSIX path of the entry.

        Returns:
            Path to the JSON file for this key.

        Raises:
            CacheError: If the key is absolute or escapes the cache root.
        """
        rel = PurePosixPath(key)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            msg = f"Invalid cache key {key!r}"
            raise CacheError(msg)
        return self._cache_dir.joinpath(*rel.parts)

    def exists(self, key: str) -> bool:
        """Check whether a cache entry exists for the given key."""
        return self.cache_path(key).is_file()

    def get(self, key: str) -> Any | None:
        """Load a cached payload.

        Read failures other than a missing entry are logged and treated
        as a miss, so a damaged cache never blocks the compute path.

        Args:
            key: Cache key.

        Returns:
            The cached payload, or ``None`` on a cache miss.
        """
        path = self.cache_path(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            logger.debug("Cache miss for %s", key)
            return None
        except OSError as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

        try:
            payload = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            logger.warning("Discarding corrupt cache entry %s: %s", key, exc)
            return None

        logger.debug("Cache hit for %s", key)
        return payload

    def put(self, key: str, payload: Any) -> None:
        """Save a payload using an atomic write.

        Writes to a temporary file in the target directory and renames
        it to the final path, preventing corruption on interruption.
        An existing entry is overwritten unconditionally.

        Args:
            key: Cache key.
            payload: JSON-serializable payload.

        Raises:
            CacheError: If the payload cannot be encoded or written.
        """
        path = self.cache_path(key)
        try:
            data = orjson.dumps(payload)
            path.parent.mkdir(parents=True, exist_ok=True)
        except (TypeError, OSError) as exc:
            msg = f"Cannot write cache entry {key!r}: {exc}"
            raise CacheError(msg) from exc

        try:
            fd, tmp_path_str = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        except OSError as exc:
            msg = f"Cannot write cache entry {key!r}: {exc}"
            raise CacheError(msg) from exc
        tmp_path = Path(tmp_path_str)
        try:
            with open(fd, "wb") as f:
                f.write(data)
            tmp_path.replace(path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            msg = f"Cannot write cache entry {key!r}: {exc}"
            raise CacheError(msg) from exc
        logger.debug("Cached %d bytes for %s at %s", len(data), key, path)
