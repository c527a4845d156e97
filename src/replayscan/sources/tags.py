"""Key-value stores for boolean clip annotations.

Tags are addressed by a composite key modelled on a wide-column store:

* partition -- ``replay#{match_id}``
* sort -- ``stub#{frame_start}#{frame_end}``
* attribute -- ``tag_{name}`` (name sanitized to ``[A-Za-z0-9_]``)

Every key also carries the tenant id, and both stores keep tenants in
separate namespaces.
"""

from __future__ import annotations

import logging
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import orjson

from replayscan.exceptions import TagStoreError

logger = logging.getLogger(__name__)

_TAG_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")


@dataclass(frozen=True, slots=True)
class TagKey:
    """Composite address of one tag value.

    Attributes:
        tenant_id: Tenant owning the tagged clip.
        match_id: Match of the tagged clip.
        frame_start: Clip start frame.
        frame_end: Clip end frame.
        tag: Tag name, e.g. ``"bugged"``.
    """

    tenant_id: str
    match_id: str
    frame_start: int
    frame_end: int
    tag: str

    @property
    def partition(self) -> str:
        return f"replay#{self.match_id}"

    @property
    def sort(self) -> str:
        return f"stub#{self.frame_start}#{self.frame_end}"

    @property
    def attribute(self) -> str:
        return f"tag_{_TAG_NAME_RE.sub('_', self.tag)}"


@runtime_checkable
class TagStore(Protocol):
    """Structural interface for tag stores."""

    def get_tag(self, key: TagKey) -> bool | None:
        """Return the stored value, or ``None`` when the tag is unset.

        Raises:
            TagStoreError: If the store cannot be read.
        """
        ...

    def set_tag(self, key: TagKey, value: bool) -> bool:
        """Store *value* and return the value as stored.

        Raises:
            TagStoreError: If the store cannot be written.
        """
        ...


# tenant -> partition -> sort -> attribute -> value
_TagTable = dict[str, dict[str, dict[str, dict[str, bool]]]]


def _lookup(table: _TagTable, key: TagKey) -> bool | None:
    item = table.get(key.tenant_id, {}).get(key.partition, {}).get(key.sort)
    if item is None:
        return None
    value = item.get(key.attribute)
    return None if value is None else bool(value)


def _assign(table: _TagTable, key: TagKey, value: bool) -> bool:
    item = (
        table.setdefault(key.tenant_id, {})
        .setdefault(key.partition, {})
        .setdefault(key.sort, {})
    )
    item[key.attribute] = bool(value)
    return item[key.attribute]


class MemoryTagStore:
    """In-process tag store."""

    __slots__ = ("_lock", "_table")

    def __init__(self) -> None:
        self._table: _TagTable = {}
        self._lock = threading.Lock()

    def get_tag(self, key: TagKey) -> bool | None:
        with self._lock:
            return _lookup(self._table, key)

    def set_tag(self, key: TagKey, value: bool) -> bool:
        with self._lock:
            return _assign(self._table, key, value)


class JsonTagStore:
    """Tag store persisted as a single orjson document.

    The whole table is rewritten atomically on every update.

    Attributes:
        _path: Location of the JSON document.
    """

    __slots__ = ("_lock", "_path")

    def __init__(self, path: Path) -> None:
        """Initialize the store, creating the parent directory.

        Args:
            path: JSON file holding the tag table.
        """
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def get_tag(self, key: TagKey) -> bool | None:
        with self._lock:
            return _lookup(self._load(), key)

    def set_tag(self, key: TagKey, value: bool) -> bool:
        with self._lock:
            table = self._load()
            stored = _assign(table, key, value)
            self._save(table)
        logger.debug("Set %s=%s on %s/%s", key.attribute, stored, key.partition, key.sort)
        return stored

    def _load(self) -> _TagTable:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            msg = f"Cannot read tag store {self._path}: {exc}"
            raise TagStoreError(msg) from exc
        try:
            table: _TagTable = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            msg = f"Corrupt tag store {self._path}: {exc}"
            raise TagStoreError(msg) from exc
        return table

    def _save(self, table: _TagTable) -> None:
        try:
            fd, tmp_path_str = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        except OSError as exc:
            msg = f"Cannot write tag store {self._path}: {exc}"
            raise TagStoreError(msg) from exc
        tmp_path = Path(tmp_path_str)
        try:
            with open(fd, "wb") as f:
                f.write(orjson.dumps(table))
            tmp_path.replace(self._path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            msg = f"Cannot write tag store {self._path}: {exc}"
            raise TagStoreError(msg) from exc
