"""
Memory Store — JSON File Persistent Backend

The whole collection lives in one UTF-8 JSON file: a single array of
record objects, pretty-printed with a trailing newline. No envelope.

Mutations (add, soft_delete, purge) follow one protocol:
    1. acquire the sibling lock marker (exclusive create, bounded retry)
    2. re-read the file fresh (never trust an earlier load)
    3. apply the change in memory
    4. write a temp file in the same directory, fsync, os.replace() it
    5. release the lock, also on the error path

Reads take no lock. A reader sees either the previous or the next
committed collection, never a partial write.

Only this module opens the store and lock files.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from copilot_memory.errors import EmptyMemory, InvalidCriteria, MalformedStore
from copilot_memory.keywords import extract_keywords
from copilot_memory.lock import DEFAULT_LOCK_TIMEOUT, FileLock
from copilot_memory.types import (
    DeleteResult,
    MemoryRecord,
    PurgeResult,
    StoreStats,
    _generate_id,
    _now_iso,
    normalize_tags,
)

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_PATH = ".copilot-memory.json"
DEFAULT_LOCK_NAME = ".copilot-memory.lock"

ENV_MEMORY_PATH = "MEMORY_PATH"
ENV_LOCK_PATH = "MEMORY_LOCK_PATH"


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _absolute(raw: str) -> Path:
    p = Path(raw.strip()).expanduser()
    return p if p.is_absolute() else Path.cwd() / p


def resolve_memory_path(path: Optional[str] = None) -> Path:
    """Resolve the store path: argument > $MEMORY_PATH > .copilot-memory.json."""
    raw = path or os.environ.get(ENV_MEMORY_PATH, "").strip() or DEFAULT_MEMORY_PATH
    return _absolute(str(raw))


def resolve_lock_path(memory_path: Path, lock_path: Optional[str] = None) -> Path:
    """Resolve the lock marker: argument > $MEMORY_LOCK_PATH > sibling of the store."""
    raw = lock_path or os.environ.get(ENV_LOCK_PATH, "").strip()
    if raw:
        return _absolute(str(raw))
    return memory_path.parent / DEFAULT_LOCK_NAME


# ---------------------------------------------------------------------------
# Raw file I/O
# ---------------------------------------------------------------------------


def serialize_records(records: List[MemoryRecord]) -> str:
    """Render records in the on-disk format (indent=2, trailing newline)."""
    data = [r.to_dict() for r in records]
    return json.dumps(data, ensure_ascii=False, indent=2) + "\n"


def read_records(path: Path) -> List[MemoryRecord]:
    """Read and parse the store file. Missing or blank file → [].

    Raises:
        MalformedStore: If the file is not a JSON array of objects.
    """
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return []
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedStore(str(path), f"is not valid JSON ({e.msg})") from e
    if not isinstance(data, list):
        raise MalformedStore(str(path))
    records: List[MemoryRecord] = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise MalformedStore(str(path), f"has a non-object entry at index {i}")
        records.append(MemoryRecord.from_dict(entry))
    return records


def atomic_write(path: Path, records: List[MemoryRecord]) -> None:
    """Write records to a temp file beside *path*, then rename it over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = serialize_records(records).encode("utf-8")
    tmp_fp: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            delete=False,
            dir=str(path.parent),
            prefix=path.name + ".tmp.",
        ) as f:
            tmp_fp = Path(f.name)
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_fp), str(path))
        tmp_fp = None
    finally:
        if tmp_fp is not None and tmp_fp.exists():
            tmp_fp.unlink()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MemoryStore:
    """
    File-backed memory store.

    Holds no cached records: every call reads the file, so several
    processes can share one store safely.

    Args:
        path: Store file (default: $MEMORY_PATH or .copilot-memory.json).
        lock_path: Lock marker (default: $MEMORY_LOCK_PATH or a sibling file).
        lock_timeout: Seconds to wait for the lock before LockTimeout.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        lock_path: Optional[str] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.path = resolve_memory_path(path)
        self.lock_path = resolve_lock_path(self.path, lock_path)
        self.lock_timeout = lock_timeout

    def __repr__(self) -> str:
        return f"MemoryStore(path={str(self.path)!r})"

    def _lock(self) -> FileLock:
        return FileLock(self.lock_path, timeout=self.lock_timeout)

    # -- reads ---------------------------------------------------------------

    def load(self) -> List[MemoryRecord]:
        """Load all records, tombstones included."""
        return read_records(self.path)

    def export_json(self) -> str:
        """Full collection in the on-disk format, tombstones included."""
        return serialize_records(self.load())

    def stats(self) -> StoreStats:
        return compute_stats(self.load())

    # -- mutations -----------------------------------------------------------

    def add(self, text: str, tags: Optional[List[str]] = None) -> MemoryRecord:
        """Append a new memory.

        Raises:
            EmptyMemory: If text is empty after trimming (nothing is written).
            LockTimeout, MalformedStore: Propagated from the persistence layer.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            raise EmptyMemory()

        now = _now_iso()
        record = MemoryRecord(
            id=_generate_id(),
            text=cleaned,
            tags=normalize_tags(tags),
            keywords=extract_keywords(cleaned),
            created_at=now,
            updated_at=now,
            deleted_at=None,
        )

        with self._lock():
            records = read_records(self.path)
            existing = {r.id for r in records}
            while record.id in existing:
                record.id = _generate_id()
            records.append(record)
            atomic_write(self.path, records)

        logger.debug("Added %s (%d tags, %d keywords)",
                     record.id, len(record.tags), len(record.keywords))
        return record

    def soft_delete(self, record_id: str) -> DeleteResult:
        """Tombstone a record. Idempotent: a second call changes nothing."""
        record_id = (record_id or "").strip()
        if not record_id:
            return DeleteResult(found=False)
        with self._lock():
            records = read_records(self.path)
            for r in records:
                if r.id != record_id:
                    continue
                if not r.deleted_at:
                    now = _now_iso()
                    r.deleted_at = now
                    r.updated_at = now
                    atomic_write(self.path, records)
                    logger.debug("Soft-deleted %s", record_id)
                return DeleteResult(found=True, record=r)
        return DeleteResult(found=False)

    def purge(
        self,
        *,
        record_id: Optional[str] = None,
        tag: Optional[str] = None,
        match: Optional[str] = None,
        dry_run: bool = False,
    ) -> PurgeResult:
        """Hard-delete records selected by exactly one criterion.

        Args:
            record_id: Exact record ID.
            tag: Tag (case-insensitive).
            match: Case-insensitive substring of the text.
            dry_run: Report matching IDs without modifying the store.

        Raises:
            InvalidCriteria: If zero or several criteria are given
                (checked before any file access).
        """
        predicate = build_purge_predicate(record_id=record_id, tag=tag, match=match)

        if dry_run:
            ids = [r.id for r in self.load() if predicate(r)]
            return PurgeResult(count=len(ids), ids=ids, dry_run=True)

        with self._lock():
            records = read_records(self.path)
            ids = [r.id for r in records if predicate(r)]
            if ids:
                kept = [r for r in records if not predicate(r)]
                atomic_write(self.path, kept)
        logger.debug("Purged %d record(s)", len(ids))
        return PurgeResult(count=len(ids), ids=ids, dry_run=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_purge_predicate(
    *,
    record_id: Optional[str] = None,
    tag: Optional[str] = None,
    match: Optional[str] = None,
) -> Callable[[MemoryRecord], bool]:
    """Validate purge criteria and return the matching predicate."""
    rid = (record_id or "").strip()
    tag_value = (tag or "").strip().lower()
    needle = (match or "").strip().lower()

    given = [name for name, v in (("id", rid), ("tag", tag_value), ("match", needle)) if v]
    if len(given) != 1:
        if not given:
            raise InvalidCriteria("purge requires one of: id, tag, match")
        raise InvalidCriteria(
            f"purge accepts exactly one criterion, got: {', '.join(given)}"
        )

    if rid:
        return lambda r: r.id == rid
    if tag_value:
        return lambda r: tag_value in (t.lower() for t in r.tags)
    return lambda r: needle in (r.text or "").lower()


def compute_stats(records: List[MemoryRecord]) -> StoreStats:
    """Counts and tag histogram over all records (tombstones included)."""
    tags: dict = {}
    deleted = 0
    for r in records:
        if r.deleted_at:
            deleted += 1
        for t in r.tags:
            tags[t] = tags.get(t, 0) + 1
    return StoreStats(
        total=len(records),
        active=len(records) - deleted,
        deleted=deleted,
        tags=tags,
    )


def load_store(path: Optional[str] = None) -> Tuple[Path, List[MemoryRecord]]:
    """Resolve the store path and load its records."""
    resolved = resolve_memory_path(path)
    return resolved, read_records(resolved)
