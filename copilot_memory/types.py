"""
Memory Data Model — Records, Hits, and Results

Defines the single persisted entity (MemoryRecord) and the value objects
returned by search, compression, and maintenance operations.

On disk, records use camelCase keys (createdAt, updatedAt, deletedAt);
in Python they are snake_case dataclass attributes.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# JSON key <-> attribute mapping for MemoryRecord
_JSON_KEYS = {
    "id": "id",
    "text": "text",
    "tags": "tags",
    "keywords": "keywords",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "deletedAt": "deleted_at",
}


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` or offset form). None if unparseable."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _generate_id() -> str:
    """Generate a record ID: ``m_<compact UTC timestamp>_<6 hex chars>``.

    The timestamp prefix keeps IDs roughly ordered by creation time;
    the random suffix avoids collisions within the same millisecond.
    """
    ts = _now_iso().replace(":", "").replace(".", "").replace("-", "")
    return f"m_{ts}_{secrets.token_hex(3)}"


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Trim, lower-case and de-duplicate tags, dropping empties (first seen wins)."""
    out: List[str] = []
    for t in tags or []:
        cleaned = str(t).strip().lower()
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out


# ---------------------------------------------------------------------------
# Memory Record (the persisted entity)
# ---------------------------------------------------------------------------

@dataclass
class MemoryRecord:
    """
    A single memory as stored in the JSON file.

    Rules:
    - text is never empty and is never changed after creation.
    - keywords are derived from text once, at creation.
    - deleted_at marks a tombstone; tombstones are never revived.
    """

    id: str = field(default_factory=_generate_id)
    text: str = ""
    tags: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    deleted_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        """True if the record is a tombstone."""
        return bool(self.deleted_at)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the on-disk camelCase keys."""
        return {key: getattr(self, attr) for key, attr in _JSON_KEYS.items()}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryRecord:
        """Deserialize from an on-disk object. Unknown keys are ignored.

        Absent fields load as empty values rather than fresh defaults, so a
        record without an id or timestamps keeps them absent across loads.
        """
        return cls(
            id=d.get("id") or "",
            text=d.get("text") or "",
            tags=list(d.get("tags") or []),
            keywords=list(d.get("keywords") or []),
            created_at=d.get("createdAt") or "",
            updated_at=d.get("updatedAt") or "",
            deleted_at=d.get("deletedAt"),
        )


# ---------------------------------------------------------------------------
# Search / compression results
# ---------------------------------------------------------------------------

@dataclass
class SearchHit:
    """A record matched by a query, with its relevance score."""

    id: str
    text: str
    tags: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    score: float = 0.0

    @classmethod
    def from_record(cls, record: MemoryRecord, score: float) -> SearchHit:
        return cls(
            id=record.id,
            text=record.text,
            tags=list(record.tags),
            keywords=list(record.keywords),
            created_at=record.created_at,
            updated_at=record.updated_at,
            score=score,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON output (camelCase timestamps, like the store)."""
        return {
            "id": self.id,
            "text": self.text,
            "tags": list(self.tags),
            "keywords": list(self.keywords),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "score": self.score,
        }


@dataclass
class CompressResult:
    """Output of deterministic compression.

    included_hits is the full ranked hit list considered, before any
    line-level truncation of the rendered text.
    """

    text: str
    included_hits: List[SearchHit] = field(default_factory=list)
    budget_requested: int = 0
    chars_used: int = 0
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "included": [h.to_dict() for h in self.included_hits],
            "budget": self.budget_requested,
            "used": self.chars_used,
            "truncated": self.truncated,
        }


@dataclass
class ShapedContext:
    """Result of compression with optional remote shaping."""

    text: str
    method: str = "deterministic"  # "deterministic" | "deepseek"
    fallback_reason: Optional[str] = None
    compressed: Optional[CompressResult] = None

    @property
    def hit_count(self) -> int:
        return len(self.compressed.included_hits) if self.compressed else 0


# ---------------------------------------------------------------------------
# Maintenance results
# ---------------------------------------------------------------------------

@dataclass
class DeleteResult:
    """Outcome of a soft-delete."""

    found: bool
    record: Optional[MemoryRecord] = None


@dataclass
class PurgeResult:
    """Outcome of a purge (or its dry-run preview)."""

    count: int = 0
    ids: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StoreStats:
    """Aggregate counts and tag histogram (tombstones included in tags)."""

    total: int = 0
    active: int = 0
    deleted: int = 0
    tags: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def top_tags(self, n: int = 25) -> List[tuple]:
        """Tags by descending count (ties keep first-seen order)."""
        return sorted(self.tags.items(), key=lambda kv: -kv[1])[:n]
