"""
Relevance scoring and search over memory records.

Scoring is additive and explainable. For each whitespace-separated query
token (lower-cased):

    +5 per literal occurrence of the token in the record text
    +8 if a tag equals the token
    +6 if an extracted keyword equals the token

plus a recency bonus of up to 5 points, decaying linearly from the last
update to zero at 150 days. The bonus is only added when at least one
token contributed, so an unrelated query never matches recent records.

Pure functions: records are passed in, nothing here touches the disk.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from copilot_memory.types import MemoryRecord, SearchHit, parse_iso

TEXT_HIT_WEIGHT = 5
TAG_HIT_WEIGHT = 8
KEYWORD_HIT_WEIGHT = 6
RECENCY_MAX_BONUS = 5.0
RECENCY_DECAY_DAYS = 30.0  # one point lost per 30 days

DEFAULT_SEARCH_LIMIT = 10

_SECONDS_PER_DAY = 86400.0


def query_tokens(query: str) -> List[str]:
    return query.strip().lower().split()


def recency_bonus(record: MemoryRecord, now: Optional[datetime] = None) -> float:
    """0–5 points; full for records updated within a day, 0 after 150 days."""
    stamp = parse_iso(record.updated_at) or parse_iso(record.created_at)
    if stamp is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    age_days = max(0.0, (now - stamp).total_seconds() / _SECONDS_PER_DAY)
    return max(0.0, RECENCY_MAX_BONUS - min(RECENCY_MAX_BONUS, age_days / RECENCY_DECAY_DAYS))


def score_breakdown(
    record: MemoryRecord,
    query: str,
    now: Optional[datetime] = None,
) -> Tuple[float, float]:
    """Return (token_score, recency_bonus) for a record against a query."""
    tokens = query_tokens(query)
    if not tokens:
        return 0.0, 0.0

    text = (record.text or "").lower()
    tags = {t.lower() for t in record.tags}
    keywords = set(record.keywords)

    token_score = 0.0
    for tok in tokens:
        token_score += text.count(tok) * TEXT_HIT_WEIGHT
        if tok in tags:
            token_score += TAG_HIT_WEIGHT
        if tok in keywords:
            token_score += KEYWORD_HIT_WEIGHT

    return token_score, recency_bonus(record, now)


def score_record(
    record: MemoryRecord,
    query: str,
    now: Optional[datetime] = None,
) -> float:
    """Relevance score ≥ 0. Zero unless some query token matched."""
    token_score, recency = score_breakdown(record, query, now)
    if token_score <= 0:
        return 0.0
    return token_score + recency


def search(
    records: Sequence[MemoryRecord],
    query: str,
    limit: int = DEFAULT_SEARCH_LIMIT,
    now: Optional[datetime] = None,
) -> List[SearchHit]:
    """Rank active records by score, best first.

    Tombstoned and zero-score records are excluded. Equal scores keep
    store order (the sort is stable). At most max(1, limit) hits.
    """
    now = now or datetime.now(timezone.utc)
    hits: List[SearchHit] = []
    for r in records:
        if r.deleted_at:
            continue
        s = score_record(r, query, now)
        if s <= 0:
            continue
        hits.append(SearchHit.from_record(r, s))
    hits.sort(key=lambda h: h.score, reverse=True)
    return hits[:max(1, limit)]
