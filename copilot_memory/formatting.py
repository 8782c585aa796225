"""
Human-readable renderings shared by the shell, CLI and MCP server.

Single source of truth for how hits, stats and recent memories are
displayed. The compressed context block itself is rendered by
copilot_memory.compress.
"""

from __future__ import annotations

from typing import List, Sequence

from copilot_memory.types import MemoryRecord, SearchHit, StoreStats, parse_iso

HIGH_RELEVANCE = 20
MEDIUM_RELEVANCE = 10


def relevance_label(score: float) -> str:
    if score >= HIGH_RELEVANCE:
        return "high"
    if score >= MEDIUM_RELEVANCE:
        return "medium"
    return "low"


def _tag_suffix(tags: Sequence[str]) -> str:
    return f" [{', '.join(tags)}]" if tags else ""


def format_search_results(hits: List[SearchHit], query: str) -> str:
    """Render hits as a Markdown list with relevance and metadata."""
    if not hits:
        return f'No memories found for "{query}".'

    noun = "memory" if len(hits) == 1 else "memories"
    lines: List[str] = [
        f'## Memory Search: "{query}"',
        f"Found {len(hits)} relevant {noun}:",
        "",
    ]
    for rank, h in enumerate(hits, 1):
        lines.append(f"### {rank}. {h.text}")
        meta: List[str] = []
        if h.tags:
            meta.append(f"Tags: {', '.join(h.tags)}")
        if h.keywords:
            meta.append(f"Keywords: {', '.join(h.keywords[:5])}")
        meta.append(f"Relevance: {relevance_label(h.score)} ({h.score:.1f})")
        meta.append(f"ID: `{h.id}`")
        lines.append(" | ".join(meta))
        lines.append("")
    return "\n".join(lines)


def format_raw_hits(hits: List[SearchHit]) -> str:
    """Compact one-line-per-hit listing for scripting."""
    if not hits:
        return "No matches."
    return "\n".join(
        f"- {h.id}{_tag_suffix(h.tags)} (score {h.score:.1f}) {h.text}"
        for h in hits
    )


def format_stats(stats: StoreStats, top: int = 25) -> str:
    """Plain-text stats: counts line, then the most frequent tags."""
    lines = [f"total={stats.total} active={stats.active} deleted={stats.deleted}"]
    entries = stats.top_tags(top)
    if entries:
        lines.append("top tags:")
        lines.extend(f"- {tag}: {count}" for tag, count in entries)
    return "\n".join(lines)


def format_stats_markdown(stats: StoreStats, top: int = 10) -> str:
    """Markdown tables for the stats resource."""
    lines = [
        "# Memory Store Stats",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total memories | {stats.total} |",
        f"| Active | {stats.active} |",
        f"| Deleted | {stats.deleted} |",
    ]
    entries = stats.top_tags(top)
    if entries:
        lines += ["", "## Top Tags", "", "| Tag | Count |", "|-----|-------|"]
        lines.extend(f"| {tag} | {count} |" for tag, count in entries)
    return "\n".join(lines)


def format_recent(records: Sequence[MemoryRecord], limit: int = 10) -> str:
    """Most recently created active memories, newest first."""
    active = [r for r in records if not r.deleted_at]
    active.sort(key=lambda r: r.created_at, reverse=True)

    lines = ["# Recent Memories", ""]
    if not active:
        lines.append("_No memories stored yet._")
        return "\n".join(lines)

    for r in active[:limit]:
        created = parse_iso(r.created_at)
        date = created.strftime("%Y-%m-%d %H:%M UTC") if created else r.created_at
        lines.append(f"- **{date}**{_tag_suffix(r.tags)}: {r.text}")
    return "\n".join(lines)
