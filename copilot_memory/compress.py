"""
Budget-constrained context compression.

compress_deterministic() renders ranked search hits into a fixed-structure
Markdown block:

    # Copilot Context (auto)

    ## Relevant memory
    - (<id>) [tag, tag] text
    - (<id>) text

When the block exceeds the character budget, whole trailing lines are
dropped; a line is never cut in the middle.

shape_context() optionally hands the deterministic block to the remote
shaping service. Any remote failure falls back to the deterministic text.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from copilot_memory.deepseek import DeepSeekConfig, deepseek_compress, deepseek_shape
from copilot_memory.errors import RemoteCollaboratorFailure
from copilot_memory.search import search
from copilot_memory.types import (
    CompressResult,
    MemoryRecord,
    SearchHit,
    ShapedContext,
)

logger = logging.getLogger(__name__)

MIN_BUDGET = 200
DEFAULT_BUDGET = 1200
DEFAULT_COMPRESS_LIMIT = 25

CONTEXT_TITLE = "# Copilot Context (auto)"
CONTEXT_SECTION = "## Relevant memory"

# (cfg, query_or_task, context, budget) -> text
ShaperType = Callable[[DeepSeekConfig, str, str, int], str]


def format_hit_line(hit: SearchHit) -> str:
    """One bullet line per hit. Embedded newlines are folded to spaces."""
    tag_str = f" [{', '.join(hit.tags)}]" if hit.tags else ""
    text = " ".join(hit.text.split())
    return f"- ({hit.id}){tag_str} {text}"


def render_lines(hits: List[SearchHit]) -> List[str]:
    lines = [CONTEXT_TITLE, "", CONTEXT_SECTION]
    lines.extend(format_hit_line(h) for h in hits)
    return lines


def fit_lines(lines: List[str], budget: int) -> List[str]:
    """Longest prefix of *lines* whose joined size (each + newline) ≤ budget."""
    out: List[str] = []
    size = 0
    for line in lines:
        if size + len(line) + 1 > budget:
            break
        out.append(line)
        size += len(line) + 1
    return out


def compress_deterministic(
    records: Sequence[MemoryRecord],
    query: str,
    budget: int = DEFAULT_BUDGET,
    limit: int = DEFAULT_COMPRESS_LIMIT,
    now: Optional[datetime] = None,
) -> CompressResult:
    """Render the best matches for *query* into at most *budget* characters.

    Args:
        records: Full record collection (tombstones are skipped by search).
        query: Search query.
        budget: Character budget, clamped to at least 200.
        limit: Maximum hits considered, clamped to at least 1.

    Returns:
        CompressResult. included_hits lists every ranked hit considered,
        even when some of their lines were dropped to fit the budget.
    """
    budget = max(MIN_BUDGET, budget)
    limit = max(1, limit)
    hits = search(records, query, limit, now=now)

    lines = render_lines(hits)
    text = "\n".join(lines) + "\n"
    if len(text) <= budget:
        return CompressResult(
            text=text,
            included_hits=hits,
            budget_requested=budget,
            chars_used=len(text),
            truncated=False,
        )

    kept = fit_lines(lines, budget)
    text = "\n".join(kept) + "\n"
    logger.debug("Compressed %d hits: kept %d of %d lines (%d/%d chars)",
                 len(hits), len(kept), len(lines), len(text), budget)
    return CompressResult(
        text=text,
        included_hits=hits,
        budget_requested=budget,
        chars_used=len(text),
        truncated=True,
    )


def shape_context(
    records: Sequence[MemoryRecord],
    query: str,
    budget: int = DEFAULT_BUDGET,
    limit: int = DEFAULT_COMPRESS_LIMIT,
    *,
    mode: str = "compress",
    use_llm: bool = False,
    shaper_config: Optional[DeepSeekConfig] = None,
    shaper: Optional[ShaperType] = None,
    now: Optional[datetime] = None,
) -> ShapedContext:
    """Deterministic compression, optionally refined by the remote service.

    The remote call happens only when *use_llm* is true and the config has
    an API key. It runs after the deterministic step and never touches the
    store; on failure the deterministic text is returned.

    Args:
        mode: "compress" (query-focused shrink) or "shape" (task guidance).
        shaper: Injectable remote function (for testing). Defaults to
            deepseek_compress / deepseek_shape according to *mode*.
    """
    if mode not in ("compress", "shape"):
        raise ValueError(f"Invalid shaping mode: {mode!r}")

    det = compress_deterministic(records, query, budget, limit, now=now)
    result = ShapedContext(text=det.text, compressed=det)

    if not use_llm:
        return result

    cfg = shaper_config if shaper_config is not None else DeepSeekConfig.from_env()
    if not cfg.enabled:
        result.fallback_reason = "DEEPSEEK_API_KEY is not set"
        return result

    remote = shaper or (deepseek_shape if mode == "shape" else deepseek_compress)
    try:
        text = remote(cfg, query, det.text, det.budget_requested)
    except RemoteCollaboratorFailure as e:
        logger.warning("Remote %s failed, using deterministic context: %s", mode, e)
        result.fallback_reason = str(e)
        return result

    if len(text) > det.budget_requested:
        text = text[:det.budget_requested]
    result.text = text
    result.method = "deepseek"
    return result
