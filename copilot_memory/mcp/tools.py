"""
copilot_memory MCP tools, resources and prompts.

Thin wrappers around MemoryStore, search() and shape_context(). Every tool:

    ① clamps budget/limit arguments to the configured ranges
    ② runs the operation against a freshly loaded store
    ③ returns a dict with "status" ("ok" | "error")
    ④ writes one audit record (always, in a finally block)

Tools:
    memory_write, memory_search, memory_compress, memory_delete,
    memory_purge, memory_export, inject_context
Resources:
    memory://stats, memory://recent
Prompts:
    summarize-memories, remember-decision, inject-context
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

from copilot_memory.compress import shape_context
from copilot_memory.config import MemoryConfig
from copilot_memory.deepseek import DeepSeekConfig
from copilot_memory.errors import MemoryStoreError
from copilot_memory.formatting import (
    format_recent,
    format_search_results,
    format_stats_markdown,
)
from copilot_memory.search import search

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10
SUMMARY_LIMIT = 15
DECISION_TAGS = ("decision", "architecture")


def no_context_message(task: str) -> str:
    return (
        "## No Relevant Context Found\n\n"
        f'No stored memories matched the task: "{task}"\n\n'
        "Proceed with your best judgment, and consider using `memory_write` "
        "to store relevant decisions for future reference."
    )


def context_footer(method: str, count: int, chars: int) -> str:
    return f"\n\n---\n_Context shaped via {method} | {count} memories | {chars} chars_"


def register_memory_tools(
    mcp,
    config: MemoryConfig,
    *,
    audit=None,
    shaper_config: Optional[DeepSeekConfig] = None,
) -> None:
    """
    Register memory tools, resources and prompts on a FastMCP instance.

    Args:
        mcp: FastMCP server instance (or anything exposing the same
            tool/resource/prompt decorators).
        config: Resolved MemoryConfig (store location, budgets, limits).
        audit: AuditLogger for the JSONL trail. None → stderr logger.
        shaper_config: Remote shaping endpoint. None → read from the
            environment on every call.
    """
    from copilot_memory.mcp.audit import AuditLogger

    store = config.open_store()
    if audit is None:
        audit = AuditLogger(store_path=str(store.path))

    def _shaper() -> DeepSeekConfig:
        if shaper_config is not None:
            return shaper_config
        return config.shaping.to_deepseek()

    def _error(e: Exception, prefix: str) -> Dict[str, Any]:
        if isinstance(e, MemoryStoreError):
            return {"status": "error", "error": type(e).__name__, "message": str(e)}
        logger.exception("%s failed", prefix)
        return {"status": "error", "error": type(e).__name__,
                "message": f"{prefix} failed: {e}"}

    # =====================================================================
    # WRITE
    # =====================================================================

    @mcp.tool()
    def memory_write(text: str, tags: Optional[List[str]] = None) -> Dict[str, Any]:
        """Store a memory (decision, preference, convention, constraint).

        Use this when the user says "remember", "save", "note" or "store".
        Keywords are extracted automatically.

        Args:
            text: Memory text to store.
            tags: Optional tags (lowercased, deduplicated).

        Returns:
            id: Stored memory ID.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            detail = audit.make_content_detail(text or "")
            rec = store.add(text or "", tags)
            detail["id"] = rec.id
            return {
                "status": "ok",
                "id": rec.id,
                "tags": rec.tags,
                "keywords": rec.keywords,
                "message": f"Added {rec.id}",
            }
        except Exception as e:
            outcome = "error"
            return _error(e, "Write")
        finally:
            audit.log("memory_write", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # READ
    # =====================================================================

    @mcp.tool()
    def memory_search(query: str, limit: int = 10, raw: bool = False) -> Dict[str, Any]:
        """Search, find or recall stored memories by keyword.

        Args:
            query: Search query.
            limit: Max results (1-50, default 10).
            raw: Return structured hits instead of formatted Markdown.

        Returns:
            matches: Number of hits.
            text: Markdown results (raw=False) or hits: list (raw=True).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            q = (query or "").strip()
            limit = config.search.clamp(limit)
            hits = search(store.load(), q, limit)
            detail = {"q_len": len(q), "limit": limit, "matches": len(hits)}
            result: Dict[str, Any] = {"status": "ok", "matches": len(hits)}
            if raw:
                result["hits"] = [h.to_dict() for h in hits]
            else:
                result["text"] = format_search_results(hits, q)
            return result
        except Exception as e:
            outcome = "error"
            return _error(e, "Search")
        finally:
            audit.log("memory_search", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def memory_compress(
        query: str,
        budget: int = 1200,
        limit: int = 25,
        llm: bool = False,
    ) -> Dict[str, Any]:
        """Compact Markdown context block from the memories relevant to a query.

        Args:
            query: Search query.
            budget: Character budget (200-8000, default 1200).
            limit: Max memories to consider (1-50, default 25).
            llm: Refine with the remote model when DEEPSEEK_API_KEY is set.

        Returns:
            text: Context block (never longer than budget).
            method: "deterministic" or "deepseek".
            included: IDs of the memories considered.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            q = (query or "").strip()
            budget = config.compress.clamp_budget(budget)
            limit = config.search.clamp(limit)
            shaped = shape_context(
                store.load(), q, budget, limit,
                mode="compress",
                use_llm=llm,
                shaper_config=_shaper() if llm else None,
            )
            det = shaped.compressed
            detail = {"budget": budget, "hits": shaped.hit_count,
                      "method": shaped.method}
            result: Dict[str, Any] = {
                "status": "ok",
                "text": shaped.text,
                "method": shaped.method,
                "included": [h.id for h in det.included_hits] if det else [],
                "budget": budget,
                "used": len(shaped.text),
                "truncated": det.truncated if det else False,
            }
            if shaped.fallback_reason:
                result["fallback_reason"] = shaped.fallback_reason
            return result
        except Exception as e:
            outcome = "error"
            return _error(e, "Compress")
        finally:
            audit.log("memory_compress", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # DELETE
    # =====================================================================

    @mcp.tool()
    def memory_delete(id: str) -> Dict[str, Any]:
        """Soft-delete a memory by ID (tombstone; excluded from search).

        Args:
            id: Memory ID to delete.

        Returns:
            found: Whether the ID exists in the store.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        record_id = (id or "").strip()
        detail: Dict[str, Any] = {"id": record_id}
        try:
            res = store.soft_delete(record_id)
            detail["found"] = res.found
            return {
                "status": "ok",
                "found": res.found,
                "id": record_id,
                "message": (f"Soft-deleted {record_id}" if res.found
                            else f"Not found: {record_id}"),
            }
        except Exception as e:
            outcome = "error"
            return _error(e, "Delete")
        finally:
            audit.log("memory_delete", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def memory_purge(
        id: Optional[str] = None,
        tag: Optional[str] = None,
        match: Optional[str] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """Hard-delete memories by exactly one of: id, tag or substring match.

        Args:
            id: Exact memory ID.
            tag: Tag (case-insensitive).
            match: Case-insensitive substring of the memory text.
            dry_run: Preview without deleting.

        Returns:
            count: Number of memories purged (or that would be).
            ids: Their IDs.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"dry_run": dry_run}
        try:
            res = store.purge(record_id=id, tag=tag, match=match, dry_run=dry_run)
            detail["count"] = res.count
            verb = "Would purge" if res.dry_run else "Purged"
            result: Dict[str, Any] = {"status": "ok"}
            result.update(res.to_dict())
            result["message"] = f"{verb} {res.count}"
            return result
        except Exception as e:
            outcome = "error"
            return _error(e, "Purge")
        finally:
            audit.log("memory_purge", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # DATA
    # =====================================================================

    @mcp.tool()
    def memory_export() -> Dict[str, Any]:
        """Export the raw JSON memory file (tombstoned items included).

        Returns:
            count: Number of records.
            json: Serialized store.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            text = store.export_json()
            count = len(json.loads(text))
            detail = {"count": count, "bytes": len(text.encode("utf-8"))}
            return {"status": "ok", "count": count, "json": text}
        except Exception as e:
            outcome = "error"
            return _error(e, "Export")
        finally:
            audit.log("memory_export", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # INJECTION
    # =====================================================================

    @mcp.tool()
    def inject_context(
        task: str,
        budget: int = 1500,
        limit: int = 25,
        shape: bool = True,
    ) -> Dict[str, Any]:
        """Relevant project context for a coding task. Call BEFORE starting work.

        Retrieves stored decisions, preferences and constraints matching the
        task. When DEEPSEEK_API_KEY is set and shape=True, the context is
        reshaped into task-specific guidance; otherwise the deterministic
        block is returned.

        Args:
            task: The task about to be worked on (be specific).
            budget: Character budget (200-8000, default 1500).
            limit: Max memories to consider (1-50, default 25).
            shape: Allow remote shaping (default True).

        Returns:
            text: Context block with a metadata footer.
            method: "deterministic" or "deepseek".
            memories: Number of memories used.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            t = (task or "").strip()
            if not t:
                outcome = "error"
                return {
                    "status": "error",
                    "error": "MissingTask",
                    "message": ("task parameter is required. "
                                "Describe what you're about to work on."),
                }
            budget = config.compress.clamp_budget(budget, config.compress.inject_budget)
            limit = config.search.clamp(limit)
            shaped = shape_context(
                store.load(), t, budget, limit,
                mode="shape",
                use_llm=shape,
                shaper_config=_shaper() if shape else None,
            )
            count = shaped.hit_count
            detail = {"budget": budget, "hits": count, "method": shaped.method}
            if count == 0:
                return {"status": "ok", "text": no_context_message(t),
                        "method": shaped.method, "memories": 0}

            text = shaped.text + context_footer(shaped.method, count, len(shaped.text))
            result: Dict[str, Any] = {
                "status": "ok",
                "text": text,
                "method": shaped.method,
                "memories": count,
            }
            if shaped.fallback_reason:
                result["fallback_reason"] = shaped.fallback_reason
            return result
        except Exception as e:
            outcome = "error"
            return _error(e, "Inject")
        finally:
            audit.log("inject_context", rid, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # RESOURCES
    # =====================================================================

    @mcp.resource(
        "memory://stats",
        name="stats",
        description="Live statistics about the memory store",
        mime_type="text/markdown",
    )
    def memory_stats_resource() -> str:
        return format_stats_markdown(store.stats())

    @mcp.resource(
        "memory://recent",
        name="recent",
        description="Most recently added memories (last 10)",
        mime_type="text/markdown",
    )
    def memory_recent_resource() -> str:
        return format_recent(store.load(), RECENT_LIMIT)

    # =====================================================================
    # PROMPTS
    # =====================================================================

    @mcp.prompt(
        name="summarize-memories",
        description="Generate a summary of memories related to a topic",
    )
    def summarize_memories(topic: str) -> str:
        topic = (topic or "").strip()
        hits = search(store.load(), topic, SUMMARY_LIMIT)
        if hits:
            memory_context = "\n".join(
                f"- {h.text}" + (f" [{', '.join(h.tags)}]" if h.tags else "")
                for h in hits
            )
        else:
            memory_context = "_No memories found for this topic._"
        return (
            f'Please summarize my stored memories about "{topic}". '
            f"Here are the relevant memories:\n\n{memory_context}\n\n"
            "Provide a concise summary highlighting key themes, decisions, "
            "and preferences."
        )

    @mcp.prompt(
        name="remember-decision",
        description="Template for capturing an architectural or design decision",
    )
    def remember_decision(
        title: str,
        context: str,
        decision: str,
        consequences: Optional[str] = None,
    ) -> str:
        parts = [
            f"**Decision: {(title or '').strip()}**",
            f"Context: {(context or '').strip()}",
            f"Decision: {(decision or '').strip()}",
        ]
        if consequences and consequences.strip():
            parts.append(f"Consequences: {consequences.strip()}")
        return (
            "Please store this architectural decision as a memory with tags "
            f"[{', '.join(DECISION_TAGS)}]:\n\n{' | '.join(parts)}\n\n"
            "Use the memory_write tool to save this."
        )

    @mcp.prompt(
        name="inject-context",
        description=("Inject relevant memories as context for a task. "
                     "Use shape=true for LLM-optimized context."),
    )
    def inject_context_prompt(
        task: str,
        budget: Optional[int] = None,
        shape: bool = False,
    ) -> str:
        task = (task or "").strip()
        budget = config.compress.clamp_budget(budget)
        shaped = shape_context(
            store.load(), task, budget, config.compress.default_limit,
            mode="shape",
            use_llm=shape,
            shaper_config=_shaper() if shape else None,
        )
        return f"{shaped.text}\n\n---\n\nUsing the context above, help me with: {task}"

    logger.debug("Registered memory tools for %s", store.path)
