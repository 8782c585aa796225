"""
Structured JSONL audit trail for MCP tool calls.

One record per tool call, written to stderr (stdout carries JSON-RPC) or
to the file given with --audit-log:

    {"v":1,"ts":"...Z","rid":"<hex>","tool":"memory_write",
     "store":".copilot-memory.json","outcome":"ok","d":{...},"ms":1.3}

Memory text is never logged in full: content-carrying tools record a
short preview, the byte size and a SHA-256 digest.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

logger = logging.getLogger(__name__)

AUDIT_SCHEMA_VERSION = 1
PREVIEW_MAX_CHARS = 80


def _timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class AuditLogger:
    """JSONL audit logger. log() never raises."""

    def __init__(self, output: Optional[TextIO] = None, store_path: str = ""):
        """
        Args:
            output: File handle for audit output. None → stderr.
            store_path: Memory file path recorded with every entry.
        """
        self._output = output if output is not None else sys.stderr
        self.store_path = store_path

    def new_rid(self) -> str:
        """Generate a new request ID (UUID4 hex string)."""
        return uuid.uuid4().hex

    def log(
        self,
        tool: str,
        rid: str,
        outcome: str,
        detail: Optional[Dict[str, Any]] = None,
        latency_ms: float = 0.0,
    ) -> None:
        """Write one audit record.

        Args:
            tool: MCP tool name (e.g. "memory_write").
            rid: Request ID (from new_rid()).
            outcome: "ok" or "error".
            detail: Tool-specific fields.
            latency_ms: Wall-clock latency in milliseconds.
        """
        try:
            record: Dict[str, Any] = {
                "v": AUDIT_SCHEMA_VERSION,
                "ts": _timestamp(),
                "rid": rid,
                "tool": tool,
                "store": self.store_path,
                "outcome": outcome,
            }
            if detail:
                record["d"] = detail
            record["ms"] = round(latency_ms, 1)

            line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
            self._output.write(line + "\n")
            self._output.flush()
        except (OSError, ValueError, TypeError) as e:
            # Audit failures never fail the tool call itself
            logger.debug("Audit write failed for %s: %s", tool, e)

    @staticmethod
    def make_content_detail(text: str) -> Dict[str, Any]:
        """Privacy-safe summary of a memory text: size, digest, short preview."""
        raw = text.encode("utf-8")
        preview = " ".join(text[:PREVIEW_MAX_CHARS].split())
        if len(text) > PREVIEW_MAX_CHARS:
            preview += "…"
        return {
            "bytes": len(raw),
            "hash": hashlib.sha256(raw).hexdigest(),
            "preview": preview,
        }
