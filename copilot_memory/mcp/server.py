"""
copilot_memory MCP Server — Project Memory for LLM Assistants

Standalone MCP server (stdio) exposing the memory store to Copilot, Claude
Desktop, VS Code and any MCP-compatible client.

Architecture: thin MCP layer delegating to MemoryStore, search() and
shape_context(). No business logic lives in this module.

Usage:
    python -m copilot_memory.mcp.server
    python -m copilot_memory.mcp.server --path ~/project/.copilot-memory.json
    copilot-memory-mcp --audit-log /tmp/copilot-memory-audit.jsonl
"""

from __future__ import annotations

import argparse
import logging

logger = logging.getLogger(__name__)

# Instructions embedded in FastMCP, visible to any MCP client.
_MCP_INSTRUCTIONS = (
    "Local project memory for coding assistants (7 tools).\n"
    "\n"
    "BEFORE WORK: Call inject_context with the task to retrieve decisions,\n"
    "             preferences and constraints relevant to it.\n"
    "SEARCH:      memory_search for interactive lookup.\n"
    "STORE:       memory_write when the user says remember/save/note.\n"
    "CONTEXT:     memory_compress for a budget-bounded Markdown block.\n"
    "MAINTAIN:    memory_delete (soft), memory_purge (hard, supports dry_run),\n"
    "             memory_export (raw JSON).\n"
    "\n"
    "Rules:\n"
    "- Store short, self-contained statements (one decision per memory)\n"
    "- Use a few lowercase tags per memory\n"
    "- NEVER store secrets or credentials\n"
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the memory MCP server."""
    p = argparse.ArgumentParser(
        prog="copilot-memory-mcp",
        description="copilot-memory MCP Server — project memory for LLM assistants",
    )
    p.add_argument(
        "--path",
        default=None,
        help="Memory store file (default: $MEMORY_PATH or .copilot-memory.json)",
    )
    p.add_argument(
        "--lock-path",
        default=None,
        help="Lock marker file (default: $MEMORY_LOCK_PATH or next to the store)",
    )
    p.add_argument(
        "--config",
        default=None,
        help="JSON config file (optional)",
    )
    p.add_argument(
        "--audit-log",
        default=None,
        help="Audit log file path (default: stderr)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return p


def create_server(args=None):
    """
    Create and configure the FastMCP server with memory tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, config) tuple.
    """
    from mcp.server.fastmcp import FastMCP

    from copilot_memory.config import load_config
    from copilot_memory.mcp.audit import AuditLogger
    from copilot_memory.mcp.tools import register_memory_tools

    if args is None:
        args = build_parser().parse_args()

    # Precedence: flag > env > config file > default
    config = load_config(args.config).apply_env()
    if args.path:
        config.store.memory_path = args.path
    if args.lock_path:
        config.store.lock_path = args.lock_path

    store = config.open_store()

    audit_output = None
    if args.audit_log:
        audit_output = open(args.audit_log, "a", encoding="utf-8")
    audit = AuditLogger(output=audit_output, store_path=str(store.path))

    mcp = FastMCP(
        name="copilot-memory",
        instructions=_MCP_INSTRUCTIONS,
    )

    register_memory_tools(mcp, config, audit=audit)

    logger.info(
        "copilot-memory MCP server ready: store=%s, lock=%s, shaping=%s",
        store.path, store.lock_path,
        "on" if config.shaping.to_deepseek().enabled else "off",
    )

    return mcp, config


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    mcp, _config = create_server(args)
    mcp.run()


if __name__ == "__main__":
    main()
