"""
copilot-memory CLI — One-Shot Memory Commands

Commands:
    copilot-memory add    TEXT... [--tags a,b]             — store a memory
    copilot-memory search QUERY... [--limit N] [--raw]     — ranked search → stdout
    copilot-memory compress QUERY... [--budget N] [--llm]  — context block → stdout
    copilot-memory delete ID                               — soft-delete (tombstone)
    copilot-memory purge  (--id|--tag|--match) [--dry-run] — hard-delete
    copilot-memory export                                  — raw JSON → stdout
    copilot-memory stats                                   — counts + top tags
    copilot-memory shell                                   — interactive REPL
    copilot-memory serve                                   — MCP server (stdio)

Environment variables:
    MEMORY_PATH                   Store file (default: .copilot-memory.json)
    MEMORY_LOCK_PATH              Lock marker (default: sibling .copilot-memory.lock)
    COPILOT_MEMORY_LOCK_TIMEOUT   Lock wait in seconds (default: 2.5)
    DEEPSEEK_API_KEY              Enables --llm / --shape
    DEEPSEEK_BASE_URL, DEEPSEEK_MODEL

Precedence (invariant):
    CLI --flag  >  environment variable  >  --config file  >  compiled default

Exit codes:
    0  Success (including "not found" on delete)
    1  Operational error (bad args, empty memory, invalid purge criteria)
    2  Persistence or internal failure (malformed store, lock timeout, I/O)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from copilot_memory.errors import (
    EmptyMemory,
    InvalidCriteria,
    LockTimeout,
    MalformedStore,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config resolution
# ---------------------------------------------------------------------------


def _resolve_config(args: argparse.Namespace):
    """Build the effective config: --config file, then env, then flags."""
    from copilot_memory.config import load_config

    config = load_config(getattr(args, "config", None))
    config.apply_env()
    if getattr(args, "path", None):
        config.store.memory_path = args.path
    if getattr(args, "lock_path", None):
        config.store.lock_path = args.lock_path
    return config


def _split_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


# ===========================================================================
# Commands
# ===========================================================================


def cmd_add(args: argparse.Namespace) -> None:
    """Store a new memory."""
    store = _resolve_config(args).open_store()
    record = store.add(" ".join(args.text), _split_tags(args.tags))
    if getattr(args, "json", False):
        _print_json(record.to_dict())
    else:
        print(record.id)
    _info(f"Added {record.id} ({len(record.keywords)} keywords)")


def cmd_search(args: argparse.Namespace) -> None:
    """Ranked keyword search over active memories."""
    from copilot_memory.formatting import format_raw_hits, format_search_results
    from copilot_memory.search import search

    config = _resolve_config(args)
    query = " ".join(args.query).strip()
    limit = config.search.clamp(args.limit)
    hits = search(config.open_store().load(), query, limit)

    if getattr(args, "json", False):
        _print_json({"matches": len(hits), "hits": [h.to_dict() for h in hits]})
    elif args.raw:
        print(format_raw_hits(hits))
    else:
        print(format_search_results(hits, query))


def cmd_compress(args: argparse.Namespace) -> None:
    """Budget-bounded context block for a query (optionally shaped remotely)."""
    from copilot_memory.compress import shape_context

    config = _resolve_config(args)
    query = " ".join(args.query).strip()
    budget = args.budget if args.budget is not None else config.compress.default_budget
    limit = args.limit if args.limit is not None else config.compress.default_limit
    use_llm = args.llm or args.shape

    result = shape_context(
        config.open_store().load(), query, budget, limit,
        mode="shape" if args.shape else "compress",
        use_llm=use_llm,
        shaper_config=config.shaping.to_deepseek() if use_llm else None,
    )
    if use_llm and result.fallback_reason:
        _warn(
            f"[compress] Remote shaping unavailable ({result.fallback_reason}); "
            "using deterministic compression."
        )

    if getattr(args, "json", False):
        payload = result.compressed.to_dict() if result.compressed else {}
        payload.update({"text": result.text, "method": result.method})
        if result.fallback_reason:
            payload["fallback_reason"] = result.fallback_reason
        _print_json(payload)
    else:
        sys.stdout.write(result.text)
        if not result.text.endswith("\n"):
            sys.stdout.write("\n")
    _info(f"[compress] {result.hit_count} hits, {len(result.text)} chars via {result.method}")


def cmd_delete(args: argparse.Namespace) -> None:
    """Soft-delete a memory by id."""
    res = _resolve_config(args).open_store().soft_delete(args.id)
    if getattr(args, "json", False):
        _print_json({
            "found": res.found,
            "record": res.record.to_dict() if res.record else None,
        })
    elif res.found:
        print(f"Soft-deleted {args.id}")
    else:
        print(f"Not found: {args.id}")


def cmd_purge(args: argparse.Namespace) -> None:
    """Hard-delete memories by id, tag or substring."""
    res = _resolve_config(args).open_store().purge(
        record_id=args.id, tag=args.tag, match=args.match, dry_run=args.dry_run,
    )
    if getattr(args, "json", False):
        _print_json(res.to_dict())
        return
    verb = "Would purge" if res.dry_run else "Purged"
    _info(f"{verb} {res.count} memories")
    for mid in res.ids:
        print(mid)


def cmd_export(args: argparse.Namespace) -> None:
    """Dump the full store (tombstones included) as JSON."""
    sys.stdout.write(_resolve_config(args).open_store().export_json())


def cmd_stats(args: argparse.Namespace) -> None:
    """Counts and tag histogram."""
    from copilot_memory.formatting import format_stats

    stats = _resolve_config(args).open_store().stats()
    if getattr(args, "json", False):
        _print_json(stats.to_dict())
    else:
        print(format_stats(stats))


def cmd_shell(args: argparse.Namespace) -> None:
    """Start the interactive REPL."""
    from copilot_memory.shell import shell_repl
    shell_repl(_resolve_config(args), quiet=getattr(args, "quiet", False))


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the MCP server in the foreground (stdio)."""
    try:
        from copilot_memory.mcp.server import build_parser, create_server
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install copilot-memory[mcp]")
        sys.exit(1)

    server_argv: List[str] = []
    if getattr(args, "path", None):
        server_argv += ["--path", args.path]
    if getattr(args, "lock_path", None):
        server_argv += ["--lock-path", args.lock_path]
    if getattr(args, "config", None):
        server_argv += ["--config", args.config]
    if args.audit_log:
        server_argv += ["--audit-log", args.audit_log]
    server_args = build_parser().parse_args(server_argv)

    try:
        mcp, _config = create_server(server_args)
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install copilot-memory[mcp]")
        sys.exit(1)

    _info("copilot-memory MCP server (stdio). Press Ctrl+C to stop.")
    mcp.run()


# ===========================================================================
# Entry point
# ===========================================================================


def build_parser() -> argparse.ArgumentParser:
    # Shared flags on every subcommand. SUPPRESS defaults keep subparser
    # defaults from overriding values parsed at the main-parser level.
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--path", default=argparse.SUPPRESS,
        help="Memory store file (default: $MEMORY_PATH or .copilot-memory.json)",
    )
    _common.add_argument(
        "--lock-path", default=argparse.SUPPRESS,
        help="Lock marker file (default: $MEMORY_LOCK_PATH or next to the store)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (optional)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="copilot-memory",
        description="copilot-memory — local memory store for LLM context injection",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- add ---------------------------------------------------------------
    p_add = sub.add_parser("add", parents=[_common], help="Store a new memory")
    p_add.add_argument("text", nargs="+", help="Memory text")
    p_add.add_argument("--tags", default=None, help="Comma-separated tags")
    p_add.set_defaults(func=cmd_add)

    # -- search ------------------------------------------------------------
    p_search = sub.add_parser("search", parents=[_common], help="Search memories")
    p_search.add_argument("query", nargs="+", help="Search query")
    p_search.add_argument("--limit", "-k", type=int, default=None,
                          help="Max results (default: 10)")
    p_search.add_argument("--raw", action="store_true", help="Compact one-line output")
    p_search.set_defaults(func=cmd_search)

    # -- compress ----------------------------------------------------------
    p_comp = sub.add_parser(
        "compress", parents=[_common],
        help="Budget-bounded context block (stdout)",
    )
    p_comp.add_argument("query", nargs="+", help="Query or task description")
    p_comp.add_argument("--budget", type=int, default=None,
                        help="Character budget (default: 1200, minimum 200)")
    p_comp.add_argument("--limit", type=int, default=None,
                        help="Max memories considered (default: 25)")
    p_comp.add_argument("--llm", action="store_true",
                        help="Refine with the remote model (needs DEEPSEEK_API_KEY)")
    p_comp.add_argument("--shape", action="store_true",
                        help="Reshape into task guidance with the remote model")
    p_comp.set_defaults(func=cmd_compress)

    # -- delete ------------------------------------------------------------
    p_del = sub.add_parser("delete", parents=[_common], help="Soft-delete a memory")
    p_del.add_argument("id", help="Memory ID")
    p_del.set_defaults(func=cmd_delete)

    # -- purge -------------------------------------------------------------
    p_purge = sub.add_parser("purge", parents=[_common], help="Hard-delete memories")
    p_purge.add_argument("--id", default=None, help="Exact memory ID")
    p_purge.add_argument("--tag", default=None, help="Tag (case-insensitive)")
    p_purge.add_argument("--match", default=None, help="Substring of the text")
    p_purge.add_argument("--dry-run", action="store_true", help="Preview only")
    p_purge.set_defaults(func=cmd_purge)

    # -- export / stats ----------------------------------------------------
    p_export = sub.add_parser("export", parents=[_common], help="Dump raw JSON")
    p_export.set_defaults(func=cmd_export)

    p_stats = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p_stats.set_defaults(func=cmd_stats)

    # -- shell / serve -----------------------------------------------------
    p_shell = sub.add_parser("shell", parents=[_common], help="Interactive shell")
    p_shell.set_defaults(func=cmd_shell)

    p_serve = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p_serve.add_argument("--audit-log", default=None,
                         help="Audit log file path (default: stderr)")
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: copilot-memory <command> [args]."""
    global _quiet

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse usage errors exit 2; bad arguments are operational errors here
        sys.exit(1 if e.code == 2 else e.code)

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except (EmptyMemory, InvalidCriteria) as e:
        _warn(f"Error: {e}")
        sys.exit(1)
    except (MalformedStore, LockTimeout) as e:
        _warn(f"Error: {e}")
        sys.exit(2)
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. copilot-memory export | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
