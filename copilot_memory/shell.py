"""
Interactive memory shell (REPL) for copilot_memory.

Commands:
    add [--tags a,b,c] <text>
    search <query> [--limit N] [--raw]
    compress [--query <q> | <q>] [--budget N] [--limit N] [--llm]
    delete <id>
    purge (--id <id> | --match <substr> | --tag <tag>) [--dry-run]
    export
    stats
    help | ?
    exit | quit

The store is reloaded before every command, so changes made by other
processes (e.g. the MCP server) are always visible. Command output goes to
stdout; the banner and warnings go to stderr.
"""

from __future__ import annotations

import logging
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Union

from copilot_memory.compress import shape_context
from copilot_memory.config import MemoryConfig
from copilot_memory.deepseek import DeepSeekConfig
from copilot_memory.errors import MemoryStoreError
from copilot_memory.formatting import format_raw_hits, format_search_results, format_stats
from copilot_memory.search import search
from copilot_memory.store import MemoryStore, compute_stats, serialize_records
from copilot_memory.types import MemoryRecord

logger = logging.getLogger(__name__)

PROMPT = "memory> "

# Options that never take a value
BOOLEAN_FLAGS = frozenset({"raw", "llm", "dry-run"})

HELP_TEXT = "\n".join([
    "",
    "Commands:",
    "  add [--tags a,b,c] <text>",
    "  search <query> [--limit N] [--raw]",
    "  compress --query <q> [--budget N] [--limit N] [--llm]",
    "  delete <id>",
    "  purge (--id <id> | --match <substr> | --tag <tag>) [--dry-run]",
    "  export",
    "  stats",
    "  help",
    "  exit",
    "",
])

# ---------------------------------------------------------------------------
# Readline history (XDG-compliant, TTY-only)
# ---------------------------------------------------------------------------

_HISTORY_DIR = Path(os.environ.get(
    "XDG_DATA_HOME", os.path.expanduser("~/.local/share")
)) / "copilot-memory"
_HISTORY_FILE = _HISTORY_DIR / "shell_history"
_HISTORY_MAX = 1000


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

OptValue = Union[str, bool]


@dataclass
class ParsedCommand:
    """A command line split into name, positional args and --options."""

    cmd: str
    args: List[str] = field(default_factory=list)
    opts: Dict[str, OptValue] = field(default_factory=dict)

    def opt_str(self, name: str) -> Optional[str]:
        v = self.opts.get(name)
        return v if isinstance(v, str) else None

    def opt_int(self, name: str, fallback: int) -> int:
        v = self.opts.get(name)
        if isinstance(v, str):
            try:
                return int(v)
            except ValueError:
                return fallback
        return fallback

    def flag(self, name: str) -> bool:
        return bool(self.opts.get(name))


def parse_command(line: str) -> Optional[ParsedCommand]:
    """Tokenize with shell quoting and split out ``--key value`` options.

    Returns None for blank lines.

    Raises:
        ValueError: On unbalanced quotes.

    Examples:
        >>> parse_command('search typescript --limit 5 --raw')
        ParsedCommand(cmd='search', args=['typescript'], opts={'limit': '5', 'raw': True})
    """
    tokens = shlex.split(line.strip())
    if not tokens:
        return None

    parsed = ParsedCommand(cmd=tokens[0].lower())
    i = 1
    while i < len(tokens):
        tok = tokens[i]
        if tok.startswith("--") and len(tok) > 2:
            key = tok[2:]
            nxt = tokens[i + 1] if i + 1 < len(tokens) else None
            if key in BOOLEAN_FLAGS or nxt is None or nxt.startswith("--"):
                parsed.opts[key] = True
            else:
                parsed.opts[key] = nxt
                i += 1
        else:
            parsed.args.append(tok)
        i += 1
    return parsed


def parse_csv(value: Optional[str]) -> List[str]:
    """Split a comma-separated string into trimmed non-empty values."""
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@dataclass
class ShellState:
    """Everything a command handler needs; records are reloaded per command."""

    store: MemoryStore
    config: MemoryConfig = field(default_factory=MemoryConfig)
    shaper_config: Optional[DeepSeekConfig] = None
    records: List[MemoryRecord] = field(default_factory=list)
    out: TextIO = field(default_factory=lambda: sys.stdout)
    err: TextIO = field(default_factory=lambda: sys.stderr)

    def emit(self, text: str = "") -> None:
        print(text, file=self.out)

    def warn(self, text: str) -> None:
        print(text, file=self.err)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_add(state: ShellState, p: ParsedCommand) -> None:
    text = " ".join(p.args).strip()
    if not text:
        state.emit("Error: add requires text.")
        return
    rec = state.store.add(text, parse_csv(p.opt_str("tags")))
    state.emit(f"Added {rec.id}")


def cmd_search(state: ShellState, p: ParsedCommand) -> None:
    query = " ".join(p.args).strip()
    if not query:
        state.emit("Error: search requires a query.")
        return
    limit = p.opt_int("limit", state.config.search.default_limit)
    hits = search(state.records, query, limit)
    if p.flag("raw"):
        state.emit(format_raw_hits(hits))
    else:
        state.emit(format_search_results(hits, query))


def cmd_compress(state: ShellState, p: ParsedCommand) -> None:
    query = p.opt_str("query") or " ".join(p.args).strip()
    if not query:
        state.emit("Error: compress requires --query <text> (or a positional query).")
        return
    budget = p.opt_int("budget", state.config.compress.default_budget)
    limit = p.opt_int("limit", state.config.compress.default_limit)
    use_llm = p.flag("llm")

    shaper_config = state.shaper_config
    if use_llm and shaper_config is None:
        shaper_config = state.config.shaping.to_deepseek()

    result = shape_context(
        state.records, query, budget, limit,
        mode="compress",
        use_llm=use_llm,
        shaper_config=shaper_config,
    )
    if use_llm and result.fallback_reason:
        state.warn(
            f"Warning: --llm requested but remote compression is unavailable "
            f"({result.fallback_reason}). Using deterministic compression."
        )
    state.emit(result.text)


def cmd_delete(state: ShellState, p: ParsedCommand) -> None:
    record_id = p.args[0].strip() if p.args else ""
    if not record_id:
        state.emit("Error: delete requires an id.")
        return
    res = state.store.soft_delete(record_id)
    state.emit(f"Soft-deleted {record_id}" if res.found else "Not found.")


def cmd_purge(state: ShellState, p: ParsedCommand) -> None:
    dry_run = p.flag("dry-run")
    res = state.store.purge(
        record_id=p.opt_str("id"),
        tag=p.opt_str("tag"),
        match=p.opt_str("match"),
        dry_run=dry_run,
    )
    if dry_run:
        state.emit(f"Dry run: would purge {res.count} memories:")
    else:
        state.emit(f"Purged {res.count} memories:")
    for mid in res.ids:
        state.emit(f"- {mid}")


def cmd_export(state: ShellState, p: ParsedCommand) -> None:
    state.out.write(serialize_records(state.records))


def cmd_stats(state: ShellState, p: ParsedCommand) -> None:
    state.emit(format_stats(compute_stats(state.records)))


COMMANDS = {
    "add": cmd_add,
    "search": cmd_search,
    "compress": cmd_compress,
    "delete": cmd_delete,
    "purge": cmd_purge,
    "export": cmd_export,
    "stats": cmd_stats,
}


def handle_line(line: str, state: ShellState) -> bool:
    """Execute one input line. Returns False when the shell should exit."""
    try:
        p = parse_command(line)
    except ValueError as e:
        state.emit(f"Error: {e}")
        return True
    if p is None:
        return True

    if p.cmd in ("exit", "quit"):
        return False
    if p.cmd in ("help", "?"):
        state.emit(HELP_TEXT)
        return True

    handler = COMMANDS.get(p.cmd)
    if handler is None:
        state.emit(f"Error: Unknown command: {p.cmd}")
        state.emit(HELP_TEXT)
        return True

    try:
        state.records = state.store.load()
        handler(state, p)
    except MemoryStoreError as e:
        state.emit(f"Error: {e}")
    except OSError as e:
        logger.debug("I/O error in %s", p.cmd, exc_info=True)
        state.emit(f"Error: {e}")
    return True


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------


def shell_repl(
    config: Optional[MemoryConfig] = None,
    *,
    quiet: bool = False,
    readline_history_max: Optional[int] = None,
) -> None:
    """Run the interactive shell until exit/quit or EOF.

    Args:
        config: Resolved configuration (store path, budgets, shaping).
        quiet: Suppress the banner.
        readline_history_max: Max readline history entries (default: 1000).
    """
    config = config or MemoryConfig().apply_env()
    state = ShellState(store=config.open_store(), config=config)
    interactive = sys.stdin.isatty()

    # Readline history (TTY only)
    history_max = readline_history_max if readline_history_max is not None else _HISTORY_MAX
    if interactive:
        try:
            import readline
            _HISTORY_DIR.mkdir(parents=True, exist_ok=True)
            try:
                readline.read_history_file(str(_HISTORY_FILE))
            except FileNotFoundError:
                pass
            readline.set_history_length(history_max)
        except (ImportError, OSError):
            pass

    if not quiet:
        try:
            active = sum(1 for r in state.store.load() if not r.deleted_at)
            state.warn(f"Loaded {active} memories from {state.store.path}")
        except MemoryStoreError as e:
            state.warn(f"Warning: {e}")
        state.warn('Type "help" for available commands, "exit" to quit.')

    try:
        while True:
            try:
                line = input(PROMPT if interactive else "")
            except KeyboardInterrupt:
                print("", file=sys.stderr)
                continue
            except EOFError:
                break
            if not handle_line(line, state):
                break
    finally:
        if interactive:
            try:
                import readline
                readline.write_history_file(str(_HISTORY_FILE))
            except (ImportError, OSError):
                pass
