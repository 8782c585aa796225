"""
Tests for copilot_memory.shell — command parsing and dispatch (no TTY).
"""

import io
import json

import pytest

from copilot_memory.config import MemoryConfig, StoreConfig
from copilot_memory.shell import ShellState, handle_line, parse_command, parse_csv


@pytest.fixture
def state(store_path):
    config = MemoryConfig(store=StoreConfig(memory_path=store_path))
    return ShellState(
        store=config.open_store(),
        config=config,
        out=io.StringIO(),
        err=io.StringIO(),
    )


def run(state, line):
    """Run one line and return (keep_going, stdout text)."""
    state.out.seek(0)
    state.out.truncate()
    keep = handle_line(line, state)
    return keep, state.out.getvalue()


class TestParseCommand:
    def test_blank(self):
        assert parse_command("   ") is None

    def test_args_and_options(self):
        p = parse_command('search "dark mode" --limit 5 --raw')
        assert p.cmd == "search"
        assert p.args == ["dark mode"]
        assert p.opts == {"limit": "5", "raw": True}

    def test_boolean_flag_never_takes_value(self):
        p = parse_command("purge --dry-run --tag temp")
        assert p.opts == {"dry-run": True, "tag": "temp"}
        p = parse_command("compress --llm typescript")
        assert p.flag("llm")
        assert p.args == ["typescript"]

    def test_trailing_option_is_flag(self):
        assert parse_command("search x --limit").opts == {"limit": True}

    def test_command_lowercased(self):
        assert parse_command("ADD hello").cmd == "add"

    def test_unbalanced_quotes(self):
        with pytest.raises(ValueError):
            parse_command('add "oops')

    def test_opt_int_fallback(self):
        p = parse_command("search x --limit lots")
        assert p.opt_int("limit", 10) == 10

    def test_parse_csv(self):
        assert parse_csv(" a, b ,,c ") == ["a", "b", "c"]
        assert parse_csv(None) == []


class TestHandleLine:
    def test_exit_and_quit(self, state):
        assert handle_line("exit", state) is False
        assert handle_line("quit", state) is False

    def test_help(self, state):
        keep, out = run(state, "help")
        assert keep
        assert "Commands:" in out

    def test_unknown_command(self, state):
        keep, out = run(state, "frobnicate")
        assert keep
        assert "Error: Unknown command: frobnicate" in out

    def test_add_then_search(self, state):
        _, out = run(state, "add --tags preference,ui I prefer dark mode")
        assert out.startswith("Added m_")
        _, out = run(state, "search dark mode")
        assert "I prefer dark mode" in out
        assert "Tags: preference, ui" in out

    def test_add_without_text(self, state):
        _, out = run(state, "add --tags x")
        assert "Error: add requires text." in out
        assert not state.store.path.exists()

    def test_search_raw_no_matches(self, state):
        _, out = run(state, "search nothing --raw")
        assert out.strip() == "No matches."

    def test_compress(self, state):
        run(state, "add use pytest fixtures")
        _, out = run(state, "compress --query pytest --budget 300")
        assert out.startswith("# Copilot Context (auto)")
        assert "use pytest fixtures" in out

    def test_compress_llm_without_key_warns(self, state):
        run(state, "add use pytest fixtures")
        _, out = run(state, "compress pytest --llm")
        assert "use pytest fixtures" in out
        assert "DEEPSEEK_API_KEY" in state.err.getvalue()

    def test_delete(self, state):
        _, out = run(state, "add forget me")
        rid = out.split()[1]
        _, out = run(state, f"delete {rid}")
        assert out.strip() == f"Soft-deleted {rid}"
        _, out = run(state, "delete m_missing")
        assert out.strip() == "Not found."
        _, out = run(state, "search forget")
        assert "No memories found" in out

    def test_purge_dry_run_and_real(self, state):
        run(state, "add temp note one --tags temp")
        run(state, "add keeper")
        _, out = run(state, "purge --tag temp --dry-run")
        assert out.startswith("Dry run: would purge 1 memories:")
        assert len(state.store.load()) == 2
        _, out = run(state, "purge --tag temp")
        assert out.startswith("Purged 1 memories:")
        assert len(state.store.load()) == 1

    def test_purge_invalid_criteria_reports_error(self, state):
        _, out = run(state, "purge --tag a --match b")
        assert out.startswith("Error: ")

    def test_export_and_stats(self, state):
        run(state, "add one thing --tags a")
        _, out = run(state, "export")
        assert json.loads(out)[0]["text"] == "one thing"
        _, out = run(state, "stats")
        assert out.splitlines()[0] == "total=1 active=1 deleted=0"

    def test_malformed_store_is_reported(self, state):
        state.store.path.parent.mkdir(parents=True)
        state.store.path.write_text("{}", encoding="utf-8")
        keep, out = run(state, "stats")
        assert keep
        assert out.startswith("Error: Memory file must be a JSON array")

    def test_sees_changes_from_other_writers(self, state, store_path):
        from copilot_memory.store import MemoryStore
        MemoryStore(store_path).add("written elsewhere")
        _, out = run(state, "search elsewhere")
        assert "written elsewhere" in out
