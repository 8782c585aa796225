"""
Tests for the MCP tools, resources and prompts in copilot_memory.mcp.tools.

Tests use direct function calls (not MCP protocol) via a mock FastMCP.
"""

import io
import json

import pytest

from copilot_memory.config import MemoryConfig, StoreConfig
from copilot_memory.deepseek import DeepSeekConfig
from copilot_memory.errors import RemoteCollaboratorFailure
from copilot_memory.mcp.audit import AuditLogger
from copilot_memory.store import MemoryStore


# ---------------------------------------------------------------------------
# Mock FastMCP
# ---------------------------------------------------------------------------


class MockMCP:
    """Minimal FastMCP mock that captures tool, resource and prompt registrations."""

    def __init__(self):
        self.tools = {}
        self.resources = {}
        self.prompts = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn
        return decorator

    def resource(self, uri, **kwargs):
        def decorator(fn):
            self.resources[uri] = fn
            return fn
        return decorator

    def prompt(self, name=None, **kwargs):
        def decorator(fn):
            self.prompts[name or fn.__name__] = fn
            return fn
        return decorator


@pytest.fixture
def mcp_env(store_path):
    """Config, store, audit buffer and mock MCP with all tools registered."""
    config = MemoryConfig(store=StoreConfig(memory_path=store_path, lock_timeout=0.3))
    buf = io.StringIO()
    audit = AuditLogger(output=buf, store_path=store_path)
    mcp = MockMCP()

    from copilot_memory.mcp.tools import register_memory_tools
    register_memory_tools(mcp, config, audit=audit,
                          shaper_config=DeepSeekConfig(api_key=""))

    return {
        "mcp": mcp,
        "store": MemoryStore(store_path),
        "config": config,
        "audit": buf,
    }


def call(env, tool_name, **kwargs):
    """Call a registered MCP tool by name."""
    return env["mcp"].tools[tool_name](**kwargs)


def audit_records(env):
    return [json.loads(ln) for ln in env["audit"].getvalue().splitlines() if ln]


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_tool_names(self, mcp_env):
        assert set(mcp_env["mcp"].tools) == {
            "memory_write", "memory_search", "memory_compress", "memory_delete",
            "memory_purge", "memory_export", "inject_context",
        }

    def test_resources(self, mcp_env):
        assert set(mcp_env["mcp"].resources) == {"memory://stats", "memory://recent"}

    def test_prompts(self, mcp_env):
        assert set(mcp_env["mcp"].prompts) == {
            "summarize-memories", "remember-decision", "inject-context",
        }


# ---------------------------------------------------------------------------
# memory_write
# ---------------------------------------------------------------------------


class TestMemoryWrite:
    def test_write(self, mcp_env):
        r = call(mcp_env, "memory_write", text="I prefer dark mode", tags=["UI"])
        assert r["status"] == "ok"
        assert r["id"].startswith("m_")
        assert r["tags"] == ["ui"]
        assert r["message"] == f"Added {r['id']}"
        assert mcp_env["store"].load()[0].id == r["id"]

    def test_empty_text(self, mcp_env):
        r = call(mcp_env, "memory_write", text="   ")
        assert r["status"] == "error"
        assert r["error"] == "EmptyMemory"
        assert mcp_env["store"].load() == []

    def test_audit_record(self, mcp_env):
        call(mcp_env, "memory_write", text="secret-ish text " * 20)
        rec = audit_records(mcp_env)[-1]
        assert rec["tool"] == "memory_write"
        assert rec["outcome"] == "ok"
        assert len(rec["d"]["preview"]) <= 81
        assert "id" in rec["d"]

    def test_lock_timeout_is_error(self, mcp_env):
        store = mcp_env["store"]
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.lock_path.write_text("held\n", encoding="utf-8")
        r = call(mcp_env, "memory_write", text="blocked")
        assert r["status"] == "error"
        assert r["error"] == "LockTimeout"
        assert audit_records(mcp_env)[-1]["outcome"] == "error"


# ---------------------------------------------------------------------------
# memory_search
# ---------------------------------------------------------------------------


class TestMemorySearch:
    def test_empty_store(self, mcp_env):
        r = call(mcp_env, "memory_search", query="anything")
        assert r["status"] == "ok"
        assert r["matches"] == 0
        assert "No memories found" in r["text"]

    def test_markdown(self, mcp_env):
        call(mcp_env, "memory_write", text="use pytest fixtures", tags=["testing"])
        r = call(mcp_env, "memory_search", query="pytest")
        assert r["matches"] == 1
        assert "use pytest fixtures" in r["text"]

    def test_raw(self, mcp_env):
        call(mcp_env, "memory_write", text="use pytest fixtures")
        r = call(mcp_env, "memory_search", query="pytest", raw=True)
        assert r["hits"][0]["text"] == "use pytest fixtures"
        assert "text" not in r

    def test_limit_clamped(self, mcp_env):
        for i in range(3):
            call(mcp_env, "memory_write", text=f"pytest note {i}")
        assert call(mcp_env, "memory_search", query="pytest", limit=0)["matches"] == 1
        assert call(mcp_env, "memory_search", query="pytest", limit=999)["matches"] == 3

    def test_malformed_store(self, mcp_env):
        store = mcp_env["store"]
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text("{}", encoding="utf-8")
        r = call(mcp_env, "memory_search", query="x")
        assert r["status"] == "error"
        assert r["error"] == "MalformedStore"


# ---------------------------------------------------------------------------
# memory_compress
# ---------------------------------------------------------------------------


class TestMemoryCompress:
    def test_deterministic(self, mcp_env):
        w = call(mcp_env, "memory_write", text="strict typing everywhere", tags=["python"])
        r = call(mcp_env, "memory_compress", query="python typing")
        assert r["status"] == "ok"
        assert r["method"] == "deterministic"
        assert r["included"] == [w["id"]]
        assert r["text"].startswith("# Copilot Context (auto)")

    def test_budget_clamped(self, mcp_env):
        for i in range(30):
            call(mcp_env, "memory_write", text=f"python rule {i} " + "x" * 40)
        r = call(mcp_env, "memory_compress", query="python", budget=5)
        assert r["budget"] == 200
        assert len(r["text"]) <= 200
        assert r["truncated"] is True
        r = call(mcp_env, "memory_compress", query="python", budget=100000)
        assert r["budget"] == 8000

    def test_llm_without_key(self, mcp_env):
        call(mcp_env, "memory_write", text="python typing")
        r = call(mcp_env, "memory_compress", query="python", llm=True)
        assert r["method"] == "deterministic"
        assert "DEEPSEEK_API_KEY" in r["fallback_reason"]


# ---------------------------------------------------------------------------
# memory_delete / memory_purge / memory_export
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_delete(self, mcp_env):
        w = call(mcp_env, "memory_write", text="forget me")
        r = call(mcp_env, "memory_delete", id=w["id"])
        assert r["found"] is True
        assert r["message"] == f"Soft-deleted {w['id']}"
        r = call(mcp_env, "memory_delete", id="m_missing")
        assert r["status"] == "ok"
        assert r["found"] is False
        assert r["message"] == "Not found: m_missing"

    def test_purge_dry_run(self, mcp_env):
        for i in range(3):
            call(mcp_env, "memory_write", text=f"note {i}", tags=["temp"])
        r = call(mcp_env, "memory_purge", tag="temp", dry_run=True)
        assert r["count"] == 3
        assert r["message"] == "Would purge 3"
        assert len(mcp_env["store"].load()) == 3

    def test_purge(self, mcp_env):
        call(mcp_env, "memory_write", text="note", tags=["temp"])
        r = call(mcp_env, "memory_purge", match="NOTE")
        assert r["message"] == "Purged 1"
        assert mcp_env["store"].load() == []

    def test_purge_invalid(self, mcp_env):
        r = call(mcp_env, "memory_purge", tag="a", match="b")
        assert r["status"] == "error"
        assert r["error"] == "InvalidCriteria"
        r = call(mcp_env, "memory_purge")
        assert r["status"] == "error"

    def test_export(self, mcp_env):
        w = call(mcp_env, "memory_write", text="kept in export")
        call(mcp_env, "memory_delete", id=w["id"])
        r = call(mcp_env, "memory_export")
        assert r["count"] == 1
        assert json.loads(r["json"])[0]["deletedAt"]


# ---------------------------------------------------------------------------
# inject_context
# ---------------------------------------------------------------------------


class TestInjectContext:
    def test_missing_task(self, mcp_env):
        r = call(mcp_env, "inject_context", task="  ")
        assert r["status"] == "error"

    def test_no_relevant_context(self, mcp_env):
        r = call(mcp_env, "inject_context", task="write a rust parser")
        assert r["status"] == "ok"
        assert r["memories"] == 0
        assert r["text"].startswith("## No Relevant Context Found")
        assert "write a rust parser" in r["text"]

    def test_deterministic_footer(self, mcp_env):
        call(mcp_env, "memory_write", text="python typing is strict", tags=["python"])
        r = call(mcp_env, "inject_context", task="refactor python module")
        assert r["method"] == "deterministic"
        assert r["memories"] == 1
        assert "_Context shaped via deterministic | 1 memories |" in r["text"]
        assert "python typing is strict" in r["text"]

    def test_shaped_via_remote(self, store_path, monkeypatch):
        config = MemoryConfig(store=StoreConfig(memory_path=store_path))
        MemoryStore(store_path).add("python typing is strict", tags=["python"])
        mcp = MockMCP()

        calls = []

        def fake_shape(cfg, task, context, budget):
            calls.append((task, budget))
            return "## Context for: python\n- keep typing strict"

        monkeypatch.setattr("copilot_memory.compress.deepseek_shape", fake_shape)
        from copilot_memory.mcp.tools import register_memory_tools
        register_memory_tools(mcp, config, audit=AuditLogger(output=io.StringIO()),
                              shaper_config=DeepSeekConfig(api_key="sk-test"))

        r = mcp.tools["inject_context"](task="python refactor", budget=900)
        assert r["method"] == "deepseek"
        assert r["text"].startswith("## Context for: python")
        assert "_Context shaped via deepseek | 1 memories |" in r["text"]
        assert calls == [("python refactor", 900)]

    def test_remote_failure_falls_back(self, store_path, monkeypatch):
        config = MemoryConfig(store=StoreConfig(memory_path=store_path))
        MemoryStore(store_path).add("python typing is strict")
        mcp = MockMCP()

        def broken(*a):
            raise RemoteCollaboratorFailure("DeepSeek API error (503): busy", 503)

        monkeypatch.setattr("copilot_memory.compress.deepseek_shape", broken)
        from copilot_memory.mcp.tools import register_memory_tools
        register_memory_tools(mcp, config, audit=AuditLogger(output=io.StringIO()),
                              shaper_config=DeepSeekConfig(api_key="sk-test"))

        r = mcp.tools["inject_context"](task="python")
        assert r["status"] == "ok"
        assert r["method"] == "deterministic"
        assert "503" in r["fallback_reason"]
        assert "python typing is strict" in r["text"]


# ---------------------------------------------------------------------------
# Resources and prompts
# ---------------------------------------------------------------------------


class TestResources:
    def test_stats(self, mcp_env):
        call(mcp_env, "memory_write", text="a note", tags=["x"])
        out = mcp_env["mcp"].resources["memory://stats"]()
        assert "| Total memories | 1 |" in out
        assert "| x | 1 |" in out

    def test_recent(self, mcp_env):
        assert "_No memories stored yet._" in mcp_env["mcp"].resources["memory://recent"]()
        call(mcp_env, "memory_write", text="latest note")
        assert "latest note" in mcp_env["mcp"].resources["memory://recent"]()


class TestPrompts:
    def test_summarize(self, mcp_env):
        call(mcp_env, "memory_write", text="python typing is strict", tags=["python"])
        out = mcp_env["mcp"].prompts["summarize-memories"](topic="python")
        assert 'memories about "python"' in out
        assert "- python typing is strict [python]" in out

    def test_summarize_nothing(self, mcp_env):
        out = mcp_env["mcp"].prompts["summarize-memories"](topic="golang")
        assert "_No memories found for this topic._" in out

    def test_remember_decision(self, mcp_env):
        out = mcp_env["mcp"].prompts["remember-decision"](
            title="Use SQLite", context="Need local storage",
            decision="Adopt SQLite", consequences="Single writer",
        )
        assert "[decision, architecture]" in out
        assert ("**Decision: Use SQLite** | Context: Need local storage | "
                "Decision: Adopt SQLite | Consequences: Single writer") in out
        assert "memory_write" in out

    def test_remember_decision_without_consequences(self, mcp_env):
        out = mcp_env["mcp"].prompts["remember-decision"](
            title="T", context="C", decision="D",
        )
        assert "Consequences" not in out

    def test_inject_context_prompt(self, mcp_env):
        call(mcp_env, "memory_write", text="python typing is strict")
        out = mcp_env["mcp"].prompts["inject-context"](task="python refactor")
        assert out.startswith("# Copilot Context (auto)")
        assert out.endswith("Using the context above, help me with: python refactor")
