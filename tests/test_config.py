"""
Tests for copilot_memory.config — dataclasses, JSON loading, env overlay.
"""

import json

import pytest

from copilot_memory.config import (
    CompressConfig,
    MemoryConfig,
    SearchConfig,
    ShapingConfig,
    StoreConfig,
    ValidationError,
    load_config,
)
from copilot_memory.deepseek import DEFAULT_BASE_URL


class TestDefaults:
    def test_defaults_valid(self):
        assert MemoryConfig().validate() == []

    def test_default_values(self):
        cfg = MemoryConfig()
        assert cfg.store.lock_timeout == 2.5
        assert cfg.search.default_limit == 10
        assert cfg.compress.default_budget == 1200
        assert cfg.compress.inject_budget == 1500
        assert cfg.compress.default_limit == 25
        assert cfg.shaping.base_url == DEFAULT_BASE_URL


class TestValidation:
    def test_negative_lock_timeout(self):
        errors = StoreConfig(lock_timeout=-1).validate()
        assert any("lock_timeout" in e for e in errors)

    def test_default_limit_above_max(self):
        errors = SearchConfig(default_limit=100, max_limit=50).validate()
        assert any("default_limit" in e for e in errors)

    def test_budget_below_floor(self):
        errors = CompressConfig(min_budget=50).validate()
        assert any("min_budget" in e for e in errors)

    def test_wrong_type(self):
        errors = CompressConfig(default_budget="big").validate()
        assert any("expected int" in e for e in errors)

    def test_bad_url(self):
        errors = ShapingConfig(base_url="ftp://x").validate()
        assert any("base_url" in e for e in errors)


class TestClamping:
    def test_limit_clamp(self):
        s = SearchConfig()
        assert s.clamp(None) == 10
        assert s.clamp(0) == 1
        assert s.clamp(500) == 50
        assert s.clamp(7) == 7

    def test_budget_clamp(self):
        c = CompressConfig()
        assert c.clamp_budget(None) == 1200
        assert c.clamp_budget(None, c.inject_budget) == 1500
        assert c.clamp_budget(10) == 200
        assert c.clamp_budget(99999) == 8000


class TestLoadConfig:
    def test_none_returns_defaults(self):
        assert load_config(None) == MemoryConfig()

    def test_missing_file_returns_defaults(self, tmp_path):
        assert load_config(str(tmp_path / "nope.json")) == MemoryConfig()

    def test_invalid_json_returns_defaults(self, tmp_path):
        p = tmp_path / "bad.json"
        p.write_text("{not json", encoding="utf-8")
        assert load_config(str(p)) == MemoryConfig()

    def test_unknown_field_returns_defaults(self, tmp_path):
        p = tmp_path / "c.json"
        p.write_text(json.dumps({"store": {"bogus": 1}}), encoding="utf-8")
        assert load_config(str(p)) == MemoryConfig()

    def test_reads_sections(self, tmp_path):
        p = tmp_path / "c.json"
        p.write_text(json.dumps({
            "store": {"memory_path": "/tmp/x.json", "lock_timeout": 1.0},
            "compress": {"default_budget": 900},
            "shaping": {"model": "deepseek-reasoner"},
        }), encoding="utf-8")
        cfg = load_config(str(p))
        assert cfg.store.memory_path == "/tmp/x.json"
        assert cfg.store.lock_timeout == 1.0
        assert cfg.compress.default_budget == 900
        assert cfg.shaping.model == "deepseek-reasoner"
        assert cfg.search == SearchConfig()

    def test_strict_raises(self, tmp_path):
        p = tmp_path / "c.json"
        p.write_text(json.dumps({"compress": {"default_budget": 50}}), encoding="utf-8")
        assert load_config(str(p)).compress.default_budget == 50
        with pytest.raises(ValidationError, match="default_budget"):
            load_config(str(p), strict=True)


class TestApplyEnv:
    def test_env_overrides_file(self, tmp_path, monkeypatch):
        p = tmp_path / "c.json"
        p.write_text(json.dumps({"store": {"memory_path": "/from/file.json"}}),
                     encoding="utf-8")
        monkeypatch.setenv("MEMORY_PATH", str(tmp_path / "env.json"))
        monkeypatch.setenv("MEMORY_LOCK_PATH", str(tmp_path / "env.lock"))
        monkeypatch.setenv("COPILOT_MEMORY_LOCK_TIMEOUT", "0.75")
        cfg = load_config(str(p)).apply_env()
        assert cfg.store.memory_path == str(tmp_path / "env.json")
        assert cfg.store.lock_path == str(tmp_path / "env.lock")
        assert cfg.store.lock_timeout == 0.75

    def test_bad_timeout_ignored(self, monkeypatch):
        monkeypatch.setenv("COPILOT_MEMORY_LOCK_TIMEOUT", "soon")
        assert MemoryConfig().apply_env().store.lock_timeout == 2.5

    def test_open_store(self, tmp_path):
        cfg = MemoryConfig(store=StoreConfig(memory_path=str(tmp_path / "m.json"),
                                             lock_timeout=0.5))
        store = cfg.open_store()
        assert store.path == tmp_path / "m.json"
        assert store.lock_path == tmp_path / ".copilot-memory.lock"
        assert store.lock_timeout == 0.5

    def test_shaping_reads_key_from_env(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-x")
        ds = ShapingConfig(model="m2").to_deepseek()
        assert ds.enabled
        assert ds.model == "m2"
