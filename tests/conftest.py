"""Shared fixtures: isolate every test from the developer's environment."""

import pytest

_ENV_VARS = (
    "MEMORY_PATH",
    "MEMORY_LOCK_PATH",
    "COPILOT_MEMORY_LOCK_TIMEOUT",
    "DEEPSEEK_API_KEY",
    "DEEPSEEK_BASE_URL",
    "DEEPSEEK_MODEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store_path(tmp_path):
    """Path (str) of a not-yet-created store file inside tmp_path."""
    return str(tmp_path / "mem" / ".copilot-memory.json")
