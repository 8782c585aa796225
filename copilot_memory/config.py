"""
Configuration for copilot_memory.

Dataclasses for store, search, compression and remote shaping settings.
load_config() reads an optional JSON file with silent fallback to compiled
defaults; apply_env() layers the MEMORY_* / DEEPSEEK_* / COPILOT_MEMORY_*
environment variables on top.

Precedence (invariant):
    CLI --flag  >  environment variable  >  config file  >  compiled default
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from copilot_memory.compress import DEFAULT_BUDGET, DEFAULT_COMPRESS_LIMIT, MIN_BUDGET
from copilot_memory.deepseek import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT,
    DeepSeekConfig,
)
from copilot_memory.lock import DEFAULT_LOCK_TIMEOUT
from copilot_memory.search import DEFAULT_SEARCH_LIMIT
from copilot_memory.store import ENV_LOCK_PATH, ENV_MEMORY_PATH, MemoryStore

ENV_LOCK_TIMEOUT = "COPILOT_MEMORY_LOCK_TIMEOUT"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        expected = (
            "/".join(t.__name__ for t in typ) if isinstance(typ, tuple) else typ.__name__
        )
        errors.append(f"{name}: expected {expected}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


def _env_float(name: str, default: float) -> float:
    """Parse float env var with fallback. Never raises on bad input."""
    v = os.environ.get(name)
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass
class StoreConfig:
    """JSON file store configuration. None paths mean 'resolve at open time'."""
    memory_path: Optional[str] = None
    lock_path: Optional[str] = None
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "store.lock_timeout",
                     self.lock_timeout, 0.0, 600.0, (int, float))
        return errors


@dataclass
class SearchConfig:
    """Search result limits."""
    default_limit: int = DEFAULT_SEARCH_LIMIT
    max_limit: int = 50

    def validate(self) -> List[str]:
        errors: List[str] = []
        _check_range(errors, "search.max_limit", self.max_limit, 1, 10000, int)
        _check_range(errors, "search.default_limit",
                     self.default_limit, 1, self.max_limit, int)
        return errors

    def clamp(self, limit: Optional[int]) -> int:
        """Clamp a requested limit to [1, max_limit] (None → default)."""
        if limit is None:
            return self.default_limit
        return max(1, min(self.max_limit, int(limit)))


@dataclass
class CompressConfig:
    """Character budgets for compression and context injection."""
    default_budget: int = DEFAULT_BUDGET
    inject_budget: int = 1500
    default_limit: int = DEFAULT_COMPRESS_LIMIT
    min_budget: int = MIN_BUDGET
    max_budget: int = 8000

    def validate(self) -> List[str]:
        errors: List[str] = []
        _check_range(errors, "compress.min_budget",
                     self.min_budget, MIN_BUDGET, 100000, int)
        _check_range(errors, "compress.max_budget",
                     self.max_budget, self.min_budget, 1000000, int)
        _check_range(errors, "compress.default_budget",
                     self.default_budget, self.min_budget, self.max_budget, int)
        _check_range(errors, "compress.inject_budget",
                     self.inject_budget, self.min_budget, self.max_budget, int)
        _check_range(errors, "compress.default_limit",
                     self.default_limit, 1, 10000, int)
        return errors

    def clamp_budget(self, budget: Optional[int], default: Optional[int] = None) -> int:
        """Clamp a requested budget to [min_budget, max_budget]."""
        if budget is None:
            budget = default if default is not None else self.default_budget
        return max(self.min_budget, min(self.max_budget, int(budget)))


@dataclass
class ShapingConfig:
    """Remote shaping endpoint (the API key only ever comes from the environment)."""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout: float = DEFAULT_TIMEOUT

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.base_url.startswith(("http://", "https://")):
            errors.append(f"shaping.base_url: not an http(s) URL: {self.base_url!r}")
        _check_range(errors, "shaping.timeout", self.timeout, 1.0, 3600.0, (int, float))
        return errors

    def to_deepseek(self) -> DeepSeekConfig:
        """Build the endpoint config, reading the key (and overrides) from env."""
        return DeepSeekConfig.from_env(
            base_url=self.base_url, model=self.model, timeout=self.timeout,
        )


@dataclass
class MemoryConfig:
    """Top-level copilot_memory configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    compress: CompressConfig = field(default_factory=CompressConfig)
    shaping: ShapingConfig = field(default_factory=ShapingConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "search" in d:
            kwargs["search"] = SearchConfig(**d["search"])
        if "compress" in d:
            kwargs["compress"] = CompressConfig(**d["compress"])
        if "shaping" in d:
            kwargs["shaping"] = ShapingConfig(**d["shaping"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.search.validate())
        errors.extend(self.compress.validate())
        errors.extend(self.shaping.validate())
        return errors

    def apply_env(self) -> MemoryConfig:
        """Override store settings from the environment. Returns self."""
        path = os.environ.get(ENV_MEMORY_PATH, "").strip()
        if path:
            self.store.memory_path = path
        lock = os.environ.get(ENV_LOCK_PATH, "").strip()
        if lock:
            self.store.lock_path = lock
        self.store.lock_timeout = _env_float(ENV_LOCK_TIMEOUT, self.store.lock_timeout)
        return self

    def open_store(self) -> MemoryStore:
        """Create a MemoryStore from the store section."""
        return MemoryStore(
            path=self.store.memory_path,
            lock_path=self.store.lock_path,
            lock_timeout=self.store.lock_timeout,
        )


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> MemoryConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        MemoryConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = MemoryConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = MemoryConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = MemoryConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
