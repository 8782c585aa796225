"""
copilot_memory — A local, file-backed memory store for LLM context injection.

One JSON file per project, guarded by a lock marker. Keyword search with
tag and recency boosts; budget-bounded Markdown context blocks, optionally
shaped by a remote chat model.
"""

__version__ = "0.1.0"

from copilot_memory.types import (
    MemoryRecord,
    SearchHit,
    CompressResult,
    ShapedContext,
    PurgeResult,
    StoreStats,
)
from copilot_memory.errors import (
    MemoryStoreError,
    EmptyMemory,
    InvalidCriteria,
    MalformedStore,
    LockTimeout,
    RemoteCollaboratorFailure,
)
from copilot_memory.store import MemoryStore
from copilot_memory.search import search
from copilot_memory.compress import compress_deterministic, shape_context
from copilot_memory.config import MemoryConfig, load_config

__all__ = [
    "__version__",
    "MemoryRecord",
    "SearchHit",
    "CompressResult",
    "ShapedContext",
    "PurgeResult",
    "StoreStats",
    "MemoryStoreError",
    "EmptyMemory",
    "InvalidCriteria",
    "MalformedStore",
    "LockTimeout",
    "RemoteCollaboratorFailure",
    "MemoryStore",
    "search",
    "compress_deterministic",
    "shape_context",
    "MemoryConfig",
    "load_config",
]
