"""
Cross-process file lock for the memory store.

The lock is a marker file created with O_CREAT | O_EXCL: whoever creates
it holds the lock, and deleting it releases the lock. Contention is handled
by retrying with a short randomized sleep until a timeout elapses.

The marker holds "<pid> <timestamp>" for diagnostics only; nothing parses it.

Usage:
    with FileLock("/path/.copilot-memory.lock", timeout=2.5):
        ...  # read-modify-write the store
"""

from __future__ import annotations

import logging
import os
import random
import time
from pathlib import Path
from typing import Union

from copilot_memory.errors import LockTimeout
from copilot_memory.types import _now_iso

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 2.5  # seconds
RETRY_MIN_DELAY = 0.05
RETRY_MAX_DELAY = 0.10


class FileLock:
    """Exclusive lock backed by an exclusively-created marker file."""

    def __init__(
        self,
        path: Union[str, Path],
        timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Create the marker file, retrying until the timeout.

        Raises:
            LockTimeout: If the marker still exists after *timeout* seconds.
            OSError: For any failure other than "marker already exists".
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()
        attempts = 0
        while True:
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                attempts += 1
                if time.monotonic() - start > self.timeout:
                    raise LockTimeout(str(self.path), self.timeout)
                time.sleep(random.uniform(RETRY_MIN_DELAY, RETRY_MAX_DELAY))
                continue
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(f"{os.getpid()} {_now_iso()}\n")
            except OSError:
                self.path.unlink(missing_ok=True)
                raise
            self._held = True
            if attempts:
                logger.debug("Acquired %s after %d retries", self.path, attempts)
            return

    def release(self) -> None:
        """Delete the marker file. Safe to call when not held."""
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning("Lock marker vanished before release: %s", self.path)

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
