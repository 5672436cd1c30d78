"""File operations: fingerprinting, atomic write, locking."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from io import TextIOWrapper
from pathlib import Path

import orjson
import portalocker


def grid_fingerprint(grid: list[list[str]]) -> str:
    """SHA-256 over the canonical JSON of a value grid."""
    return f"sha256:{hashlib.sha256(orjson.dumps(grid)).hexdigest()}"


def atomic_write(target: str | Path, data: bytes) -> None:
    """Write data to target atomically via temp file + rename."""
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=target.parent, suffix=target.suffix, prefix=".sheetops_tmp_"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        shutil.move(tmp_path, target)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class FileLock:
    """Exclusive sidecar lock held across a read-modify-write cycle.

    Uses ``<file>.sheetops.lock`` next to the target.  The OS releases
    the lock if the process dies; a leftover lock file is then stale and
    the next holder acquires it normally.
    """

    def __init__(self, path: str | Path, *, timeout: float = 0) -> None:
        self.path = Path(path).resolve()
        self.timeout = timeout
        self._lock_path = self.path.parent / (self.path.name + ".sheetops.lock")
        self._lock_file: TextIOWrapper | None = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def _acquire(self) -> None:
        assert self._lock_file is not None
        if self.timeout <= 0:
            portalocker.lock(self._lock_file, portalocker.LOCK_EX | portalocker.LOCK_NB)
            return
        deadline = time.monotonic() + self.timeout
        interval = min(0.1, max(0.01, self.timeout / 20))
        while True:
            try:
                portalocker.lock(self._lock_file, portalocker.LOCK_EX | portalocker.LOCK_NB)
                return
            except portalocker.LockException:
                if time.monotonic() >= deadline:
                    raise
                time.sleep(interval)

    def __enter__(self) -> "FileLock":
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock_file = open(self._lock_path, "a+")  # noqa: SIM115
        try:
            self._acquire()
        except portalocker.LockException:
            self._lock_file.close()
            self._lock_file = None
            raise

        self._lock_file.seek(0)
        self._lock_file.truncate()
        self._lock_file.write(f"pid={os.getpid()}\n")
        self._lock_file.write(f"time={datetime.now(timezone.utc).isoformat()}\n")
        self._lock_file.flush()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        if self._lock_file is not None:
            try:
                portalocker.unlock(self._lock_file)
            finally:
                self._lock_file.close()
                self._lock_file = None


def read_text_safe(path: str | Path) -> str:
    """Read a text file, stripping a leading UTF-8 BOM if present."""
    return Path(path).read_text(encoding="utf-8-sig")
