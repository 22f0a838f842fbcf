"""
Single-worker lock file.

The lock is a JSON file ``{"pid": <int>, "created": <unix ts>}`` created
atomically with ``O_CREAT | O_EXCL``. An existing lock is reclaimed when it
is older than ``max_age`` seconds (a hung worker) or when its pid no longer
exists (a crashed worker).

Reading, reclaiming and creating the lock happen while holding an exclusive
``flock`` on a sibling ``.guard`` file, so two processes never reclaim the
same stale lock and ``is_held`` never removes a lock created meanwhile.
"""

from __future__ import annotations

import fcntl
import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from ..logging_utils import log

DEFAULT_MAX_AGE_SECONDS = 600


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


class WorkerLock:
    def __init__(self, lock_path: Path, max_age: int = DEFAULT_MAX_AGE_SECONDS):
        self.lock_path = Path(lock_path)
        self.max_age = max_age

    @property
    def guard_path(self) -> Path:
        return self.lock_path.with_name(self.lock_path.name + ".guard")

    @contextmanager
    def _guarded(self) -> Iterator[None]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.guard_path, "a") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    def read(self) -> Optional[Dict[str, Any]]:
        """Lock contents, or None when absent or unreadable."""
        try:
            data = json.loads(self.lock_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def _is_stale(self, data: Optional[Dict[str, Any]]) -> bool:
        if not data or "pid" not in data:
            return True
        try:
            created = float(data.get("created") or 0)
            pid = int(data["pid"])
        except (TypeError, ValueError):
            return True
        if time.time() - created > self.max_age:
            return True
        return not pid_alive(pid)

    def _clear_if_stale(self) -> bool:
        """Remove a stale lock. True when no live lock remains. Caller holds the guard."""
        if not self.lock_path.exists():
            return True
        data = self.read()
        if not self._is_stale(data):
            return False
        log(f"Removing stale worker lock {self.lock_path} ({data})", level="warning")
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        return True

    def acquire(self) -> bool:
        with self._guarded():
            if not self._clear_if_stale():
                return False
            try:
                fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                return False
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({"pid": os.getpid(), "created": int(time.time())}, fh)
            return True

    def release(self) -> bool:
        """Remove the lock if this process holds it."""
        with self._guarded():
            data = self.read()
            if data is not None and data.get("pid") != os.getpid():
                log(f"Not releasing worker lock held by pid {data.get('pid')}", level="warning")
                return False
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                return False
            return True

    def is_held(self) -> bool:
        """True while a live, fresh lock exists (stale locks are removed)."""
        with self._guarded():
            return not self._clear_if_stale()
