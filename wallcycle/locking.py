"""Advisory file locks guarding read-modify-write cycles on persisted JSON files."""

from __future__ import annotations

import fcntl
import time
from pathlib import Path
from typing import Optional

from .errors import StateLocked

DEFAULT_LOCK_TIMEOUT = 30.0
_POLL_INTERVAL = 0.05


class FileLock:
    """Exclusive ``flock`` held on ``<target>.lock`` for the duration of a ``with`` block.

    The lock file sits next to the file it protects so that every process
    touching the same JSON file contends on the same inode. Locks are
    re-entrant within one ``FileLock`` instance.
    """

    def __init__(self, target: Path, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.target = Path(target)
        self.lock_file = self.target.with_name(self.target.name + ".lock")
        self.timeout = timeout
        self._fd = None
        self._depth = 0

    def acquire(self) -> None:
        if self._depth:
            self._depth += 1
            return

        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_file, "a+")
        deadline: Optional[float] = None if self.timeout < 0 else time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if deadline is not None and time.monotonic() >= deadline:
                    handle.close()
                    raise StateLocked(f"Could not acquire lock on {self.lock_file}")
                time.sleep(_POLL_INTERVAL)

        self._fd = handle
        self._depth = 1

    def release(self) -> None:
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return
        handle, self._fd = self._fd, None
        if handle is not None:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    @property
    def held(self) -> bool:
        return self._depth > 0

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
