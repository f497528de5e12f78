"""
Single-run lock for one environment.

Only one switch attempt may touch the active-color pointer and the replica
groups at a time. The lock is a file created with O_EXCL holding the owner's
pid; a lock whose owner no longer exists is considered stale and reclaimed.
"""
import logging
import os
from pathlib import Path
from typing import Optional, Union

import psutil

from .errors import LockBusy

logger = logging.getLogger(__name__)


class RunLock:
    """
    Exclusive lock file.

    Usage:
        with RunLock(upstream_dir / ".switch.lock"):
            orchestrator.run()
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._held = False

    def _owner_pid(self) -> Optional[int]:
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(text.split()[0])
        except (IndexError, ValueError):
            return None

    def _try_create(self) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{os.getpid()}\n")
        return True

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self._try_create():
            self._held = True
            return

        owner = self._owner_pid()
        if owner is not None and owner != os.getpid() and psutil.pid_exists(owner):
            raise LockBusy(f"another switch is running (pid {owner}, lock {self.path})")

        logger.warning("Reclaiming stale switch lock %s (owner pid %s)", self.path, owner)
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        if not self._try_create():
            raise LockBusy(f"lost race for switch lock {self.path}")
        self._held = True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
