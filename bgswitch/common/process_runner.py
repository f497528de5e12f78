"""
External command execution for platform and router control.

Every command runs with its own timeout. When a command overruns, the whole
process tree is killed (docker compose spawns helper processes that would
otherwise outlive the parent).
"""
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import psutil

from .errors import PlatformError

logger = logging.getLogger(__name__)


class CommandFailed(PlatformError):
    """Command exited non-zero, timed out or could not be started."""

    code = 'E_CMD_FAILED'

    def __init__(self, message: str, result: Optional["CommandResult"] = None):
        self.result = result
        super().__init__(message)


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last lines of combined output, for diagnostics."""
        text = (self.stderr or "").strip() or (self.stdout or "").strip()
        return "\n".join(text.splitlines()[-lines:])


def kill_process_tree(pid: int, timeout: float = 5.0, include_parent: bool = True) -> bool:
    """
    Kill entire process tree (parent + all children).

    Sends SIGTERM to every process, waits up to `timeout` seconds, then
    SIGKILLs survivors. Returns True if nothing is left running.
    """
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return True

    processes = children + ([parent] if include_parent else [])
    for proc in processes:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    _, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    if alive:
        _, still_alive = psutil.wait_procs(alive, timeout=1.0)
        if still_alive:
            logger.warning("Failed to kill %d processes: PIDs=%s", len(still_alive), [p.pid for p in still_alive])
            return False
    return True


class CommandRunner:
    """Runs commands in a fixed working directory with per-call timeouts."""

    def __init__(self, cwd: Optional[Union[str, Path]] = None, env: Optional[Dict[str, str]] = None):
        self.cwd = str(cwd) if cwd else None
        self.env = env

    def run(self, args: Sequence[str], timeout: float, check: bool = True) -> CommandResult:
        argv = [str(a) for a in args]
        cmd_str = shlex.join(argv)
        logger.debug("$ %s", cmd_str)

        env = {**os.environ, **self.env} if self.env else None
        try:
            proc = subprocess.Popen(
                argv,
                cwd=self.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandFailed(f"cannot start '{cmd_str}': {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            kill_process_tree(proc.pid)
            stdout, stderr = proc.communicate()
            result = CommandResult(argv, -1, stdout or "", stderr or "")
            raise CommandFailed(f"'{cmd_str}' timed out after {timeout}s", result)
        except BaseException:
            # own session: the child never sees the operator's Ctrl-C
            kill_process_tree(proc.pid)
            proc.communicate()
            raise

        result = CommandResult(argv, proc.returncode, stdout or "", stderr or "")
        if check and not result.ok:
            raise CommandFailed(f"'{cmd_str}' exited {result.returncode}: {result.tail(5)}", result)
        return result
