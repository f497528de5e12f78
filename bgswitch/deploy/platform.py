"""
Provisioning platform interface and its docker compose implementation.

The switch never manages individual containers directly except to stop
superseded replicas of a same-color restart. Everything else is a group-level
command against the color's compose service (``app_<color>``, profile
``<color>``).
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from bgswitch.common.errors import PlatformError
from bgswitch.common.process_runner import CommandRunner

from .colors import Color

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplicaHealth:
    """Health summary of one color's replica group."""
    healthy: int = 0
    total: int = 0

    @property
    def all_healthy(self) -> bool:
        return self.total > 0 and self.healthy == self.total

    def __str__(self) -> str:
        return f"{self.healthy}/{self.total}"


@dataclass(frozen=True)
class ReplicaInfo:
    id: str
    color: Color
    state: str = ""
    health: str = ""
    created_at: Optional[datetime] = None


class ProvisioningPlatform(ABC):
    """Capabilities the switch consumes from the container platform."""

    @abstractmethod
    def build(self, color: Color) -> None:
        """Build the color's image."""

    @abstractmethod
    def scale(self, color: Color, replicas: int, recreate: bool = True) -> None:
        """
        Set the color's group to exactly `replicas` (0 stops it).

        With recreate=False running replicas are never replaced, only added.
        """

    @abstractmethod
    def replicas(self, color: Color) -> List[ReplicaInfo]:
        """Running replicas of the color."""

    def health(self, color: Color) -> ReplicaHealth:
        reps = self.replicas(color)
        return ReplicaHealth(healthy=sum(1 for r in reps if r.health == "healthy"), total=len(reps))

    @abstractmethod
    def stop_replicas(self, ids: Sequence[str]) -> None:
        """Stop specific replicas by id."""

    @abstractmethod
    def logs(self, color: Color, tail: int = 20) -> str:
        """Recent log lines of the color's group (diagnostics only)."""

    @abstractmethod
    def prune(self, until: str) -> None:
        """Remove stopped containers and dangling images older than `until`."""


def parse_created_at(value: Any) -> Optional[datetime]:
    """Parse compose's CreatedAt ("2024-05-01 12:00:00 +0200 CEST")."""
    if not value:
        return None
    parts = str(value).split()
    if len(parts) < 3:
        return None
    try:
        return datetime.strptime(" ".join(parts[:3]), "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return None


def parse_ps_json(text: str) -> List[Dict[str, Any]]:
    """Parse `compose ps --format json`: a JSON array (older) or one object per line."""
    text = (text or "").strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            rows = json.loads(text)
        except json.JSONDecodeError as e:
            raise PlatformError(f"invalid ps output: {e}") from e
        return [r for r in rows if isinstance(r, dict)]
    rows = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError as e:
            raise PlatformError(f"invalid ps output line: {line[:80]!r}: {e}") from e
        if isinstance(row, dict):
            rows.append(row)
    return rows


class ComposePlatform(ProvisioningPlatform):
    def __init__(
        self,
        runner: CommandRunner,
        compose_argv: Sequence[str] = ("docker", "compose"),
        docker_argv: Sequence[str] = ("docker",),
        command_timeout_s: float = 600.0,
        query_timeout_s: float = 10.0,
    ):
        self.runner = runner
        self.compose_argv = list(compose_argv)
        self.docker_argv = list(docker_argv)
        self.command_timeout_s = command_timeout_s
        self.query_timeout_s = query_timeout_s

    def _compose(self, *args: str, timeout: float, profile: Optional[Color] = None):
        argv = list(self.compose_argv)
        if profile is not None:
            argv += ["--profile", profile.value]
        return self.runner.run(argv + list(args), timeout=timeout)

    def build(self, color: Color) -> None:
        self._compose("build", color.service, timeout=self.command_timeout_s)

    def scale(self, color: Color, replicas: int, recreate: bool = True) -> None:
        if replicas <= 0:
            self._compose("stop", color.service, timeout=self.command_timeout_s, profile=color)
            return
        args = ["up", "-d", "--no-deps"]
        if not recreate:
            args.append("--no-recreate")
        args += ["--scale", f"{color.service}={replicas}", color.service]
        self._compose(*args, timeout=self.command_timeout_s, profile=color)

    def replicas(self, color: Color) -> List[ReplicaInfo]:
        result = self._compose("ps", "--format", "json", color.service, timeout=self.query_timeout_s)
        out = []
        for row in parse_ps_json(result.stdout):
            if row.get("Service", color.service) != color.service:
                continue
            out.append(ReplicaInfo(
                id=str(row.get("ID") or row.get("Name") or ""),
                color=color,
                state=str(row.get("State") or ""),
                health=str(row.get("Health") or ""),
                created_at=parse_created_at(row.get("CreatedAt")),
            ))
        return out

    def stop_replicas(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        self.runner.run(self.docker_argv + ["stop"] + list(ids), timeout=self.command_timeout_s)

    def logs(self, color: Color, tail: int = 20) -> str:
        result = self._compose("logs", f"--tail={tail}", color.service, timeout=self.query_timeout_s)
        return result.stdout or result.stderr

    def prune(self, until: str) -> None:
        # Stopped containers, dangling images, unused networks only
        self.runner.run(
            self.docker_argv + ["system", "prune", "-f", "--filter", f"until={until}"],
            timeout=self.command_timeout_s,
        )
