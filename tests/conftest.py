"""
Common test fixtures for the blue/green switch tests.

Provides:
- FakeClock: deterministic monotonic time; sleep() advances it
- InMemoryColorStore: ColorStore without a filesystem
- FakePlatform: replica groups with delayed health transitions and induced failures
- FakeRouter: reload/verify double that follows the store
- FakeRunner: scripted CommandRunner for compose/nginx command tests
- make_orchestrator: wires the fakes into a SwitchOrchestrator
"""

# --- BEGIN: Ensure repo root in sys.path ---
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
root_str = str(ROOT)
if sys.path[:1] != [root_str]:
    sys.path[:] = [root_str] + [p for p in sys.path if p != root_str]
# --- END: Ensure repo root in sys.path ---

import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from bgswitch.common.errors import ConfigCorrupt, PlatformError, ReloadFailed, VerifyFailed
from bgswitch.common.process_runner import CommandFailed, CommandResult
from bgswitch.deploy.colors import Color
from bgswitch.deploy.health_gate import HealthGate
from bgswitch.deploy.orchestrator import SwitchOrchestrator
from bgswitch.deploy.platform import ProvisioningPlatform, ReplicaInfo
from bgswitch.deploy.replicas import ReplicaLifecycle
from bgswitch.deploy.router import TrafficRouter
from bgswitch.deploy.store import ColorStore
from bgswitch.metrics.exporter import SwitchMetrics


BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers to avoid 'unknown marker' warnings."""
    config.addinivalue_line("markers", "smoke: Fast validation suite")


class FakeClock:
    def __init__(self):
        self.t = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds

    def now(self) -> datetime:
        return BASE_TIME + timedelta(seconds=self.t)


class InMemoryColorStore(ColorStore):
    def __init__(self, value: Optional[Color] = Color.BLUE):
        self.value = value
        self.writes: List[Color] = []
        self.fail_write = False

    def read(self) -> Color:
        if self.value is None:
            raise ConfigCorrupt("cannot detect active color (in-memory store empty)")
        return self.value

    def write(self, color: Color) -> None:
        if self.fail_write:
            raise OSError("disk full")
        self.writes.append(color)
        self.value = color


class FakePlatform(ProvisioningPlatform):
    """
    Replica groups driven by a FakeClock.

    New replicas report "starting" until the color has been polled
    `healthy_after[color]` times (None = never healthy). Seeded replicas are
    healthy and older than anything started during a test. scale() sets the
    group size; colors in `image_changed` get their running replicas
    recreated unless recreate=False.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._ids = itertools.count(1)
        self.groups: Dict[Color, List[dict]] = {Color.BLUE: [], Color.GREEN: []}
        self.healthy_after: Dict[Color, Optional[int]] = {Color.BLUE: 0, Color.GREEN: 0}
        self.polls: Dict[Color, int] = {Color.BLUE: 0, Color.GREEN: 0}
        self.failing_polls: Set[int] = set()
        self.fail_build: Set[Color] = set()
        self.image_changed: Set[Color] = set()
        self.fail_scale_up: Set[Color] = set()
        self.fail_stop: Set[Color] = set()
        self.fail_prune = False
        self.fail_logs = False
        self.calls: List[Tuple[str, str]] = []
        self.count_history: Dict[Color, List[int]] = {Color.BLUE: [], Color.GREEN: []}

    # helpers

    def seed(self, color: Color, n: int) -> None:
        for _ in range(n):
            self.groups[color].append({
                "id": f"{color.value}-{next(self._ids)}",
                "created_at": BASE_TIME - timedelta(hours=1),
                "seeded": True,
            })
        self._record(color)

    def count(self, color: Color) -> int:
        return len(self.groups[color])

    def _record(self, color: Color) -> None:
        self.count_history[color].append(self.count(color))

    def _health_of(self, color: Color, rep: dict) -> str:
        if rep.get("seeded"):
            return "healthy"
        after = self.healthy_after[color]
        if after is not None and self.polls[color] > after:
            return "healthy"
        return "starting"

    # ProvisioningPlatform

    def build(self, color: Color) -> None:
        self.calls.append(("build", color.value))
        if color in self.fail_build:
            raise PlatformError(f"build failed for {color.service}")

    def _fresh(self, color: Color) -> dict:
        return {"id": f"{color.value}-{next(self._ids)}", "created_at": self.clock.now()}

    def scale(self, color: Color, replicas: int, recreate: bool = True) -> None:
        """Like `compose up --scale`: the group ends with exactly `replicas`."""
        self.calls.append(("scale", f"{color.value}={replicas}"))
        if replicas == 0:
            if color in self.fail_stop:
                raise PlatformError(f"stop failed for {color.service}")
            self.groups[color] = []
        else:
            if color in self.fail_scale_up:
                raise PlatformError(f"platform rejected {color.service}")
            group = self.groups[color]
            if recreate and color in self.image_changed and group:
                # running replicas are replaced in place with the new image
                self.groups[color] = group = [self._fresh(color) for _ in group]
                self._record(color)
            del group[replicas:]
            while len(group) < replicas:
                group.append(self._fresh(color))
        self._record(color)

    def replicas(self, color: Color) -> List[ReplicaInfo]:
        return [
            ReplicaInfo(id=r["id"], color=color, state="running",
                        health=self._health_of(color, r), created_at=r["created_at"])
            for r in self.groups[color]
        ]

    def health(self, color: Color):
        self.polls[color] += 1
        if self.polls[color] in self.failing_polls:
            raise PlatformError("docker daemon not responding")
        return super().health(color)

    def stop_replicas(self, ids: Sequence[str]) -> None:
        self.calls.append(("stop_replicas", ",".join(ids)))
        for color in Color:
            keep = [r for r in self.groups[color] if r["id"] not in ids]
            if len(keep) == len(self.groups[color]):
                continue
            if color in self.fail_stop:
                raise PlatformError(f"stop failed for {color.service}")
            self.groups[color] = keep
            self._record(color)

    def logs(self, color: Color, tail: int = 20) -> str:
        if self.fail_logs:
            raise PlatformError("logs unavailable")
        return f"{color.service} | listening on :3000"

    def prune(self, until: str) -> None:
        self.calls.append(("prune", until))
        if self.fail_prune:
            raise PlatformError("prune failed")


class FakeRouter(TrafficRouter):
    """Serves whatever the store named at the last successful apply()."""

    def __init__(self, store: InMemoryColorStore):
        self.store = store
        self.serving: Optional[Color] = store.value
        self.fail_apply = False
        self.stuck = False
        self.apply_calls = 0
        self.probes = 0

    def apply(self) -> None:
        self.apply_calls += 1
        if self.fail_apply:
            raise ReloadFailed("nginx: [emerg] unexpected end of file")
        if not self.stuck:
            self.serving = self.store.value

    def verify(self, target: Color, attempts: int) -> int:
        for attempt in range(1, attempts + 1):
            self.probes += 1
            if self.serving == target:
                return attempt
        raise VerifyFailed(f"could not verify traffic reaches {target}", attempts=attempts,
                           last_response=str(self.serving))


class FakeRunner:
    """CommandRunner double: records argv, answers via a responder callable."""

    def __init__(self, responder: Optional[Callable[[List[str]], CommandResult]] = None):
        self.calls: List[List[str]] = []
        self.timeouts: List[float] = []
        self.responder = responder

    def run(self, args, timeout: float, check: bool = True) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        self.timeouts.append(timeout)
        result = self.responder(argv) if self.responder else CommandResult(argv, 0, "", "")
        if check and not result.ok:
            raise CommandFailed(f"'{' '.join(argv)}' exited {result.returncode}: {result.tail(5)}", result)
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryColorStore(Color.BLUE)


@pytest.fixture
def platform(clock):
    p = FakePlatform(clock)
    p.seed(Color.BLUE, 2)
    return p


@pytest.fixture
def router(store):
    return FakeRouter(store)


@pytest.fixture
def metrics():
    return SwitchMetrics()


@pytest.fixture
def make_orchestrator(store, platform, router, clock, metrics):
    def _make(timeout: float = 10.0, interval: float = 2.0, replicas: int = 2, verify_attempts: int = 5):
        return SwitchOrchestrator(
            store=store,
            replicas=ReplicaLifecycle(platform, replicas),
            gate=HealthGate(platform, clock),
            router=router,
            health_timeout_s=timeout,
            health_interval_s=interval,
            verify_attempts=verify_attempts,
            clock=clock,
            metrics=metrics,
        )
    return _make


@pytest.fixture
def make_runner():
    return FakeRunner
