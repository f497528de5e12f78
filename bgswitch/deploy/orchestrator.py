"""
Switch orchestrator: the blue/green cutover state machine.

States: DETECTING -> PROVISIONING -> HEALTH_GATING -> SWITCHING -> VERIFYING
-> RETIRING -> DONE. Failures before SWITCHING end in ABORTED (or FAILED for
config/provision errors) with the previous color untouched. Failures after the
pointer was written end in DEGRADED: the previous color keeps running and
nothing is reverted automatically.
"""
import logging
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from bgswitch.common.clock import Clock, SYSTEM_CLOCK
from bgswitch.common.errors import (
    EXIT_INVALID,
    EXIT_OK,
    ConfigCorrupt,
    HealthTimeout,
    ProvisionFailed,
    ReloadFailed,
    RetireFailed,
    SwitchError,
    SwitchInterrupted,
    VerifyFailed,
)
from bgswitch.metrics.exporter import SwitchMetrics

from .colors import Color, other
from .health_gate import HealthGate
from .replicas import ReplicaLifecycle
from .router import TrafficRouter
from .store import ColorStore

logger = logging.getLogger(__name__)


class SwitchState(str, Enum):
    DETECTING = "DETECTING"
    PROVISIONING = "PROVISIONING"
    HEALTH_GATING = "HEALTH_GATING"
    SWITCHING = "SWITCHING"
    VERIFYING = "VERIFYING"
    RETIRING = "RETIRING"
    DONE = "DONE"
    ABORTED = "ABORTED"
    DEGRADED = "DEGRADED"
    FAILED = "FAILED"


TERMINAL_STATES = {SwitchState.DONE, SwitchState.ABORTED, SwitchState.DEGRADED, SwitchState.FAILED}


class Outcome(str, Enum):
    SUCCESS = "success"
    CONFIG_ERROR = "config_error"
    PROVISION_FAILED = "provision_failed"
    ABORTED = "aborted"
    INTERRUPTED = "interrupted"
    DEGRADED = "degraded"


@dataclass
class SwitchAttempt:
    """Record of one orchestrator run, reported to the operator."""
    source: Optional[Color] = None
    target: Optional[Color] = None
    state: SwitchState = SwitchState.DETECTING
    outcome: Optional[Outcome] = None
    stopped_in: Optional[SwitchState] = None
    error: Optional[SwitchError] = None
    previous_serving: Optional[bool] = None
    replicas: int = 0
    trace: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def forced_restart(self) -> bool:
        return self.source is not None and self.source == self.target

    @property
    def exit_code(self) -> int:
        if self.outcome is Outcome.SUCCESS:
            return EXIT_OK
        if self.error is not None:
            return self.error.exit_code
        return EXIT_INVALID

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value if self.source else None,
            "target": self.target.value if self.target else None,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "stopped_in": self.stopped_in.value if self.stopped_in else None,
            "error_kind": self.error_kind,
            "error": self.error.message if self.error is not None else None,
            "error_code": self.error.code if self.error is not None else None,
            "degraded": self.error is not None and self.error.degraded,
            "previous_serving": self.previous_serving,
            "replicas": self.replicas,
            "trace": list(self.trace),
            "warnings": list(self.warnings),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "exit_code": self.exit_code,
        }


class _DeferredInterrupt:
    def __init__(self) -> None:
        self.pending = False


@contextmanager
def defer_interrupts() -> Iterator[_DeferredInterrupt]:
    """Hold back SIGINT from the pointer write until the previous color is retired."""
    state = _DeferredInterrupt()
    if threading.current_thread() is not threading.main_thread():
        yield state
        return

    def _handler(signum, frame):
        state.pending = True
        logger.warning("[SWITCH] Interrupt received; finishing the switch first")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield state
    finally:
        signal.signal(signal.SIGINT, previous)


class SwitchOrchestrator:
    """
    Sequences store, replica lifecycle, health gate and router into one
    cutover. Assumes it is the only writer of the store while it runs.
    """

    def __init__(
        self,
        store: ColorStore,
        replicas: ReplicaLifecycle,
        gate: HealthGate,
        router: TrafficRouter,
        health_timeout_s: float,
        health_interval_s: float,
        verify_attempts: int = 5,
        clock: Optional[Clock] = None,
        metrics: Optional[SwitchMetrics] = None,
    ):
        self.store = store
        self.replicas = replicas
        self.gate = gate
        self.router = router
        self.health_timeout_s = health_timeout_s
        self.health_interval_s = health_interval_s
        self.verify_attempts = verify_attempts
        self.clock = clock or SYSTEM_CLOCK
        self.metrics = metrics
        self._phase_started: Optional[float] = None

    # ── bookkeeping ───────────────────────────────────────────────

    def _close_phase(self, attempt: SwitchAttempt) -> None:
        if self._phase_started is not None and self.metrics is not None:
            self.metrics.observe_phase(attempt.state.value, self.clock.monotonic() - self._phase_started)
        self._phase_started = None

    def _enter(self, attempt: SwitchAttempt, state: SwitchState, detail: str = "") -> None:
        self._close_phase(attempt)
        attempt.state = state
        if state not in TERMINAL_STATES:
            self._phase_started = self.clock.monotonic()
        line = f"{state.value}: {detail}" if detail else state.value
        attempt.trace.append(line)
        logger.info("[SWITCH] %s", line)

    def _finish(
        self,
        attempt: SwitchAttempt,
        outcome: Outcome,
        state: SwitchState,
        error: Optional[SwitchError] = None,
        previous_serving: Optional[bool] = None,
    ) -> None:
        attempt.stopped_in = attempt.state if state is not SwitchState.DONE else None
        attempt.outcome = outcome
        attempt.error = error
        attempt.previous_serving = previous_serving
        detail = outcome.value if error is None else f"{outcome.value} ({type(error).__name__}: {error.message})"
        self._enter(attempt, state, detail)

    def _warn(self, attempt: SwitchAttempt, message: str) -> None:
        attempt.warnings.append(message)
        logger.warning("[SWITCH] %s", message)

    # ── protocol ──────────────────────────────────────────────────

    def run(self, target: Optional[Color] = None) -> SwitchAttempt:
        """Execute one switch. Errors are reported on the returned attempt."""
        attempt = SwitchAttempt(started_at=self.clock.now(), replicas=self.replicas.desired_replicas)
        try:
            self._run(attempt, target)
        finally:
            self._close_phase(attempt)
            attempt.finished_at = self.clock.now()
            if self.metrics is not None and attempt.outcome is not None:
                self.metrics.record_attempt(attempt.outcome.value, time.time())
                self.metrics.health_polls.set(self.gate.last_polls)
        return attempt

    def _teardown_target(self, attempt: SwitchAttempt, target: Color, same: bool, since: datetime) -> None:
        """Stop the half-started target without touching what serves traffic."""
        try:
            if same:
                self.replicas.retire_started_since(target, since)
            else:
                self.replicas.retire(target)
        except RetireFailed as e:
            self._warn(attempt, f"teardown of {target.service} failed: {e.message}")

    def _run(self, attempt: SwitchAttempt, override: Optional[Color]) -> None:
        self._enter(attempt, SwitchState.DETECTING)
        try:
            current = self.store.read()
        except ConfigCorrupt as e:
            self._finish(attempt, Outcome.CONFIG_ERROR, SwitchState.FAILED, e)
            return
        if self.metrics is not None:
            self.metrics.set_active(current.value)

        target = override if override is not None else other(current)
        same = target == current
        attempt.source, attempt.target = current, target
        logger.info("[SWITCH] Current active color: %s, target color: %s", current, target)
        if same:
            logger.info("[SWITCH] Note: target is same as current, this is a restart/rebuild")

        # platform timestamps have one-second resolution
        since = self.clock.now().replace(microsecond=0)
        try:
            self._enter(attempt, SwitchState.PROVISIONING, f"{target.service} x{self.replicas.desired_replicas}")
            try:
                self.replicas.provision(target, alongside=same)
            except ProvisionFailed as e:
                self._finish(attempt, Outcome.PROVISION_FAILED, SwitchState.FAILED, e, previous_serving=True)
                return

            self._enter(attempt, SwitchState.HEALTH_GATING, target.service)
            try:
                self.gate.wait(target, self.health_timeout_s, self.health_interval_s)
            except HealthTimeout as e:
                logger.error("[SWITCH] Aborting switch, tearing down %s replicas", target)
                if e.logs:
                    logger.error("[SWITCH] --- Last lines of %s logs ---\n%s", target.service, e.logs)
                self._teardown_target(attempt, target, same, since)
                self._finish(attempt, Outcome.ABORTED, SwitchState.ABORTED, e, previous_serving=True)
                return
        except KeyboardInterrupt:
            logger.warning("[SWITCH] Interrupted before switching, tearing down %s", target)
            self._teardown_target(attempt, target, same, since)
            self._finish(
                attempt, Outcome.INTERRUPTED, SwitchState.ABORTED,
                SwitchInterrupted("interrupted by operator before switching"),
                previous_serving=True,
            )
            return

        # From here on the router may already point at the target; run through RETIRING
        with defer_interrupts() as deferred:
            self._enter(attempt, SwitchState.SWITCHING, f"{current} -> {target}")
            try:
                self.store.write(target)
            except (ConfigCorrupt, OSError) as e:
                # atomic replace: pointer unchanged
                err = e if isinstance(e, ConfigCorrupt) else ConfigCorrupt(f"cannot write active pointer: {e}")
                self._teardown_target(attempt, target, same, since)
                self._finish(attempt, Outcome.CONFIG_ERROR, SwitchState.FAILED, err, previous_serving=True)
                return
            if self.metrics is not None:
                self.metrics.set_active(target.value)

            try:
                self.router.apply()
            except ReloadFailed as e:
                self._finish(attempt, Outcome.DEGRADED, SwitchState.DEGRADED, e, previous_serving=False)
                return

            self._enter(attempt, SwitchState.VERIFYING, f"{self.verify_attempts} probes")
            try:
                self.router.verify(target, self.verify_attempts)
            except VerifyFailed as e:
                self._finish(attempt, Outcome.DEGRADED, SwitchState.DEGRADED, e, previous_serving=False)
                return

            self._enter(attempt, SwitchState.RETIRING, current.service)
            try:
                if same:
                    self.replicas.retire_superseded(target, since)
                else:
                    self.replicas.retire(current)
            except RetireFailed as e:
                self._warn(attempt, f"retire of {current.service} failed: {e.message}")

        if deferred.pending:
            self._warn(attempt, "interrupted during switch; cleanup skipped")
        else:
            warning = self.replicas.reclaim()
            if warning:
                self._warn(attempt, warning)
        self._finish(attempt, Outcome.SUCCESS, SwitchState.DONE, previous_serving=same)
