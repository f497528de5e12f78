"""
Prometheus metrics for switch attempts.

A switch is a short-lived process, so metrics live on a dedicated registry
and can be dumped to a node-exporter textfile at the end of a run.
"""

from pathlib import Path
from typing import Optional, Union

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile


PHASE_BUCKETS = (1, 5, 10, 30, 60, 120, 300, 600, 1200)


class SwitchMetrics:
    """Metrics with exact names/labels; no globals."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.attempts_total = Counter(
            'bgswitch_attempts_total', 'Switch attempts by outcome',
            ['outcome'], registry=self.registry,
        )
        self.phase_seconds = Histogram(
            'bgswitch_phase_seconds', 'Time spent in each switch state',
            ['state'], buckets=PHASE_BUCKETS, registry=self.registry,
        )
        self.active_color = Gauge(
            'bgswitch_active_color', 'Color the active pointer names (1) or not (0)',
            ['color'], registry=self.registry,
        )
        self.health_polls = Gauge(
            'bgswitch_health_polls', 'Health polls made by the last attempt',
            registry=self.registry,
        )
        self.last_finished_ts = Gauge(
            'bgswitch_last_attempt_timestamp_seconds', 'Unix time the last attempt finished',
            registry=self.registry,
        )

    def observe_phase(self, state: str, seconds: float) -> None:
        self.phase_seconds.labels(state=state).observe(max(0.0, seconds))

    def set_active(self, color: str) -> None:
        for c in ("blue", "green"):
            self.active_color.labels(color=c).set(1 if c == color else 0)

    def record_attempt(self, outcome: str, finished_ts: float) -> None:
        self.attempts_total.labels(outcome=outcome).inc()
        self.last_finished_ts.set(finished_ts)

    def write_textfile(self, path: Union[str, Path]) -> None:
        # write_to_textfile renames a temp file into place
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), self.registry)
