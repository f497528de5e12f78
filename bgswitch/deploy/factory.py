"""
Wire the docker compose / nginx implementations from validated settings.
"""
import functools
from typing import List, Optional

from bgswitch.common.clock import Clock, SYSTEM_CLOCK
from bgswitch.common.config import SwitchSettings
from bgswitch.common.process_runner import CommandRunner
from bgswitch.metrics.exporter import SwitchMetrics

from .health_gate import HealthGate
from .orchestrator import SwitchOrchestrator
from .platform import ComposePlatform
from .replicas import ReplicaLifecycle
from .router import NginxRouter, http_probe
from .store import FileColorStore


def docker_argv(compose_argv: List[str]) -> List[str]:
    """Engine CLI that goes with a compose command ('docker compose' -> 'docker')."""
    head = compose_argv[0]
    if head.endswith("docker-compose"):
        return ["docker"]
    return [head]


def build_platform(settings: SwitchSettings, runner: Optional[CommandRunner] = None) -> ComposePlatform:
    runner = runner or CommandRunner(cwd=settings.project_dir)
    return ComposePlatform(
        runner,
        compose_argv=settings.compose_argv,
        docker_argv=docker_argv(settings.compose_argv),
        command_timeout_s=settings.command_timeout_s,
        query_timeout_s=settings.query_timeout_s,
    )


def build_orchestrator(
    settings: SwitchSettings,
    clock: Optional[Clock] = None,
    metrics: Optional[SwitchMetrics] = None,
) -> SwitchOrchestrator:
    clock = clock or SYSTEM_CLOCK
    runner = CommandRunner(cwd=settings.project_dir)
    platform = build_platform(settings, runner)
    router = NginxRouter(
        runner,
        probe=functools.partial(http_probe, settings.probe_url, settings.probe_timeout_s),
        compose_argv=settings.compose_argv,
        service=settings.router_service,
        command_timeout_s=settings.query_timeout_s * 3,
        verify_interval_s=settings.verify_interval_s,
        clock=clock,
    )
    return SwitchOrchestrator(
        store=FileColorStore(settings.upstreams),
        replicas=ReplicaLifecycle(platform, settings.replicas, prune_until=settings.prune_until),
        gate=HealthGate(platform, clock),
        router=router,
        health_timeout_s=settings.health_timeout_s,
        health_interval_s=settings.health_interval_s,
        verify_attempts=settings.verify_attempts,
        clock=clock,
        metrics=metrics,
    )
