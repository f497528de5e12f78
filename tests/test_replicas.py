"""
Replica lifecycle: provisioning, retirement and best-effort reclaim.
"""

from datetime import datetime, timedelta, timezone

import pytest

from bgswitch.common.errors import PlatformError, ProvisionFailed, RetireFailed
from bgswitch.deploy.colors import Color
from bgswitch.deploy.replicas import ReplicaLifecycle


BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_provision_builds_then_scales(platform):
    ReplicaLifecycle(platform, 3).provision(Color.GREEN)

    assert platform.calls == [("build", "green"), ("scale", "green=3")]
    assert platform.count(Color.GREEN) == 3


def test_build_failure_is_provision_failure(platform):
    platform.fail_build.add(Color.GREEN)

    with pytest.raises(ProvisionFailed, match="build failed") as ei:
        ReplicaLifecycle(platform, 2).provision(Color.GREEN)

    assert ei.value.exit_code == 2
    assert ("scale", "green=2") not in platform.calls


def test_provision_alongside_adds_without_recreating(platform):
    platform.image_changed.add(Color.BLUE)

    ReplicaLifecycle(platform, 2).provision(Color.BLUE, alongside=True)

    assert platform.calls == [("build", "blue"), ("scale", "blue=4")]
    assert {"blue-1", "blue-2"} <= {r.id for r in platform.replicas(Color.BLUE)}
    assert min(platform.count_history[Color.BLUE]) == 2


def test_provision_alongside_listing_failure(platform):
    def broken(color):
        raise PlatformError("docker daemon not responding")

    platform.replicas = broken

    with pytest.raises(ProvisionFailed, match="cannot start app_blue"):
        ReplicaLifecycle(platform, 2).provision(Color.BLUE, alongside=True)


def test_scale_failure_is_provision_failure(platform):
    platform.fail_scale_up.add(Color.GREEN)

    with pytest.raises(ProvisionFailed, match="cannot start app_green"):
        ReplicaLifecycle(platform, 2).provision(Color.GREEN)


def test_retire_scales_to_zero(platform):
    ReplicaLifecycle(platform, 2).retire(Color.BLUE)

    assert platform.count(Color.BLUE) == 0
    assert platform.calls[-1] == ("scale", "blue=0")


def test_retire_failure(platform):
    platform.fail_stop.add(Color.BLUE)

    with pytest.raises(RetireFailed):
        ReplicaLifecycle(platform, 2).retire(Color.BLUE)


def test_retire_superseded_keeps_new_replicas(platform, clock):
    lifecycle = ReplicaLifecycle(platform, 2)
    clock.t = 30
    since = clock.now()
    platform.scale(Color.BLUE, 4)

    stopped = lifecycle.retire_superseded(Color.BLUE, since)

    assert stopped == ["blue-1", "blue-2"]
    assert platform.count(Color.BLUE) == 2
    assert all(r.created_at >= since for r in platform.replicas(Color.BLUE))


def test_retire_started_since_keeps_old_replicas(platform, clock):
    lifecycle = ReplicaLifecycle(platform, 2)
    platform.scale(Color.BLUE, 4)

    stopped = lifecycle.retire_started_since(Color.BLUE, BASE_TIME - timedelta(minutes=1))

    assert len(stopped) == 2
    assert {r.id for r in platform.replicas(Color.BLUE)} == {"blue-1", "blue-2"}


def test_nothing_to_stop_issues_no_command(platform):
    stopped = ReplicaLifecycle(platform, 2).retire_started_since(Color.GREEN, BASE_TIME)

    assert stopped == []
    assert not any(c[0] == "stop_replicas" for c in platform.calls)


def test_reclaim_failure_is_a_warning(platform):
    platform.fail_prune = True

    warning = ReplicaLifecycle(platform, 2, prune_until="1h").reclaim()

    assert warning == "cleanup failed: prune failed"
    assert platform.calls[-1] == ("prune", "1h")


def test_reclaim_success(platform):
    assert ReplicaLifecycle(platform, 2).reclaim() is None


def test_desired_replicas_must_be_positive(platform):
    with pytest.raises(ValueError):
        ReplicaLifecycle(platform, 0)
