"""
Health gate: block until every replica of a color reports healthy.

Polls at elapsed 0, interval, 2*interval, ... while elapsed < timeout. The
timeout is the only bound on the total wait. A failed status query counts as
"not yet healthy"; zero reported replicas is never success.
"""
import logging
from typing import Optional

from bgswitch.common.clock import Clock, SYSTEM_CLOCK
from bgswitch.common.errors import HealthTimeout, PlatformError

from .colors import Color
from .platform import ProvisioningPlatform, ReplicaHealth

logger = logging.getLogger(__name__)

DIAGNOSTIC_LOG_LINES = 20


class HealthGate:
    def __init__(self, platform: ProvisioningPlatform, clock: Optional[Clock] = None):
        self.platform = platform
        self.clock = clock or SYSTEM_CLOCK
        self.last_polls = 0

    def wait(self, color: Color, timeout_s: float, interval_s: float) -> ReplicaHealth:
        """
        Wait for `color` to be fully healthy.

        Returns:
            The first all-healthy ReplicaHealth observed.

        Raises:
            HealthTimeout: with last observed counts, poll count and recent logs.
        """
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")

        logger.info("[HEALTH] Waiting for %s to be healthy (timeout: %ss)", color.service, timeout_s)
        start = self.clock.monotonic()
        last = ReplicaHealth()
        polls = 0
        self.last_polls = 0

        while True:
            elapsed = self.clock.monotonic() - start
            if elapsed >= timeout_s:
                break
            polls += 1
            self.last_polls = polls
            try:
                last = self.platform.health(color)
            except PlatformError as e:
                logger.warning("[HEALTH] status query failed for %s: %s", color.service, e.message)
                last = ReplicaHealth(healthy=0, total=last.total)
            else:
                if last.all_healthy:
                    logger.info(
                        "[HEALTH] All %d replicas of %s are healthy (%.0fs elapsed)",
                        last.total, color.service, elapsed,
                    )
                    return last
                logger.info("[HEALTH]   %s healthy (%.0fs elapsed)...", last, elapsed)
            self.clock.sleep(interval_s)

        logs = self._diagnostics(color)
        raise HealthTimeout(
            f"only {last.healthy}/{last.total} replicas of {color.service} became healthy after {timeout_s}s",
            healthy=last.healthy,
            total=last.total,
            polls=polls,
            logs=logs,
        )

    def _diagnostics(self, color: Color) -> str:
        try:
            return self.platform.logs(color, DIAGNOSTIC_LOG_LINES)
        except PlatformError as e:
            logger.warning("[HEALTH] could not fetch logs for %s: %s", color.service, e.message)
            return ""
