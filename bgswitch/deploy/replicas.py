"""
Replica lifecycle control: bring a color up to its desired count, take it back
down to zero, and reclaim leftovers of superseded builds.
"""
import logging
from datetime import datetime
from typing import List, Optional

from bgswitch.common.errors import PlatformError, ProvisionFailed, RetireFailed

from .colors import Color
from .platform import ProvisioningPlatform, ReplicaInfo

logger = logging.getLogger(__name__)


class ReplicaLifecycle:
    def __init__(self, platform: ProvisioningPlatform, desired_replicas: int, prune_until: str = "24h"):
        if desired_replicas < 1:
            raise ValueError("desired_replicas must be >= 1")
        self.platform = platform
        self.desired_replicas = desired_replicas
        self.prune_until = prune_until

    def provision(self, color: Color, alongside: bool = False) -> None:
        """
        Build the color's image and start the desired number of replicas.

        With alongside=True (restart of the serving color) the new replicas are
        added next to the running ones, which are neither stopped nor
        recreated; retire_superseded() removes them later.
        """
        logger.info("[REPLICAS] Building %s image", color.service)
        try:
            self.platform.build(color)
        except PlatformError as e:
            raise ProvisionFailed(f"build failed for {color.service}: {e.message}") from e
        try:
            running = len(self.platform.replicas(color)) if alongside else 0
            logger.info(
                "[REPLICAS] Starting %d replicas of %s (%d already running)",
                self.desired_replicas, color.service, running,
            )
            self.platform.scale(color, running + self.desired_replicas, recreate=not alongside)
        except PlatformError as e:
            raise ProvisionFailed(f"cannot start {color.service}: {e.message}") from e

    def retire(self, color: Color) -> None:
        """Scale the color's group to zero."""
        logger.info("[REPLICAS] Stopping %s replicas", color.service)
        try:
            self.platform.scale(color, 0)
        except PlatformError as e:
            raise RetireFailed(f"cannot stop {color.service}: {e.message}") from e

    def _stop_matching(self, color: Color, pick, what: str) -> List[str]:
        try:
            reps = self.platform.replicas(color)
        except PlatformError as e:
            raise RetireFailed(f"cannot list {color.service} replicas: {e.message}") from e
        ids = [r.id for r in reps if pick(r)]
        if not ids:
            logger.info("[REPLICAS] No %s replicas of %s to stop", what, color.service)
            return []
        logger.info("[REPLICAS] Stopping %d %s replicas of %s", len(ids), what, color.service)
        try:
            self.platform.stop_replicas(ids)
        except PlatformError as e:
            raise RetireFailed(f"cannot stop {what} replicas of {color.service}: {e.message}") from e
        return ids

    def retire_superseded(self, color: Color, before: datetime) -> List[str]:
        """Stop replicas of `color` created strictly before `before`."""
        def older(r: ReplicaInfo) -> bool:
            return r.created_at is not None and r.created_at < before
        return self._stop_matching(color, older, "superseded")

    def retire_started_since(self, color: Color, since: datetime) -> List[str]:
        """Stop replicas of `color` created at or after `since`."""
        def newer(r: ReplicaInfo) -> bool:
            return r.created_at is not None and r.created_at >= since
        return self._stop_matching(color, newer, "newly started")

    def reclaim(self) -> Optional[str]:
        """Best-effort cleanup; returns a warning message instead of raising."""
        try:
            self.platform.prune(self.prune_until)
        except PlatformError as e:
            logger.warning("[REPLICAS] Cleanup failed: %s", e.message)
            return f"cleanup failed: {e.message}"
        logger.info("[REPLICAS] Cleanup complete")
        return None
