"""
Traffic router control: graceful reload and end-to-end verification.

apply() makes the router pick up the active pointer without dropping
connections. verify() proves traffic actually reaches the target color by
asking the router's public health endpoint which color answered.
"""
import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Sequence

from bgswitch.common.clock import Clock, SYSTEM_CLOCK
from bgswitch.common.errors import ReloadFailed, VerifyFailed
from bgswitch.common.process_runner import CommandFailed, CommandRunner

from .colors import Color

logger = logging.getLogger(__name__)

Probe = Callable[[], Dict[str, Any]]


class TrafficRouter(ABC):
    @abstractmethod
    def apply(self) -> None:
        """Reload configuration gracefully; ReloadFailed on any error."""

    @abstractmethod
    def verify(self, target: Color, attempts: int) -> int:
        """Probe until the serving color is `target`; returns the attempt that matched."""


def http_probe(url: str, timeout: float = 2.0) -> Dict[str, Any]:
    """HTTP GET returning the JSON body."""
    try:
        req = urllib.request.Request(url, method='GET')
        with urllib.request.urlopen(req, timeout=timeout) as response:
            if response.getcode() != 200:
                raise ValueError(f"HTTP {response.getcode()}")
            return json.loads(response.read().decode('utf-8'))
    except urllib.error.URLError as e:
        raise ConnectionError(f"Failed to connect to {url}: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON response from {url}: {e}")


def serving_color(body: Dict[str, Any]) -> str:
    """Color reported by the service behind the router."""
    if not isinstance(body, dict):
        return ""
    return str(body.get("environment") or "").strip().lower()


class NginxRouter(TrafficRouter):
    def __init__(
        self,
        runner: CommandRunner,
        probe: Probe,
        compose_argv: Sequence[str] = ("docker", "compose"),
        service: str = "nginx",
        command_timeout_s: float = 30.0,
        verify_interval_s: float = 1.0,
        clock: Optional[Clock] = None,
    ):
        self.runner = runner
        self.probe = probe
        self.compose_argv = list(compose_argv)
        self.service = service
        self.command_timeout_s = command_timeout_s
        self.verify_interval_s = verify_interval_s
        self.clock = clock or SYSTEM_CLOCK

    def _exec(self, *args: str) -> None:
        argv = self.compose_argv + ["exec", "-T", self.service] + list(args)
        self.runner.run(argv, timeout=self.command_timeout_s)

    def apply(self) -> None:
        # nginx -s reload keeps the old config on a syntax error and still exits 0,
        # so test the config first
        try:
            self._exec("nginx", "-t")
        except CommandFailed as e:
            detail = e.result.tail(5) if e.result else e.message
            raise ReloadFailed(f"router config test failed: {detail}") from e
        try:
            self._exec("nginx", "-s", "reload")
        except CommandFailed as e:
            raise ReloadFailed(f"router reload failed: {e.message}") from e
        logger.info("[ROUTER] Nginx reloaded successfully")

    def verify(self, target: Color, attempts: int) -> int:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        last = ""
        for attempt in range(1, attempts + 1):
            try:
                body = self.probe()
            except (ConnectionError, ValueError, OSError) as e:
                last = f"error: {e}"
            else:
                seen = serving_color(body)
                if seen == target.value:
                    logger.info("[ROUTER] Verification successful, traffic is reaching %s (attempt %d)", target, attempt)
                    return attempt
                last = json.dumps(body, sort_keys=True) if isinstance(body, dict) else repr(body)
            logger.debug("[ROUTER] probe %d/%d did not match %s: %s", attempt, attempts, target, last)
            if attempt < attempts:
                self.clock.sleep(self.verify_interval_s)
        raise VerifyFailed(
            f"could not verify traffic reaches {target} after {attempts} probes; last response: {last or 'empty'}",
            attempts=attempts,
            last_response=last,
        )
