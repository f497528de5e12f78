"""
Error taxonomy for the blue/green switch.

Every error carries a stable one-line code (E_*) and the process exit code the
CLI reports for it. Errors raised after the active-color pointer changed are
flagged ``degraded``.
"""

import re
from typing import Optional


ALLOWED_PREFIXES = (
    'E_CFG_', 'E_STORE_', 'E_LOCK_', 'E_PROVISION_', 'E_HEALTH_', 'E_ROUTER_', 'E_VERIFY_', 'E_RETIRE_',
    'E_PLATFORM_', 'E_CMD_'
)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_PROVISION = 2
EXIT_HEALTH = 3
EXIT_RELOAD = 4
EXIT_VERIFY = 5


def one_line(msg: str, code: str) -> str:
    c = str(code).strip()
    # Normalize code prefix
    if not any(c.startswith(p) for p in ALLOWED_PREFIXES):
        c = 'E_CFG_' + c
    # Normalize message: collapse whitespace and strip newlines
    m = str(msg)
    m = m.replace('\r', ' ')
    m = m.replace('\n', ' ')
    m = re.sub(r'\s+', ' ', m).strip()
    return f"{c}: {m}"


class SwitchError(Exception):
    """Base class for all switch failures."""

    code = 'E_CFG_UNKNOWN'
    exit_code = EXIT_INVALID
    degraded = False

    def __init__(self, message: str, code: Optional[str] = None):
        if code:
            self.code = code
        self.message = str(message)
        super().__init__(one_line(self.message, self.code))


class ConfigInvalid(SwitchError):
    """Missing or invalid configuration value (pre-flight)."""
    code = 'E_CFG_INVALID'


class ConfigCorrupt(SwitchError):
    """Active-color pointer does not name exactly one valid color."""
    code = 'E_STORE_CORRUPT'


class LockBusy(SwitchError):
    """Another switch attempt holds the run lock."""
    code = 'E_LOCK_BUSY'


class ProvisionFailed(SwitchError):
    code = 'E_PROVISION_FAILED'
    exit_code = EXIT_PROVISION


class HealthTimeout(SwitchError):
    """Target replicas did not all become healthy before the deadline."""

    code = 'E_HEALTH_TIMEOUT'
    exit_code = EXIT_HEALTH

    def __init__(self, message: str, healthy: int = 0, total: int = 0, polls: int = 0, logs: str = ""):
        self.healthy = healthy
        self.total = total
        self.polls = polls
        self.logs = logs
        super().__init__(message)


class ReloadFailed(SwitchError):
    code = 'E_ROUTER_RELOAD'
    exit_code = EXIT_RELOAD
    degraded = True


class VerifyFailed(SwitchError):
    code = 'E_VERIFY_FAILED'
    exit_code = EXIT_VERIFY
    degraded = True

    def __init__(self, message: str, attempts: int = 0, last_response: str = ""):
        self.attempts = attempts
        self.last_response = last_response
        super().__init__(message)


class RetireFailed(SwitchError):
    """Scale-down failed. Never changes the outcome of a switch."""
    code = 'E_RETIRE_FAILED'


class PlatformError(SwitchError):
    """Provisioning platform rejected or failed a command."""
    code = 'E_PLATFORM_ERROR'


class SwitchInterrupted(SwitchError):
    """Operator interrupt before the pointer changed."""
    code = 'E_CFG_INTERRUPTED'
