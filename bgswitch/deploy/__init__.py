"""
Blue/green cutover: active-color store, health gate, router control,
replica lifecycle and the switch orchestrator.
"""

from .colors import Color, other, parse_color
from .orchestrator import Outcome, SwitchAttempt, SwitchOrchestrator, SwitchState

__all__ = ["Color", "other", "parse_color", "Outcome", "SwitchAttempt", "SwitchOrchestrator", "SwitchState"]
