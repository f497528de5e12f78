"""
Active-color store: the router include file naming the live upstream.

Layout of the upstream directory::

    blue-upstream.conf     static definition for blue
    green-upstream.conf    static definition for green
    active-upstream.conf   byte copy of exactly one of the above

The router reads only ``active-upstream.conf``. Switching replaces it with the
target color's definition in a single atomic rename.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Union

from bgswitch.common.artifacts import copy_file_atomic
from bgswitch.common.errors import ConfigCorrupt

from .colors import Color

logger = logging.getLogger(__name__)

ACTIVE_NAME = "active-upstream.conf"


class ColorStore(ABC):
    """Single-writer register naming the color that receives traffic."""

    @abstractmethod
    def read(self) -> Color:
        """Current color; ConfigCorrupt unless exactly one color is named."""

    @abstractmethod
    def write(self, color: Color) -> None:
        """Point at `color`. Readers see the old or the new value, never a mix."""


class FileColorStore(ColorStore):
    def __init__(self, upstream_dir: Union[str, Path], active_name: str = ACTIVE_NAME):
        self.upstream_dir = Path(upstream_dir)
        self.active_path = self.upstream_dir / active_name

    def definition_path(self, color: Color) -> Path:
        return self.upstream_dir / f"{color.value}-upstream.conf"

    def _definitions(self) -> Dict[Color, bytes]:
        defs = {}
        for color in Color:
            p = self.definition_path(color)
            if p.exists():
                defs[color] = p.read_bytes()
        return defs

    def read(self) -> Color:
        try:
            content = self.active_path.read_bytes()
        except FileNotFoundError:
            raise ConfigCorrupt(f"active pointer not found at {self.active_path}") from None
        except OSError as e:
            raise ConfigCorrupt(f"cannot read {self.active_path}: {e}") from e
        if not content.strip():
            raise ConfigCorrupt(f"active pointer {self.active_path} is empty")

        # Exact copy of one definition file
        exact = [c for c, d in self._definitions().items() if d == content]
        if len(exact) == 1:
            return exact[0]

        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            raise ConfigCorrupt(f"active pointer {self.active_path} is not valid UTF-8") from None

        named = [c for c in Color if c.service in text]
        if len(named) != 1:
            found = ", ".join(c.service for c in named) or "none"
            raise ConfigCorrupt(
                f"cannot detect active color from {self.active_path} (upstreams referenced: {found})"
            )
        logger.debug("Active pointer differs from %s definition; detected by upstream name", named[0])
        return named[0]

    def write(self, color: Color) -> None:
        source = self.definition_path(color)
        if not source.exists():
            raise ConfigCorrupt(f"upstream definition not found: {source}")
        copy_file_atomic(source, self.active_path)
        logger.debug("Active pointer now copies %s", source.name)

    def bootstrap(self, default: Color = Color.BLUE) -> Color:
        """Create the pointer for a fresh environment; keep an existing one."""
        if self.active_path.exists():
            return self.read()
        self.write(default)
        logger.info("Initialized %s to %s", self.active_path, default)
        return default
