"""
Configuration management for the blue/green switch.

Sources, later wins:
- field defaults
- optional YAML file (top-level keys or a ``switch:`` section)
- the project's .env file (python-dotenv)
- process environment variables

Everything is validated once, before the switch starts. A missing or invalid
value is a pre-flight ConfigInvalid, never a surprise halfway through a switch.
"""

import logging
import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigInvalid

logger = logging.getLogger(__name__)


# field name -> environment variable
ENV_KEYS: Dict[str, str] = {
    "replicas": "APP_REPLICAS",
    "health_timeout_s": "HEALTH_CHECK_TIMEOUT",
    "health_interval_s": "HEALTH_CHECK_INTERVAL",
    "router_host": "NGINX_HOST",
    "router_port": "NGINX_HTTP_PORT",
    "probe_path": "SWITCH_PROBE_PATH",
    "probe_timeout_s": "SWITCH_PROBE_TIMEOUT",
    "verify_attempts": "SWITCH_VERIFY_ATTEMPTS",
    "verify_interval_s": "SWITCH_VERIFY_INTERVAL",
    "upstream_dir": "SWITCH_UPSTREAM_DIR",
    "router_service": "SWITCH_ROUTER_SERVICE",
    "compose_command": "SWITCH_COMPOSE_COMMAND",
    "command_timeout_s": "SWITCH_COMMAND_TIMEOUT",
    "query_timeout_s": "SWITCH_QUERY_TIMEOUT",
    "prune_until": "SWITCH_PRUNE_UNTIL",
    "metrics_textfile": "SWITCH_METRICS_TEXTFILE",
}


class SwitchSettings(BaseModel):
    """Strict schema for switch settings. Extra keys are forbidden."""

    model_config = {"extra": "forbid", "frozen": True}

    project_dir: Path = Path(".")

    # Replica group
    replicas: int = Field(1, ge=1)

    # Health gate
    health_timeout_s: float = Field(120.0, gt=0)
    health_interval_s: float = Field(2.0, gt=0)

    # Router probe
    router_host: str = Field("localhost", min_length=1)
    router_port: int = Field(80, ge=1, le=65535)
    probe_path: str = "/health"
    probe_timeout_s: float = Field(2.0, gt=0)
    verify_attempts: int = Field(5, ge=1)
    verify_interval_s: float = Field(1.0, ge=0)

    # Router and platform control
    upstream_dir: Optional[Path] = None
    router_service: str = Field("nginx", min_length=1)
    compose_command: str = Field("docker compose", min_length=1)
    command_timeout_s: float = Field(600.0, gt=0)
    query_timeout_s: float = Field(10.0, gt=0)
    prune_until: str = Field("24h", min_length=1)

    metrics_textfile: Optional[Path] = None

    @field_validator("probe_path")
    @classmethod
    def _probe_path_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("probe_path must start with '/'")
        return v

    @field_validator("compose_command")
    @classmethod
    def _compose_command_parses(cls, v: str) -> str:
        if not shlex.split(v):
            raise ValueError("compose_command must not be blank")
        return v

    @model_validator(mode="after")
    def _interval_within_timeout(self) -> "SwitchSettings":
        if self.health_interval_s > self.health_timeout_s:
            raise ValueError("health_interval_s must be <= health_timeout_s")
        return self

    @property
    def upstreams(self) -> Path:
        """Directory holding the per-color definitions and the active pointer."""
        d = self.upstream_dir if self.upstream_dir is not None else Path("nginx") / "upstreams"
        return d if d.is_absolute() else self.project_dir / d

    @property
    def compose_argv(self) -> List[str]:
        return shlex.split(self.compose_command)

    @property
    def probe_url(self) -> str:
        return f"http://{self.router_host}:{self.router_port}{self.probe_path}"


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "settings"
        env = ENV_KEYS.get(loc)
        where = f"{loc} ({env})" if env else loc
        parts.append(f"{where}: {err.get('msg')}")
    return "; ".join(parts)


class ConfigLoader:
    """Configuration loader with YAML, .env and environment variable support."""

    def __init__(
        self,
        project_dir: Union[str, Path] = ".",
        env_file: Optional[Union[str, Path]] = None,
        config_path: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        require_env_file: bool = True,
    ):
        self.project_dir = Path(project_dir).resolve()
        self.env_file = Path(env_file) if env_file else self.project_dir / ".env"
        self.config_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self.require_env_file = require_env_file

    def load(self) -> SwitchSettings:
        raw: Dict[str, Any] = {}
        raw.update(self._load_yaml())
        raw.update(self._from_env(self._load_env_file()))
        raw.update(self._from_env(self.environ))
        raw["project_dir"] = self.project_dir
        try:
            settings = SwitchSettings(**raw)
        except ValidationError as e:
            raise ConfigInvalid(_format_validation_error(e)) from e
        logger.debug("Loaded settings: %s", settings.model_dump())
        return settings

    def _load_yaml(self) -> Dict[str, Any]:
        if self.config_path is None:
            return {}
        if not self.config_path.exists():
            raise ConfigInvalid(f"config file not found: {self.config_path}")
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigInvalid(f"invalid YAML in {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigInvalid(f"{self.config_path} must contain a mapping")
        if "switch" in data:
            data = data["switch"] or {}
            if not isinstance(data, dict):
                raise ConfigInvalid(f"{self.config_path}: 'switch' must be a mapping")
        return dict(data)

    def _load_env_file(self) -> Dict[str, Optional[str]]:
        if not self.env_file.exists():
            if self.require_env_file:
                raise ConfigInvalid(f".env file not found at {self.env_file}")
            logger.info("No .env file at %s, using environment only", self.env_file)
            return {}
        return dict(dotenv_values(self.env_file))

    @staticmethod
    def _from_env(source: Mapping[str, Optional[str]]) -> Dict[str, Any]:
        """Pick known variables; empty values count as unset."""
        out: Dict[str, Any] = {}
        for key, env_name in ENV_KEYS.items():
            value = source.get(env_name)
            if value is None or str(value).strip() == "":
                continue
            out[key] = str(value).strip()
        return out


def load_settings(
    project_dir: Union[str, Path] = ".",
    env_file: Optional[Union[str, Path]] = None,
    config_path: Optional[Union[str, Path]] = None,
    require_env_file: bool = True,
) -> SwitchSettings:
    """Load and validate settings for one switch run."""
    loader = ConfigLoader(
        project_dir=project_dir,
        env_file=env_file,
        config_path=config_path,
        require_env_file=require_env_file,
    )
    return loader.load()
