"""
Runtime configuration for OpenSPM.

The configuration is a YAML document (default ``/etc/openspm/config.yaml``,
overridable with the ``OPENSPM_CONFIG`` environment variable). Keys keep the
spelling used by existing installations (``dataDir``, ``targetDir``,
``colorOutput``, ``supported_tags``); snake_case names are accepted too.

The config is resolved once per invocation and then passed, read-only, to
every component.
"""
from __future__ import annotations

import logging
import os
import platform as _platform
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from openspm.domain.errors import InvalidDataError, IOFailureError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV_VAR = "OPENSPM_CONFIG"
DEFAULT_CONFIG_PATH = Path("/etc/openspm/config.yaml")

RepositoryFailurePolicy = Literal["skip", "abort"]


def _default_platform() -> str:
    return f"{_platform.system().lower()}-{_platform.machine().lower()}"


class Config(BaseModel):
    """
    Read-only context for one invocation.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    data_dir: Path = Field(
        default=Path("/etc/openspm/"),
        alias="dataDir",
        description="Directory holding the blob store (data.bin).",
    )
    target_dir: Path = Field(
        default=Path("/usr/local/"),
        alias="targetDir",
        description="Installation root that package TARGET/ trees are copied into.",
    )
    platform: str = Field(
        default_factory=_default_platform,
        description="Platform identifier, e.g. 'linux-x86_64'.",
    )
    supported_tags: str = Field(
        default="",
        description="Semicolon-separated tags this host supports.",
    )
    color_output: bool = Field(
        default=True,
        alias="colorOutput",
        description="Render logs and progress with colour.",
    )
    debug: bool = Field(default=False, description="Enable debug logging.")
    http_timeout: float = Field(
        default=60.0,
        gt=0,
        alias="httpTimeout",
        description="Timeout in seconds applied to every HTTP request.",
    )
    repository_failure_policy: RepositoryFailurePolicy = Field(
        default="skip",
        alias="repositoryFailurePolicy",
        description=(
            "What to do when a repository cannot be reached during refresh or index "
            "rebuild: 'skip' logs and continues, 'abort' stops the whole operation."
        ),
    )

    @property
    def archive_path(self) -> Path:
        return Path(self.data_dir) / "data.bin"

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with the non-None overrides applied (used for CLI flags)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        return self.model_copy(update=values)

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json", by_alias=True)
        return yaml.safe_dump(data, sort_keys=False)


def resolve_config_path(path: Optional[Path] = None) -> Path:
    """
    Determine the config file path.

    Priority:
    1. Explicit path argument
    2. Environment variable OPENSPM_CONFIG
    3. /etc/openspm/config.yaml
    """
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load the YAML config, falling back to defaults when the file is missing.
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        logger.warning(f"Config file {config_path} does not exist. Using default configuration.")
        return Config()

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise InvalidDataError(f"Failed to read config file {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidDataError(f"Config file {config_path} must contain a mapping")

    # Drop keys written by older releases that this version does not use.
    known: Dict[str, Any] = {}
    for name, field in Config.model_fields.items():
        for key in (name, field.alias):
            if key and key in raw:
                known[key] = raw[key]

    try:
        return Config.model_validate(known)
    except ValidationError as e:
        raise InvalidDataError(f"Invalid config file {config_path}: {e}") from e


def save_config(config: Config, path: Optional[Path] = None) -> Path:
    config_path = resolve_config_path(path)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(config.to_yaml(), encoding="utf-8")
    except OSError as e:
        raise IOFailureError(f"Failed to write config file {config_path}: {e}") from e
    logger.info(f"Saved config to {config_path}")
    return config_path
