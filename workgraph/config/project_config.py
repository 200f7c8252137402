"""
Project configuration file for workgraph.

Settings that belong to a workspace rather than a process live in a small
YAML file (default ``~/.config/workgraph/config.yaml``, overridable with
WORKGRAPH_CONFIG):

    default_project: myapp
    prefixes:
      task: ts
      epic: ep
    id_length: 6
    max_depth: 100

Missing files and missing keys fall back to the defaults below.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..exceptions import ConfigurationError
from .constants import (
    DEFAULT_CONFIG_FILENAME,
    DEFAULT_PROJECT,
    ITEM_ID_HEX_LENGTH,
    ITEM_ID_PREFIXES,
    WORKGRAPH_CONFIG_DIR,
)

logger = logging.getLogger(__name__)


def normalize_prefix(prefix: str) -> str:
    """Strip whitespace and a trailing dash: ``" ts- "`` -> ``"ts"``."""
    return prefix.strip().rstrip("-")


@dataclass
class ProjectConfig:
    """Workspace-level settings."""

    default_project: str = DEFAULT_PROJECT
    task_prefix: str = normalize_prefix(ITEM_ID_PREFIXES["task"])
    epic_prefix: str = normalize_prefix(ITEM_ID_PREFIXES["epic"])
    id_length: int = ITEM_ID_HEX_LENGTH
    max_depth: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        prefixes = data.get("prefixes") or {}
        config = cls(
            default_project=data.get("default_project") or DEFAULT_PROJECT,
            task_prefix=normalize_prefix(prefixes.get("task") or ITEM_ID_PREFIXES["task"]),
            epic_prefix=normalize_prefix(prefixes.get("epic") or ITEM_ID_PREFIXES["epic"]),
            id_length=data.get("id_length") or ITEM_ID_HEX_LENGTH,
            max_depth=data.get("max_depth"),
        )
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "default_project": self.default_project,
            "prefixes": {"task": self.task_prefix, "epic": self.epic_prefix},
            "id_length": self.id_length,
        }
        if self.max_depth is not None:
            data["max_depth"] = self.max_depth
        return data

    def validate(self) -> None:
        if not isinstance(self.id_length, int) or not 3 <= self.id_length <= 16:
            raise ConfigurationError("id_length must be an integer between 3 and 16", setting="id_length")
        if self.max_depth is not None and (not isinstance(self.max_depth, int) or self.max_depth < 1):
            raise ConfigurationError("max_depth must be a positive integer", setting="max_depth")
        if not self.task_prefix or not self.epic_prefix:
            raise ConfigurationError("id prefixes must not be empty", setting="prefixes")
        if self.task_prefix == self.epic_prefix:
            raise ConfigurationError("task and epic prefixes must differ", setting="prefixes")

    def prefix_for(self, item_type: str) -> str:
        """ID prefix including the dash, e.g. ``"ts-"``."""
        prefix = self.epic_prefix if item_type == "epic" else self.task_prefix
        return f"{prefix}-"


def get_config_path() -> Path:
    configured = os.environ.get("WORKGRAPH_CONFIG")
    if configured:
        return Path(configured).expanduser()
    return WORKGRAPH_CONFIG_DIR / DEFAULT_CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> ProjectConfig:
    """Load the project config, or defaults when no file exists."""
    config_path = Path(path) if path is not None else get_config_path()
    if not config_path.exists():
        return ProjectConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read config file: {e}", setting=str(config_path)) from e

    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a mapping", setting=str(config_path))

    logger.debug("Loaded config from %s", config_path)
    return ProjectConfig.from_dict(data)


def save_config(config: ProjectConfig, path: Optional[Path] = None) -> Path:
    """Write the project config as YAML and return the path written."""
    config.validate()
    config_path = Path(path) if path is not None else get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    return config_path
