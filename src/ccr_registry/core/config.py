"""
Configuration module for the project registry.

This module provides configuration loading and validation for where the
registry lives and how project trees are laid out.
"""
# [CTX:PBI-1:1-5:CFG]

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

HOME_DIR = Path.home() / ".claude-code-router"
DEFAULT_REGISTRY_PATH = HOME_DIR / "projects.json"
DEFAULT_SEARCH_DIR = Path.home() / ".claude" / "projects"
DEFAULT_CONFIG_PATH = HOME_DIR / "registry.yml"

LOG_LEVELS = ("debug", "info", "warning", "error")

DEFAULT_CONFIG: dict[str, Any] = {
    "registry_path": str(DEFAULT_REGISTRY_PATH),
    "bmad_folders": ["_bmad", ".bmad"],
    "agents_subdir": "bmm/agents",
    "workflows_subdir": "bmm/workflows",
    "backup_suffix": ".backup",
    "search_dir": str(DEFAULT_SEARCH_DIR),
    "log_level": "info",
}


class ConfigValidationError(ValueError):
    """Raised when configuration values are invalid."""


@dataclass
class RegistryConfig:
    """Configuration for the registry store and resource scanner."""

    registry_path: Path = field(default_factory=lambda: DEFAULT_REGISTRY_PATH)
    bmad_folders: list[str] = field(default_factory=lambda: ["_bmad", ".bmad"])
    agents_subdir: str = "bmm/agents"
    workflows_subdir: str = "bmm/workflows"
    backup_suffix: str = ".backup"
    search_dir: Path = field(default_factory=lambda: DEFAULT_SEARCH_DIR)
    log_level: str = "info"

    def __post_init__(self) -> None:
        self.registry_path = Path(self.registry_path).expanduser()
        self.search_dir = Path(self.search_dir).expanduser()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegistryConfig":
        """Create RegistryConfig from dictionary, filling defaults."""
        merged = {**DEFAULT_CONFIG, **{k: v for k, v in data.items() if v is not None}}
        return cls(
            registry_path=Path(merged["registry_path"]),
            bmad_folders=list(merged["bmad_folders"]),
            agents_subdir=merged["agents_subdir"],
            workflows_subdir=merged["workflows_subdir"],
            backup_suffix=merged["backup_suffix"],
            search_dir=Path(merged["search_dir"]),
            log_level=str(merged["log_level"]).lower(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert RegistryConfig to dictionary."""
        data = asdict(self)
        data["registry_path"] = str(self.registry_path)
        data["search_dir"] = str(self.search_dir)
        return data


def get_default_config() -> RegistryConfig:
    """Return a RegistryConfig populated with defaults."""
    return RegistryConfig.from_dict({})


def load_config(config_path: str | Path | None = None) -> RegistryConfig:
    """
    Load registry configuration from YAML file.

    Environment overrides are applied after the file: ``CCR_PROJECTS_FILE``
    replaces ``registry_path`` and ``LOG_LEVEL`` replaces ``log_level``.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        RegistryConfig with defaults for anything not specified

    Raises:
        yaml.YAMLError: If config file is invalid YAML
        ConfigValidationError: If config validation fails
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    else:
        config_path = Path(config_path)

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
        if loaded:
            if not isinstance(loaded, dict):
                raise ConfigValidationError(f"Config {config_path} must be a mapping")
            data = loaded

    if os.environ.get("CCR_PROJECTS_FILE"):
        data["registry_path"] = os.environ["CCR_PROJECTS_FILE"]
    if os.environ.get("LOG_LEVEL"):
        data["log_level"] = os.environ["LOG_LEVEL"]

    validate_config(data)
    return RegistryConfig.from_dict(data)


def validate_config(config: RegistryConfig | dict[str, Any]) -> None:
    """
    Validate configuration.

    Args:
        config: Configuration to validate

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if isinstance(config, RegistryConfig):
        config = config.to_dict()
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a dictionary")

    folders = config.get("bmad_folders", DEFAULT_CONFIG["bmad_folders"])
    if not isinstance(folders, list) or not folders:
        raise ConfigValidationError("bmad_folders must be a non-empty list")
    for folder in folders:
        if not isinstance(folder, str) or not folder or "/" in folder or folder in (".", ".."):
            raise ConfigValidationError(f"Invalid bmad folder name: {folder!r}")

    for key in ("agents_subdir", "workflows_subdir"):
        value = config.get(key, DEFAULT_CONFIG[key])
        if not isinstance(value, str) or not value or Path(value).is_absolute() or ".." in Path(value).parts:
            raise ConfigValidationError(f"{key} must be a relative path inside the bmad folder")

    suffix = config.get("backup_suffix", DEFAULT_CONFIG["backup_suffix"])
    if not isinstance(suffix, str) or not suffix.startswith("."):
        raise ConfigValidationError("backup_suffix must start with '.'")

    level = str(config.get("log_level", DEFAULT_CONFIG["log_level"])).lower()
    if level not in LOG_LEVELS:
        raise ConfigValidationError(
            f"log_level must be one of {', '.join(LOG_LEVELS)}, got {level!r}"
        )

    registry_path = config.get("registry_path", DEFAULT_CONFIG["registry_path"])
    if not registry_path:
        raise ConfigValidationError("registry_path must not be empty")
