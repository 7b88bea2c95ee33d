"""
Unit tests for configuration loading and validation.
[CTX:PBI-1:1-5:CFG]

Tests cover:
- Fallback to defaults when config is missing or empty
- Loading values from YAML
- Environment overrides
- Validation errors for invalid configs
"""
from pathlib import Path

import pytest
import yaml

from ccr_registry.core.config import (
    DEFAULT_CONFIG,
    DEFAULT_REGISTRY_PATH,
    ConfigValidationError,
    RegistryConfig,
    get_default_config,
    load_config,
    validate_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("CCR_PROJECTS_FILE", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestRegistryConfig:
    """Test RegistryConfig class."""

    def test_defaults(self):
        config = get_default_config()

        assert config.registry_path == DEFAULT_REGISTRY_PATH
        assert config.bmad_folders == ["_bmad", ".bmad"]
        assert config.agents_subdir == "bmm/agents"
        assert config.workflows_subdir == "bmm/workflows"
        assert config.backup_suffix == ".backup"
        assert config.log_level == "info"

    def test_from_dict_fills_defaults(self):
        config = RegistryConfig.from_dict({"bmad_folders": [".bmad"], "log_level": None})

        assert config.bmad_folders == [".bmad"]
        assert config.log_level == "info"
        assert config.agents_subdir == DEFAULT_CONFIG["agents_subdir"]

    def test_expands_user(self):
        config = RegistryConfig(registry_path="~/registry.json")
        assert "~" not in str(config.registry_path)

    def test_to_dict_round_trip(self, tmp_path):
        config = RegistryConfig(registry_path=tmp_path / "p.json", log_level="debug")
        data = config.to_dict()

        assert data["registry_path"] == str(tmp_path / "p.json")
        assert RegistryConfig.from_dict(data) == config


class TestLoadConfig:
    """Test loading configuration from YAML."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yml")
        assert config == get_default_config()

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "registry.yml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == get_default_config()

    def test_values_loaded(self, tmp_path):
        path = write_yaml(tmp_path / "registry.yml", {
            "registry_path": str(tmp_path / "projects.json"),
            "bmad_folders": ["_bmad"],
            "log_level": "DEBUG",
        })

        config = load_config(path)

        assert config.registry_path == tmp_path / "projects.json"
        assert config.bmad_folders == ["_bmad"]
        assert config.log_level == "debug"

    def test_environment_overrides(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "registry.yml", {"log_level": "info"})
        monkeypatch.setenv("CCR_PROJECTS_FILE", str(tmp_path / "env.json"))
        monkeypatch.setenv("LOG_LEVEL", "warning")

        config = load_config(path)

        assert config.registry_path == tmp_path / "env.json"
        assert config.log_level == "warning"

    def test_non_mapping_rejected(self, tmp_path):
        path = write_yaml(tmp_path / "registry.yml", ["a", "b"])
        with pytest.raises(ConfigValidationError, match="must be a mapping"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "registry.yml"
        path.write_text("bmad_folders: [unclosed\n", encoding="utf-8")
        with pytest.raises(yaml.YAMLError):
            load_config(path)


class TestValidateConfig:
    """Test validation errors."""

    def test_defaults_valid(self):
        validate_config(get_default_config())
        validate_config({})

    @pytest.mark.parametrize("folders", [[], "_bmad", ["a/b"], [".."], [""]])
    def test_bad_bmad_folders(self, folders):
        with pytest.raises(ConfigValidationError):
            validate_config({"bmad_folders": folders})

    @pytest.mark.parametrize("subdir", ["", "/abs/agents", "../agents"])
    def test_bad_subdir(self, subdir):
        with pytest.raises(ConfigValidationError, match="agents_subdir"):
            validate_config({"agents_subdir": subdir})

    def test_bad_backup_suffix(self):
        with pytest.raises(ConfigValidationError, match="backup_suffix"):
            validate_config({"backup_suffix": "bak"})

    def test_bad_log_level(self):
        with pytest.raises(ConfigValidationError, match="log_level"):
            validate_config({"log_level": "verbose"})

    def test_empty_registry_path(self):
        with pytest.raises(ConfigValidationError, match="registry_path"):
            validate_config({"registry_path": ""})

    def test_not_a_dict(self):
        with pytest.raises(ConfigValidationError):
            validate_config(["registry_path"])
