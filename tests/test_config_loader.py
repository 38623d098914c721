"""
Tests for configuration file loader.
"""

from pathlib import Path
import pytest

from autoheal.config_loader import (
    load_yaml_file,
    load_toml_file,
    load_config_file,
    find_config_file,
    get_env_config,
    deep_merge,
    flatten_config,
    merge_config,
    load_config_with_overrides,
)
from autoheal.exceptions import InvalidConfigError, MissingConfigError

ENV_VARS = (
    "AUTOHEAL_TICK_INTERVAL",
    "AUTOHEAL_EXECUTOR_TIMEOUT",
    "AUTOHEAL_DRY_RUN",
    "AUTOHEAL_COOLDOWN",
    "AUTOHEAL_LOG_LEVEL",
    "AUTOHEAL_LOG_FILE",
    "AUTOHEAL_AUDIT_FILE",
    "AUTOHEAL_PROMETHEUS_URL",
    "AUTOHEAL_ESCALATION_WEBHOOK",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadYAMLFile:
    """Tests for YAML file loading."""

    def test_load_valid_yaml(self, tmp_path):
        """Test loading a valid YAML file."""
        config_file = tmp_path / "autoheal.yaml"
        config_file.write_text("""
controller:
  tick_interval_seconds: 15
remediation:
  actions:
    ApplicationDown: [restart]
""")

        config = load_yaml_file(config_file)

        assert config["controller"]["tick_interval_seconds"] == 15
        assert config["remediation"]["actions"] == {"ApplicationDown": ["restart"]}

    def test_load_empty_yaml(self, tmp_path):
        """Test loading an empty YAML file."""
        config_file = tmp_path / "autoheal.yaml"
        config_file.write_text("")

        assert load_yaml_file(config_file) == {}

    def test_load_nonexistent_yaml(self, tmp_path):
        with pytest.raises(MissingConfigError):
            load_yaml_file(tmp_path / "nonexistent.yaml")

    def test_load_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "autoheal.yaml"
        config_file.write_text("controller: [unclosed\n")

        with pytest.raises(InvalidConfigError):
            load_yaml_file(config_file)

    def test_top_level_must_be_mapping(self, tmp_path):
        config_file = tmp_path / "autoheal.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(InvalidConfigError):
            load_yaml_file(config_file)


class TestLoadTOMLFile:
    """Tests for TOML file loading."""

    def test_load_valid_toml(self, tmp_path):
        config_file = tmp_path / "autoheal.toml"
        config_file.write_text("""
[controller]
tick_interval_seconds = 10

[remediation.actions]
HighMemory = ["cache-flush"]
""")

        config = load_toml_file(config_file)

        assert config["controller"]["tick_interval_seconds"] == 10
        assert config["remediation"]["actions"]["HighMemory"] == ["cache-flush"]

    def test_load_invalid_toml(self, tmp_path):
        config_file = tmp_path / "autoheal.toml"
        config_file.write_text("[controller\n")

        with pytest.raises(InvalidConfigError):
            load_toml_file(config_file)


class TestLoadConfigFile:
    """Tests for format dispatch."""

    def test_yml_extension(self, tmp_path):
        config_file = tmp_path / "autoheal.yml"
        config_file.write_text("api:\n  port: 9000\n")

        assert load_config_file(str(config_file)) == {"api": {"port": 9000}}

    def test_unsupported_extension(self, tmp_path):
        config_file = tmp_path / "autoheal.json"
        config_file.write_text("{}")

        with pytest.raises(InvalidConfigError):
            load_config_file(str(config_file))


class TestFindConfigFile:
    """Tests for the config search path."""

    def test_finds_file_in_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        (tmp_path / "autoheal.toml").write_text("")

        assert find_config_file() == tmp_path / "autoheal.toml"

    def test_yaml_preferred_over_toml(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "autoheal.yaml").write_text("")
        (tmp_path / "autoheal.toml").write_text("")

        assert find_config_file() == tmp_path / "autoheal.yaml"


class TestEnvConfig:
    """Tests for environment overrides."""

    def test_no_env(self):
        assert get_env_config() == {}

    def test_env_values(self, monkeypatch):
        monkeypatch.setenv("AUTOHEAL_TICK_INTERVAL", "5")
        monkeypatch.setenv("AUTOHEAL_COOLDOWN", "600")
        monkeypatch.setenv("AUTOHEAL_DRY_RUN", "yes")
        monkeypatch.setenv("AUTOHEAL_PROMETHEUS_URL", "http://prometheus:9090")

        config = get_env_config()

        assert config["controller"] == {"tick_interval_seconds": 5.0, "dry_run": True}
        assert config["remediation"] == {"cooldown_seconds": 600.0}
        assert config["metrics_source"] == {"type": "prometheus", "url": "http://prometheus:9090"}

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("AUTOHEAL_COOLDOWN", "five minutes")

        with pytest.raises(InvalidConfigError):
            get_env_config()


class TestMerging:
    """Tests for merging and flattening."""

    def test_deep_merge(self):
        base = {"controller": {"tick_interval_seconds": 30, "queue_size": 10}, "api": {"port": 1}}
        override = {"controller": {"tick_interval_seconds": 5}}

        merged = deep_merge(base, override)

        assert merged == {"controller": {"tick_interval_seconds": 5, "queue_size": 10}, "api": {"port": 1}}
        assert base["controller"]["tick_interval_seconds"] == 30

    def test_flatten_config(self):
        flat = flatten_config({
            "controller": {"tick_interval_seconds": 10, "dry_run": True},
            "remediation": {"cooldown_seconds": 60},
            "objectives": [{"id": "a"}],
            "audit": {"file": "audit.jsonl"},
            "logging": {"level": "DEBUG", "json": True},
            "api": {"port": 9000, "webhook_secret": "s3cret"},
        })

        assert flat == {
            "tick_interval_seconds": 10,
            "dry_run": True,
            "remediation": {"cooldown_seconds": 60},
            "objectives": [{"id": "a"}],
            "audit_file": "audit.jsonl",
            "log_level": "DEBUG",
            "log_json": True,
            "api_port": 9000,
            "api_webhook_secret": "s3cret",
        }

    def test_flatten_rejects_non_mapping_section(self):
        with pytest.raises(InvalidConfigError):
            flatten_config({"controller": ["tick"]})

    def test_env_wins_over_file(self):
        merged = merge_config(
            {"remediation": {"cooldown_seconds": 300, "actions": {"A": ["restart"]}}},
            {"remediation": {"cooldown_seconds": 30}},
        )

        assert merged["remediation"] == {"cooldown_seconds": 30, "actions": {"A": ["restart"]}}


class TestLoadWithOverrides:
    """Tests for the full load path."""

    def test_explicit_path(self, tmp_path, monkeypatch):
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("controller:\n  tick_interval_seconds: 20\n")
        monkeypatch.setenv("AUTOHEAL_LOG_LEVEL", "DEBUG")

        config = load_config_with_overrides(str(config_file))

        assert config["tick_interval_seconds"] == 20
        assert config["log_level"] == "DEBUG"

    def test_missing_file_is_an_error(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        if any(Path("/etc", name).exists() for name in ("autoheal.yaml", "autoheal.toml")):
            pytest.skip("system-wide autoheal config present")

        with pytest.raises(MissingConfigError):
            load_config_with_overrides()
