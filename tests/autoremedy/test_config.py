"""Tests for settings loading."""

from pathlib import Path

import pytest

from autoremedy.config import Settings, load_settings
from autoremedy.exceptions import ConfigError


class TestDefaults:
    """Defaults without any configuration source."""

    def test_defaults(self, tmp_path):
        settings = load_settings(tmp_path)
        assert settings.max_retries == 3
        assert settings.max_same_signature_failures == 3
        assert settings.memory_success_threshold == 0.5
        assert settings.fix_timeout_seconds == 120
        assert [p.name for p in settings.health_probes] == ["backend", "frontend", "proxy"]

    def test_paths_resolve_against_project_root(self, tmp_path):
        settings = load_settings(tmp_path)
        assert settings.memory_file(tmp_path) == tmp_path / "data" / "repair-memory.json"
        assert settings.log_directory(tmp_path) == tmp_path / "data"

    def test_absolute_paths_kept(self, tmp_path):
        settings = load_settings(tmp_path, memory_path="/var/lib/autoremedy/memory.json")
        assert settings.memory_file(tmp_path) == Path("/var/lib/autoremedy/memory.json")


class TestPrecedence:
    """overrides > environment > YAML > defaults."""

    def test_yaml_file_in_project_root(self, tmp_path):
        (tmp_path / "autoremedy.yaml").write_text("max_retries: 5\npackage_dirs: [frontend, backend]\n")
        settings = load_settings(tmp_path)
        assert settings.max_retries == 5
        assert settings.package_dirs == ["frontend", "backend"]

    def test_environment_beats_yaml(self, tmp_path, monkeypatch):
        (tmp_path / "autoremedy.yaml").write_text("max_retries: 5\n")
        monkeypatch.setenv("AUTOREMEDY_MAX_RETRIES", "7")
        assert load_settings(tmp_path).max_retries == 7

    def test_dotenv_read_from_project_root(self, tmp_path, monkeypatch):
        project = tmp_path / "project"
        project.mkdir()
        (project / ".env").write_text("AUTOREMEDY_MAX_RETRIES=5\n")
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        (elsewhere / ".env").write_text("AUTOREMEDY_MAX_RETRIES=9\nAUTOREMEDY_LOG_LEVEL=DEBUG\n")
        monkeypatch.chdir(elsewhere)

        settings = load_settings(project)
        assert settings.max_retries == 5
        assert settings.log_level == "INFO"

    def test_override_beats_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AUTOREMEDY_MAX_RETRIES", "7")
        assert load_settings(tmp_path, max_retries=2).max_retries == 2

    def test_none_override_ignored(self, tmp_path):
        (tmp_path / "autoremedy.yaml").write_text("max_retries: 5\n")
        assert load_settings(tmp_path, max_retries=None).max_retries == 5

    def test_explicit_config_path(self, tmp_path):
        config = tmp_path / "custom.yaml"
        config.write_text("build_command: make image\n")
        assert load_settings(tmp_path, config_path=config).build_command == "make image"

    def test_health_probes_from_yaml(self, tmp_path):
        (tmp_path / "autoremedy.yaml").write_text(
            "health_probes:\n  - name: api\n    url: http://localhost:8080/ready\n"
        )
        probes = load_settings(tmp_path).health_probes
        assert len(probes) == 1
        assert probes[0].url == "http://localhost:8080/ready"
        assert probes[0].accept_any is False


class TestValidation:
    """Invalid values raise ConfigError."""

    def test_missing_explicit_config(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path, config_path=tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        (tmp_path / "autoremedy.yaml").write_text("max_retries: [\n")
        with pytest.raises(ConfigError):
            load_settings(tmp_path)

    def test_yaml_must_be_mapping(self, tmp_path):
        (tmp_path / "autoremedy.yaml").write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(tmp_path)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_retries": 0},
            {"max_same_signature_failures": 0},
            {"memory_success_threshold": 1.5},
            {"fix_timeout_seconds": 0},
            {"build_timeout_seconds": -1},
        ],
    )
    def test_invalid_values(self, tmp_path, overrides):
        with pytest.raises(ConfigError):
            load_settings(tmp_path, **overrides)

    def test_invalid_env_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AUTOREMEDY_MAX_RETRIES", "many")
        with pytest.raises(ConfigError):
            load_settings(tmp_path)

    def test_settings_direct(self):
        assert Settings(_env_file=None, max_retries=4).max_retries == 4
