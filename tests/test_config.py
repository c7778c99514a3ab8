from pathlib import Path

import pytest
import yaml

from openspm.core.config import CONFIG_PATH_ENV_VAR, Config, load_config, resolve_config_path, save_config
from openspm.domain.errors import InvalidDataError


class TestConfig:
    def test_defaults_when_file_missing(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.data_dir == Path("/etc/openspm/")
        assert config.target_dir == Path("/usr/local/")
        assert config.repository_failure_policy == "skip"
        assert config.archive_path == Path("/etc/openspm/data.bin")

    def test_reads_existing_key_spelling(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "dataDir": str(tmp_path / "data"),
            "targetDir": str(tmp_path / "target"),
            "platform": "linux-aarch64",
            "supported_tags": "bin;linux-aarch64",
            "colorOutput": False,
            "repositoryFailurePolicy": "abort",
            "obsoleteKey": 1,
        }))

        config = load_config(path)

        assert config.data_dir == tmp_path / "data"
        assert config.target_dir == tmp_path / "target"
        assert config.platform == "linux-aarch64"
        assert config.supported_tags == "bin;linux-aarch64"
        assert config.color_output is False
        assert config.repository_failure_policy == "abort"

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("supported_tags: bin\n")
        monkeypatch.setenv(CONFIG_PATH_ENV_VAR, str(path))
        assert resolve_config_path() == path
        assert load_config().supported_tags == "bin"

    def test_explicit_path_beats_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV_VAR, str(tmp_path / "env.yaml"))
        assert resolve_config_path(tmp_path / "cli.yaml") == tmp_path / "cli.yaml"

    def test_invalid_policy(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("repositoryFailurePolicy: sometimes\n")
        with pytest.raises(InvalidDataError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(InvalidDataError):
            load_config(path)

    def test_overrides_ignore_none(self):
        config = Config(supported_tags="bin")
        assert config.with_overrides(supported_tags=None, debug=None) is config
        assert config.with_overrides(debug=True).debug is True

    def test_save_round_trip(self, tmp_path):
        config = Config(data_dir=tmp_path / "d", supported_tags="bin;gcc", http_timeout=5)
        path = save_config(config, tmp_path / "nested" / "config.yaml")

        raw = yaml.safe_load(path.read_text())
        assert raw["dataDir"] == str(tmp_path / "d")
        assert raw["supported_tags"] == "bin;gcc"
        assert load_config(path) == config
