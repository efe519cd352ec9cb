"""Tests for HostConfig."""

import pytest

from plughost import HostConfig


class TestHostConfig:
    """Tests for defaults, validation and environment loading."""

    def test_defaults(self):
        config = HostConfig()
        assert config.batch_size == 5
        assert config.reload_warning_threshold == 10
        assert config.remove_routes_on_unload is False
        assert config.state_path.name == "plugins_state.json"

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            HostConfig(batch_size=0)

    def test_non_positive_timeout_disables_it(self):
        assert HostConfig(hook_timeout=0).hook_timeout is None

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PLUGHOST_PLUGINS_DIR", str(tmp_path))
        monkeypatch.setenv("PLUGHOST_BATCH_SIZE", "2")
        monkeypatch.setenv("PLUGHOST_REMOVE_ROUTES_ON_UNLOAD", "yes")

        config = HostConfig.from_env()

        assert config.plugins_root == tmp_path
        assert config.batch_size == 2
        assert config.remove_routes_on_unload is True
        assert config.state_path == tmp_path / "plugins_state.json"

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("PLUGHOST_PLUGINS_DIR", "/from/env")
        assert HostConfig.from_env(plugins_dir="/from/cli").plugins_dir == "/from/cli"
        assert HostConfig.from_env(plugins_dir=None).plugins_dir == "/from/env"
