"""Tests for configuration loading."""

import logging

from session_bridge.config import BridgeConfig, load_config


class TestLoadConfig:
    """YAML overrides on top of the defaults."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == BridgeConfig()

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("osc_host: 10.0.0.5\nws_port: 9000\nquery_timeout: 2\n")

        config = load_config(path)

        assert config.osc_host == "10.0.0.5"
        assert config.ws_port == 9000
        assert config.query_timeout == 2.0
        assert isinstance(config.query_timeout, float)
        assert config.osc_send_port == 11000

    def test_wrong_types_and_unknown_keys_skipped(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("ws_port: eighty\nsync_batch_size: true\nbogus: 1\nlog_level: DEBUG\n")

        with caplog.at_level(logging.WARNING):
            config = load_config(path)

        assert config.ws_port == 8765
        assert config.sync_batch_size == 32
        assert config.log_level == "DEBUG"
        assert "Unknown config key: bogus" in caplog.text

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("ws_port: [unclosed\n")
        assert load_config(path) == BridgeConfig()

    def test_non_mapping_ignored(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        assert load_config(path) == BridgeConfig()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == BridgeConfig()


class TestOverrides:
    """CLI flags over file values."""

    def test_none_is_ignored(self):
        config = BridgeConfig(ws_port=9000).with_overrides(ws_port=None, osc_host="1.2.3.4")
        assert config.ws_port == 9000
        assert config.osc_host == "1.2.3.4"

    def test_to_dict(self):
        assert BridgeConfig().to_dict()["osc_receive_port"] == 11001
