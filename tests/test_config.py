"""Tests for engine configuration."""

import json
import logging

from rich.logging import RichHandler

from narrative_engine.config import (
    DEFAULT_CONFIG,
    configure_logging,
    default_config,
    get_config_path,
    load_config,
    save_config,
)


class TestConfigFile:
    """Test loading and saving the config file."""

    def test_missing_file_returns_defaults(self, tmp_path):
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_round_trip(self, tmp_path):
        config = default_config()
        config["namespace"] = "demo"
        config["manual_slots"] = 5

        assert save_config(config, tmp_path)
        assert load_config(tmp_path) == config

    def test_partial_file_merges_with_defaults(self, tmp_path):
        get_config_path(tmp_path).write_text(json.dumps({"history_size": 2}))

        config = load_config(tmp_path)

        assert config["history_size"] == 2
        assert config["namespace"] == "rpg"

    def test_corrupt_file_returns_defaults(self, tmp_path):
        get_config_path(tmp_path).write_text("{not json")
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_non_mapping_file_returns_defaults(self, tmp_path):
        get_config_path(tmp_path).write_text("[1, 2]")
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_save_creates_directory(self, tmp_path):
        target = tmp_path / "nested"
        assert save_config(default_config(), target)
        assert get_config_path(target).exists()

    def test_default_config_is_a_copy(self):
        config = default_config()
        config["power_story_triggers"]["telekinesis"] = "changed"
        config["namespace"] = "changed"

        assert DEFAULT_CONFIG["power_story_triggers"]["telekinesis"] == "first_telekinesis_use"
        assert DEFAULT_CONFIG["namespace"] == "rpg"


class TestConfigureLogging:
    """Test console logging setup."""

    def test_rich_handler(self, monkeypatch):
        calls = []
        monkeypatch.setattr("narrative_engine.config.logging.basicConfig", lambda **kw: calls.append(kw))

        configure_logging(logging.DEBUG)

        assert calls[0]["level"] == logging.DEBUG
        assert isinstance(calls[0]["handlers"][0], RichHandler)

    def test_plain_format(self, monkeypatch):
        calls = []
        monkeypatch.setattr("narrative_engine.config.logging.basicConfig", lambda **kw: calls.append(kw))

        configure_logging(use_rich=False)

        assert "handlers" not in calls[0]
        assert "%(levelname)s" in calls[0]["format"]
