"""Tests for environment-backed configuration."""
import logging
import os

import pytest

from declreaper.config import Config, get_config, reset_config

KEYS = ("REAPER_ALL_AT_ONCE", "REAPER_RETAIN_EXTERNAL", "REAPER_REQUIRED_NAMES",
        "REAPER_PROTECTED_FILES", "REAPER_LOG_LEVEL")


@pytest.fixture
def config(tmp_path, monkeypatch):
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)
    return Config(env_path=tmp_path / ".env")


def test_defaults(config):
    assert config.all_at_once is False
    assert config.retain_external is False
    assert config.required_names == []
    assert config.protected_patterns == []
    assert config.log_level == logging.WARNING


@pytest.mark.parametrize("raw, expected", [("1", True), ("Yes", True), ("off", False), ("0", False)])
def test_boolean_values(config, monkeypatch, raw, expected):
    monkeypatch.setenv("REAPER_ALL_AT_ONCE", raw)
    assert config.all_at_once is expected


def test_invalid_boolean_is_rejected(config, monkeypatch):
    monkeypatch.setenv("REAPER_RETAIN_EXTERNAL", "maybe")
    with pytest.raises(ValueError):
        config.retain_external


def test_lists_split_on_commas_and_whitespace(config, monkeypatch):
    monkeypatch.setenv("REAPER_REQUIRED_NAMES", "a, b  c")
    monkeypatch.setenv("REAPER_PROTECTED_FILES", "*.h")

    assert config.required_names == ["a", "b", "c"]
    assert config.protected_patterns == ["*.h"]


def test_log_level(config, monkeypatch):
    monkeypatch.setenv("REAPER_LOG_LEVEL", "debug")
    assert config.log_level == logging.DEBUG

    monkeypatch.setenv("REAPER_LOG_LEVEL", "loud")
    with pytest.raises(ValueError):
        config.log_level


def test_env_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("REAPER_REQUIRED_NAMES", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("REAPER_REQUIRED_NAMES=from_file\n")

    try:
        config = Config(env_path=env_file)
        assert config.required_names == ["from_file"]
    finally:
        os.environ.pop("REAPER_REQUIRED_NAMES", None)


def test_get_config_is_a_singleton():
    reset_config()
    try:
        assert get_config() is get_config()
    finally:
        reset_config()
