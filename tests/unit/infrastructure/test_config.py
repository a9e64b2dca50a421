"""
Unit tests for infrastructure/config.py - TOML configuration.
"""
import logging

import pytest

from infrastructure.config import (
    AppConfig,
    DEFAULT_CONFIG_PATH,
    CONFIG_ENV_VAR,
    load_toml_config,
    build_config,
    configure_logging,
    get_config,
    set_config,
)


def test_shipped_config_loads():
    raw = load_toml_config(DEFAULT_CONFIG_PATH)
    config = build_config(raw)

    assert config.schema.supported_versions == ["1.0.0"]
    assert config.bounds.max_x == 10000
    assert config.layout.swimlane_label_width == 150


def test_missing_file_warns_and_returns_empty(tmp_path):
    with pytest.warns(UserWarning, match="Failed to load config"):
        assert load_toml_config(tmp_path / "absent.toml") == {}


def test_malformed_file_warns(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[schema\nversion = ")
    with pytest.warns(UserWarning):
        assert load_toml_config(path) == {}


def test_env_var_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "custom.toml"
    path.write_text('[schema]\nsupported_versions = ["1.0.0", "1.1.0"]\ncurrent_version = "1.1.0"\n')
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

    config = get_config()
    assert config.schema.current_version == "1.1.0"
    assert config.schema.supported_versions == ["1.0.0", "1.1.0"]


def test_partial_sections_keep_defaults():
    config = build_config({"bounds": {"max_x": 500}})
    assert config.bounds.max_x == 500
    assert config.bounds.max_y == 10000
    assert config.layout == AppConfig().layout


def test_invalid_values_fall_back_to_defaults():
    with pytest.warns(UserWarning, match="Invalid configuration"):
        config = build_config({"bounds": {"max_x": "far"}})
    assert config == AppConfig()


def test_set_config_overrides_global():
    custom = AppConfig()
    set_config(custom)
    assert get_config() is custom


def test_configure_logging_sets_level():
    config = build_config({"logging": {"level": "debug"}})
    configure_logging(config)
    assert logging.getLogger("privdag").level == logging.DEBUG
    configure_logging(AppConfig())
    assert logging.getLogger("privdag").level == logging.INFO
