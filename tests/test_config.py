"""Tests for AppConfig loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from psqlshell import config as config_module
from psqlshell.config import AppConfig, ConnectionDefaults, load_config


def test_defaults() -> None:
    config = AppConfig()

    assert config.connection == ConnectionDefaults()
    assert config.connection.port == 5432
    assert config.metadata_ttl == 60.0
    assert config.default_schema == "public"
    assert config.timing is False


def test_load_config_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_config()

    assert result == AppConfig()


def test_load_config_reads_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        f"""
metadata_ttl = 15
default_schema = "sales"
timing = true
log_dir = "{tmp_path / 'logs'}"
history_file = ""

[connection]
host = "db.internal"
port = 6543
database = "reports"
user = "analyst"
"""
    )
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert result.metadata_ttl == 15.0
    assert result.default_schema == "sales"
    assert result.timing is True
    assert result.log_dir == tmp_path / "logs"
    assert result.history_file is None
    assert result.connection == ConnectionDefaults(host="db.internal", port=6543, database="reports", user="analyst")


def test_load_config_accepts_explicit_path(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.toml"
    config_path.write_text("timing = true\n")

    assert load_config(config_path).timing is True


def test_load_config_ignores_wrongly_typed_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('timing = "yes"\nmetadata_ttl = true\n[connection]\nport = "x"\n')

    result = load_config(config_path)

    assert result.timing is False
    assert result.metadata_ttl == 60.0
    assert result.connection.port == 5432


def test_load_config_handles_toml_errors(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("timing = [unterminated")

    assert load_config(config_path) == AppConfig()


def test_load_config_rejects_invalid_ttl(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("metadata_ttl = -5\n")

    assert load_config(config_path) == AppConfig()


def test_invalid_value_is_logged_and_rest_of_file_applies(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('metadata_ttl = -1\ntiming = true\n[connection]\nport = "x"\nhost = "db.internal"\n')

    with caplog.at_level(logging.WARNING, logger="psqlshell.config"):
        result = load_config(config_path)

    assert result.metadata_ttl == 60.0
    assert result.timing is True
    assert result.connection == ConnectionDefaults(host="db.internal")
    record = next(r for r in caplog.records if r.message == "Ignoring invalid config values")
    assert sorted(record.fields) == ["connection.port", "metadata_ttl"]
