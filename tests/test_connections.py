"""Tests for connection target parsing."""

from __future__ import annotations

import pytest

from psqlshell.connections import parse_connect_target
from psqlshell.models import ConnectionConfig

CURRENT = ConnectionConfig(host="db.local", port=6543, database="sales", username="alice", password="secret")


def test_bare_database_keeps_host_and_port() -> None:
    target = parse_connect_target("reports", CURRENT)

    assert (target.host, target.port, target.database) == ("db.local", 6543, "reports")
    assert target.username == "alice"
    assert target.password == "secret"


def test_host_and_database_use_default_port() -> None:
    target = parse_connect_target("replica/reports", CURRENT)

    assert (target.host, target.port, target.database) == ("replica", 5432, "reports")


def test_host_port_and_database() -> None:
    target = parse_connect_target("replica:7000/reports", CURRENT)

    assert (target.host, target.port, target.database) == ("replica", 7000, "reports")


def test_empty_target_reconnects_current() -> None:
    assert parse_connect_target("  ", CURRENT) == CURRENT


def test_empty_target_without_connection_is_rejected() -> None:
    with pytest.raises(ValueError):
        parse_connect_target("", None)


def test_bare_database_without_connection_uses_defaults() -> None:
    target = parse_connect_target("postgres", None)

    assert (target.host, target.port, target.database) == ("localhost", 5432, "postgres")


@pytest.mark.parametrize("target", ["replica:abc/reports", "replica:70000/reports", "replica:", "two words"])
def test_invalid_targets(target: str) -> None:
    with pytest.raises(ValueError):
        parse_connect_target(target, CURRENT)


def test_config_repr_hides_password() -> None:
    assert "secret" not in repr(CURRENT)
    assert str(CURRENT.identity()) == "db.local:6543/sales"
