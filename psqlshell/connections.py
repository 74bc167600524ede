"""Connection targets and the errors raised while opening connections."""

from __future__ import annotations

import re
from dataclasses import replace

from .models import DEFAULT_PORT, ConnectionConfig


class ConnectionBackendError(RuntimeError):
    """Raised when the executor cannot connect (unreachable host, bad credentials)."""


_TARGET = re.compile(r"^(?P<host>[^:/\s]+)(?::(?P<port>[^/\s]*))?/(?P<database>\S+)$")


def parse_connect_target(target: str, current: ConnectionConfig | None) -> ConnectionConfig:
    """Resolve a ``\\connect`` argument against the current connection.

    Accepted forms: ``dbname`` (keeps host and port), ``host/dbname`` (default
    port) and ``host:port/dbname``. An empty target reconnects to ``current``.
    Username and password always carry over.
    """

    base = current or ConnectionConfig()
    target = target.strip()
    if not target:
        if current is None or not current.database:
            raise ValueError("No previous connection to reconnect to; supply a database name.")
        return current
    match = _TARGET.match(target)
    if match is None:
        if "/" in target or ":" in target or any(ch.isspace() for ch in target):
            raise ValueError(f"Invalid connection target '{target}'. Use dbname, host/dbname or host:port/dbname.")
        return replace(base, database=target)
    port_text = match.group("port")
    if port_text is None:
        port = DEFAULT_PORT
    elif port_text.isdigit() and 0 < int(port_text) < 65536:
        port = int(port_text)
    else:
        raise ValueError(f"Invalid port '{port_text}' in connection target.")
    return replace(base, host=match.group("host"), port=port, database=match.group("database"))


__all__ = ["ConnectionBackendError", "parse_connect_target"]
