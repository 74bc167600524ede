"""Shared dataclasses used across connection/session modules."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Everything the executor needs to open a connection."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    database: str | None = None
    username: str | None = None
    password: str | None = None

    def identity(self) -> "ConnectionIdentity":
        return ConnectionIdentity(
            host=self.host,
            port=self.port,
            database=self.database or "",
            username=self.username or "",
        )

    def __repr__(self) -> str:
        return (
            f"ConnectionConfig(host={self.host!r}, port={self.port!r}, "
            f"database={self.database!r}, username={self.username!r})"
        )


@dataclass(frozen=True, slots=True)
class ConnectionIdentity:
    """Who and where the session is connected to."""

    host: str
    port: int
    database: str
    username: str

    def same_database(self, other: "ConnectionIdentity | None") -> bool:
        if other is None:
            return False
        return (self.host, self.port, self.database) == (other.host, other.port, other.database)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}/{self.database}"


__all__ = ["ConnectionConfig", "ConnectionIdentity", "DEFAULT_HOST", "DEFAULT_PORT"]
