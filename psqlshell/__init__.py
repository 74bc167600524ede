"""psqlshell: an interactive PostgreSQL client with context-aware completion."""

__version__ = "0.1.0"
