"""Forum service: SQLite storage, validation, HTTP routes, and WebSocket forum updates and global chat."""

__version__ = "0.1.0"