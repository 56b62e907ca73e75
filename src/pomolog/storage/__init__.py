"""Storage layer: SQLite database, session history and engine snapshots."""

from pomolog.storage.database import Database, init_database

__all__ = ["Database", "init_database"]
