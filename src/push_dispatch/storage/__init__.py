"""SQLite persistence (SQLAlchemy) for subscriptions and dispatch events."""

from push_dispatch.storage.database import Database
from push_dispatch.storage.logs import LogFilter, SQLiteLogStore
from push_dispatch.storage.subscriptions import SQLiteSubscriptionStore

__all__ = [
    "Database",
    "LogFilter",
    "SQLiteLogStore",
    "SQLiteSubscriptionStore",
]
