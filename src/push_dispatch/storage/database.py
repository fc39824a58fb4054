"""SQLAlchemy engine and session handle shared by the subscription and event stores.

The handle is opened once at startup, injected into every store and closed
at shutdown. Each store call is one unit of work: a session transaction that
commits on success and rolls back on failure. Units of work run on a
dedicated worker thread, so blocking SQLite I/O never competes with push
delivery threads, and a lock keeps every unit atomic with respect to other
dispatches and batches.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from types import TracebackType
from typing import Final, Self

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import ConnectionPoolEntry, StaticPool

from push_dispatch.exceptions import StorageError
from push_dispatch.storage.models import Base
from push_dispatch.utils.logging import get_logger

__all__ = ["MEMORY_PATH", "Database"]

logger = get_logger(__name__)

MEMORY_PATH: Final[str] = ":memory:"


def _enable_wal(dbapi_connection: sqlite3.Connection, connection_record: ConnectionPoolEntry) -> None:
    cursor = dbapi_connection.cursor()
    _ = cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class Database:
    """Explicitly managed SQLite database.

    Usable as a context manager::

        with Database(Path("data/push-dispatch.db")) as database:
            store = SQLiteSubscriptionStore(database)
    """

    def __init__(self, path: Path | str = MEMORY_PATH, *, echo: bool = False) -> None:
        self._path: Path | str = path
        self._echo: bool = echo
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._lock: threading.Lock = threading.Lock()

    @property
    def path(self) -> Path | str:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def is_memory(self) -> bool:
        return str(self._path) == MEMORY_PATH

    def open(self) -> None:
        """Create the engine and the schema; a second call is a no-op.

        Raises:
            StorageError: If the file cannot be opened or the schema cannot be created
        """
        if self._engine is not None:
            return

        try:
            if not self.is_memory:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            engine = self._create_engine()
            Base.metadata.create_all(engine)
        except (SQLAlchemyError, OSError) as exc:
            msg = f"Failed to open database at {self._path}: {exc}"
            raise StorageError(msg) from exc

        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="push-dispatch-db")
        logger.debug("Database opened", extra={"database_path": str(self._path)})

    def _create_engine(self) -> Engine:
        serializer = partial(json.dumps, default=str)
        if self.is_memory:
            # one shared connection, or every checkout would see an empty database
            return create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                json_serializer=serializer,
                echo=self._echo,
            )

        engine = create_engine(
            f"sqlite:///{self._path}",
            connect_args={"check_same_thread": False},
            json_serializer=serializer,
            echo=self._echo,
        )
        event.listen(engine, "connect", _enable_wal)
        return engine

    def close(self) -> None:
        if self._engine is None:
            return
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        with self._lock:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.debug("Database closed", extra={"database_path": str(self._path)})

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def execute[T](self, func: Callable[[Session], T]) -> T:
        """Run ``func`` inside one session transaction.

        Commits on success and rolls back on failure.

        Raises:
            StorageError: If the database is closed or SQLAlchemy reports an error
        """
        with self._lock:
            factory = self._session_factory
            if factory is None:
                msg = "Database is not open"
                raise StorageError(msg)
            try:
                with factory.begin() as session:
                    return func(session)
            except SQLAlchemyError as exc:
                msg = f"Database operation failed: {exc}"
                raise StorageError(msg) from exc

    async def run[T](self, func: Callable[[Session], T]) -> T:
        """Async counterpart of :meth:`execute`, run on the database worker thread.

        Raises:
            StorageError: If the database is closed or SQLAlchemy reports an error
        """
        executor = self._executor
        if executor is None:
            msg = "Database is not open"
            raise StorageError(msg)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, self.execute, func)
