# spurchat/memory/db.py

import sqlite3
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

import anyio
from anyio import CapacityLimiter, to_thread

from spurchat.config.settings import Settings
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StorageError(RuntimeError):
    """Persistent store unreachable, pool exhausted, or an integrity failure."""


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
        text TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations (id) ON DELETE CASCADE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_conversation_ts
        ON messages (conversation_id, timestamp)
    """,
)


class Database:
    """
    Process-scoped handle on the SQLite file.

    Built once at startup and handed to the store. Every call opens its own
    connection inside :meth:`connection` and closes it on all exit paths.
    Blocking work runs in worker threads; at most ``pool_size`` of them
    touch the database at the same time.
    """

    def __init__(
        self,
        db_path: str,
        *,
        pool_size: int = 20,
        acquire_timeout: float = 2.0,
        busy_timeout: float = 30.0,
    ) -> None:
        self.db_path = Path(db_path)
        self.pool_size = max(1, int(pool_size))
        self.acquire_timeout = acquire_timeout
        self.busy_timeout = busy_timeout
        self._limiter: Optional[CapacityLimiter] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.db_path,
            pool_size=settings.db_pool_size,
            acquire_timeout=settings.db_acquire_timeout_seconds,
            busy_timeout=settings.db_busy_timeout_seconds,
        )

    # --------- connections ----------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection wrapped in one transaction.
        Commits on success, rolls back on error, always closes.
        sqlite3 errors are re-raised as StorageError.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database at {self.db_path}: {e}") from e

        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    # --------- async bridge ----------

    def _get_limiter(self) -> CapacityLimiter:
        # Created lazily: CapacityLimiter must be built inside a running event loop
        if self._limiter is None:
            self._limiter = CapacityLimiter(self.pool_size)
        return self._limiter

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run a blocking storage callable in a worker thread.

        Waits at most ``acquire_timeout`` seconds for a free slot; an
        exhausted pool surfaces as StorageError rather than a hang.
        """
        limiter = self._get_limiter()
        try:
            with anyio.fail_after(self.acquire_timeout):
                await limiter.acquire()
        except TimeoutError as e:
            logger.error(
                "[db] no free connection slot after %.1fs (pool_size=%d)",
                self.acquire_timeout,
                self.pool_size,
            )
            raise StorageError("Database connection pool exhausted.") from e

        try:
            return await to_thread.run_sync(partial(func, *args, **kwargs))
        finally:
            limiter.release()

    # --------- schema ----------

    def init_db(self) -> None:
        """
        Initialize the database schema if it does not exist.
        Safe to call multiple times.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.info("[db] schema ready at %s", self.db_path)
