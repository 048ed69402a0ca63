"""Relational store handle for SocialDB.

This module provides the SQLite store used by every repository:
- One shared connection (``StaticPool``) opened at startup, closed at shutdown
- Scoped transactions with guaranteed rollback on any failure path
- Translation of SQLAlchemy failures into the typed errors of ``socialdb.errors``
- WAL mode and per-transaction foreign-key enforcement

Example:
    >>> from socialdb.database import Store
    >>>
    >>> async with Store() as store:
    ...     async with store.transaction() as conn:
    ...         await conn.execute(text("SELECT 1"))
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from socialdb.config import settings
from socialdb.errors import ConstraintViolation, SocialDBError, StoreUnavailable, TransactionFailure
from socialdb.logging import logger
from socialdb.models import TABLE_NAMES

ENFORCE_FOREIGN_KEYS = "enforce_foreign_keys"


# =============================================================================
# Store
# =============================================================================


class Store:
    """Injected handle around the single shared store connection.

    Features:
    - Explicit lifecycle: ``open()`` once, ``close()`` at shutdown
    - ``transaction()`` scopes a unit of work in ``BEGIN ... COMMIT``
    - Units of work are serialized over the one connection
    - DDL participates in transactions (the migrator relies on it)

    Args:
        database_url: SQLAlchemy URL (defaults to settings.database_url)
        echo: Log every SQL statement through SQLAlchemy

    Example:
        >>> store = Store("sqlite+aiosqlite:///:memory:")
        >>> await store.open()
        >>> counts = await store.table_counts()
        >>> await store.close()
    """

    def __init__(self, database_url: str | None = None, echo: bool = False):
        self.database_url = database_url or settings.database_url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self._lock = asyncio.Lock()

    @property
    def is_memory(self) -> bool:
        return ":memory:" in self.database_url

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    async def open(self) -> "Store":
        """Create the engine and open the shared connection.

        This method:
        1. Creates the async engine with a single static connection
        2. Disables the driver's implicit BEGIN so transactions are explicit
        3. Enables WAL mode for file databases
        4. Verifies the connection can be used

        Raises:
            StoreUnavailable: If the database cannot be opened
        """
        if self.engine is not None:
            return self

        engine = create_async_engine(
            self.database_url,
            echo=self.echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine.sync_engine, "connect", self._on_connect)
        event.listen(engine.sync_engine, "begin", self._on_begin)

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            await engine.dispose()
            raise StoreUnavailable(f"Cannot open store at {self.database_url}: {e}") from e

        self.engine = engine
        logger.info(f"✅ Store opened at {self.database_url}")
        return self

    async def close(self) -> None:
        """Dispose of the engine and its connection."""
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        logger.info("Store closed")

    async def __aenter__(self) -> "Store":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _on_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        # transactions are begun explicitly in _on_begin
        dbapi_connection.isolation_level = None
        if not self.is_memory:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.close()

    def _on_begin(self, conn: Any) -> None:
        # foreign_keys is a no-op inside a transaction, so set it before BEGIN
        enforce = conn.get_execution_options().get(ENFORCE_FOREIGN_KEYS, True)
        conn.exec_driver_sql(f"PRAGMA foreign_keys = {'ON' if enforce else 'OFF'}")
        conn.exec_driver_sql("BEGIN")

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise StoreUnavailable("Store is not open")
        return self.engine

    @asynccontextmanager
    async def transaction(self, enforce_foreign_keys: bool = True) -> AsyncIterator[AsyncConnection]:
        """Run a unit of work inside one transaction.

        Everything executed on the yielded connection commits together when
        the block exits normally and is rolled back when it raises.

        Args:
            enforce_foreign_keys: Keep foreign-key checks and cascades active.
                The migrator turns them off while recreating tables.

        Raises:
            StoreUnavailable: The connection could not be acquired
            ConstraintViolation: A uniqueness or foreign-key constraint failed
            TransactionFailure: Any other store error inside the scope
        """
        engine = self._require_engine()
        async with self._lock:
            try:
                conn = await engine.connect()
            except (OperationalError, InterfaceError) as e:
                raise StoreUnavailable(f"Store connection failed: {e}") from e

            try:
                await conn.execution_options(**{ENFORCE_FOREIGN_KEYS: enforce_foreign_keys})
                async with conn.begin():
                    yield conn
            except IntegrityError as e:
                raise ConstraintViolation(str(e.orig)) from e
            except SocialDBError:
                raise
            except SQLAlchemyError as e:
                raise TransactionFailure(str(e)) from e
            finally:
                await conn.close()

    async def table_counts(self) -> dict[str, int]:
        """Count rows of every known table that exists in the store."""
        async with self.transaction() as conn:
            result = await conn.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'table'")
            )
            existing = {row[0] for row in result}
            counts: dict[str, int] = {}
            for name in TABLE_NAMES:
                if name not in existing:
                    continue
                result = await conn.execute(text(f'SELECT COUNT(*) FROM "{name}"'))
                counts[name] = int(result.scalar_one())
        return counts


__all__ = ["Store", "ENFORCE_FOREIGN_KEYS"]
