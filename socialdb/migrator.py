"""Schema migration runner for SocialDB.

Migration units are Python files named ``NNN_description.py`` inside the
migrations directory. Each exposes::

    async def upgrade(conn: AsyncConnection) -> None: ...
    async def downgrade(conn: AsyncConnection) -> None: ...  # optional

Units run in lexicographic order of their names. The ``migrations`` ledger
table records which names have been applied. A unit's schema change and its
ledger write commit in the same transaction, so a failed unit leaves neither
behind and the run stops at that unit.

Example:
    >>> from socialdb.database import Store
    >>> from socialdb.migrator import MigrationRunner
    >>>
    >>> async with Store() as store:
    ...     runner = MigrationRunner(store)
    ...     applied = await runner.migrate()
    ...     status = await runner.status()
"""

import importlib.util
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from socialdb.config import settings
from socialdb.database import Store
from socialdb.errors import MigrationError
from socialdb.logging import logger
from socialdb.metrics import errors_total, migrations_total
from socialdb.utils import parse_datetime

MigrationStep = Callable[[AsyncConnection], Awaitable[None]]

LEDGER_TABLE = "migrations"


# =============================================================================
# Migration Units
# =============================================================================


@dataclass(frozen=True)
class MigrationUnit:
    """A loaded migration file.

    Attributes:
        name: File stem, also the ledger key (e.g. ``001_initial_schema``)
        path: Source file
        upgrade: Forward change
        downgrade: Backward change (None when the unit cannot be reverted
            beyond removing its ledger entry)
    """

    name: str
    path: Path
    upgrade: MigrationStep
    downgrade: Optional[MigrationStep] = None


def load_migrations(directory: Path) -> list[MigrationUnit]:
    """Load every migration unit in ``directory``, ordered by name.

    Files whose names start with ``_`` are ignored.

    Raises:
        MigrationError: If a file cannot be imported or has no ``upgrade``
    """
    if not directory.is_dir():
        raise MigrationError(f"Migrations directory not found: {directory}")

    units = []
    for path in sorted(directory.glob("*.py"), key=lambda p: p.name):
        if path.name.startswith("_"):
            continue

        spec = importlib.util.spec_from_file_location(f"socialdb_migration_{path.stem}", path)
        if spec is None or spec.loader is None:
            raise MigrationError(f"Cannot load migration {path.name}", migration=path.stem)
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise MigrationError(
                f"Cannot import migration {path.name}: {e}", migration=path.stem
            ) from e

        upgrade = getattr(module, "upgrade", None)
        if upgrade is None:
            raise MigrationError(
                f"Migration {path.name} does not define upgrade()", migration=path.stem
            )
        units.append(
            MigrationUnit(
                name=path.stem,
                path=path,
                upgrade=upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    return units


# =============================================================================
# Status Models
# =============================================================================


class MigrationEntry(BaseModel):
    """Status of a single migration unit."""

    name: str
    applied: bool
    appliedAt: Optional[datetime] = None


class MigrationStatus(BaseModel):
    """Applied/pending report over every migration unit found.

    Attributes:
        entries: One entry per unit, in run order
        total: Number of units found
        applied: Number of applied units
        pending: Number of units not yet applied
        orphaned: Ledger names with no matching unit file
    """

    entries: list[MigrationEntry] = Field(default_factory=list)
    total: int = 0
    applied: int = 0
    pending: int = 0
    orphaned: list[str] = Field(default_factory=list)


# =============================================================================
# Helpers for Migration Authors
# =============================================================================


async def table_exists(conn: AsyncConnection, table: str) -> bool:
    result = await conn.execute(
        text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = :name"),
        {"name": table},
    )
    return result.first() is not None


async def column_exists(conn: AsyncConnection, table: str, column: str) -> bool:
    """Check whether ``table`` has a column named ``column``."""
    result = await conn.execute(text(f'PRAGMA table_info("{table}")'))
    return any(row.name == column for row in result)


async def add_column_if_absent(
    conn: AsyncConnection, table: str, column: str, definition: str
) -> bool:
    """Add a column unless it already exists.

    Args:
        conn: Connection of the running unit
        table: Table to alter
        column: Column name
        definition: Column type and constraints (e.g. ``"TEXT DEFAULT ''"``)

    Returns:
        True if the column was added, False if it was already present
    """
    if await column_exists(conn, table, column):
        logger.debug(f"{table}.{column} already exists, skipping")
        return False
    await conn.execute(text(f'ALTER TABLE "{table}" ADD COLUMN "{column}" {definition}'))
    logger.info(f"Added column {table}.{column}")
    return True


async def recreate_table(
    conn: AsyncConnection,
    table: str,
    create_sql: str,
    columns: Sequence[str],
    indexes: Iterable[str] = (),
) -> None:
    """Rebuild ``table`` with a new definition, keeping the listed columns.

    Used for schema changes SQLite cannot express with ALTER TABLE (dropping
    a column, changing foreign-key actions). Steps: create
    ``<table>__new`` from ``create_sql``, copy ``columns`` across, drop the
    old table, rename the new one, recreate ``indexes``.

    Must run inside a unit's transaction; the runner suspends foreign-key
    enforcement there and checks integrity before committing.

    Args:
        conn: Connection of the running unit
        table: Table to rebuild
        create_sql: CREATE TABLE statement with a ``{table}`` placeholder
        columns: Columns copied from the old table
        indexes: CREATE INDEX statements to run after the rename

    Example:
        >>> await recreate_table(
        ...     conn,
        ...     "posts",
        ...     "CREATE TABLE {table} (id TEXT PRIMARY KEY, content TEXT NOT NULL)",
        ...     ["id", "content"],
        ... )
    """
    staging = f"{table}__new"
    projection = ", ".join(f'"{column}"' for column in columns)

    await conn.execute(text(f'DROP TABLE IF EXISTS "{staging}"'))
    await conn.execute(text(create_sql.format(table=f'"{staging}"')))
    await conn.execute(
        text(f'INSERT INTO "{staging}" ({projection}) SELECT {projection} FROM "{table}"')
    )
    await conn.execute(text(f'DROP TABLE "{table}"'))
    await conn.execute(text(f'ALTER TABLE "{staging}" RENAME TO "{table}"'))
    for statement in indexes:
        await conn.execute(text(statement))
    logger.debug(f"Recreated table {table}")


async def _check_foreign_keys(conn: AsyncConnection, migration: str) -> None:
    result = await conn.execute(text("PRAGMA foreign_key_check"))
    violations = result.fetchall()
    if violations:
        tables = sorted({row[0] for row in violations})
        raise MigrationError(
            f"Migration {migration} left {len(violations)} foreign key violation(s) in {', '.join(tables)}",
            migration=migration,
        )


# =============================================================================
# Migration Runner
# =============================================================================


class MigrationRunner:
    """Applies, reverts and reports migration units against a store.

    Args:
        store: Open store handle
        migrations_dir: Directory of units (defaults to settings.migrations_dir)
    """

    def __init__(self, store: Store, migrations_dir: Path | None = None):
        self.store = store
        self.migrations_dir = migrations_dir or settings.migrations_dir

    def load(self) -> list[MigrationUnit]:
        return load_migrations(self.migrations_dir)

    async def _ensure_ledger(self, conn: AsyncConnection) -> None:
        await conn.execute(
            text(
                f"""
                CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE NOT NULL,
                    executed_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
        )

    async def applied_migrations(self) -> dict[str, Optional[datetime]]:
        """Ledger contents as ``{name: executed_at}`` in application order."""
        async with self.store.transaction() as conn:
            await self._ensure_ledger(conn)
            result = await conn.execute(
                text(f"SELECT name, executed_at FROM {LEDGER_TABLE} ORDER BY id")
            )
            return {row.name: parse_datetime(row.executed_at) for row in result}

    def _record_failure(self, direction: str, unit: str, error: Exception) -> None:
        migrations_total.labels(direction=direction, status="error").inc()
        errors_total.labels(error_type=type(error).__name__, component="migrator").inc()
        logger.error(f"❌ Migration {unit} failed ({direction}): {error}")

    async def migrate(self) -> list[str]:
        """Apply every pending unit in order.

        Returns:
            Names of the units applied by this run (empty when up to date)

        Raises:
            MigrationError: The first failing unit; later units are not attempted
        """
        units = self.load()
        applied = await self.applied_migrations()
        pending = [unit for unit in units if unit.name not in applied]

        if not pending:
            logger.info("No pending migrations, schema is up to date")
            return []

        logger.info(f"Running {len(pending)} pending migration(s)")
        completed: list[str] = []
        for unit in pending:
            logger.info(f"Applying {unit.name}")
            try:
                async with self.store.transaction(enforce_foreign_keys=False) as conn:
                    await unit.upgrade(conn)
                    await _check_foreign_keys(conn, unit.name)
                    await conn.execute(
                        text(f"INSERT INTO {LEDGER_TABLE} (name) VALUES (:name)"),
                        {"name": unit.name},
                    )
            except Exception as e:
                self._record_failure("up", unit.name, e)
                if isinstance(e, MigrationError):
                    raise
                raise MigrationError(f"Migration {unit.name} failed: {e}", migration=unit.name) from e

            migrations_total.labels(direction="up", status="success").inc()
            logger.info(f"✅ Applied {unit.name}")
            completed.append(unit.name)

        logger.info(f"✅ {len(completed)} migration(s) applied")
        return completed

    async def rollback(self) -> str | None:
        """Revert the most recently applied unit.

        The ledger entry is removed in the same transaction as the backward
        change, so it stays in place when the change fails.

        Returns:
            Name of the reverted unit, or None when nothing is applied

        Raises:
            MigrationError: If the unit file is missing or its downgrade fails
        """
        async with self.store.transaction() as conn:
            await self._ensure_ledger(conn)
            result = await conn.execute(
                text(f"SELECT name FROM {LEDGER_TABLE} ORDER BY id DESC LIMIT 1")
            )
            last = result.scalar_one_or_none()

        if last is None:
            logger.info("No migrations to roll back")
            return None

        units = {unit.name: unit for unit in self.load()}
        unit = units.get(last)
        if unit is None:
            raise MigrationError(f"Migration file for {last} not found", migration=last)

        logger.info(f"Rolling back {unit.name}")
        try:
            async with self.store.transaction(enforce_foreign_keys=False) as conn:
                if unit.downgrade is not None:
                    await unit.downgrade(conn)
                else:
                    logger.warning(f"{unit.name} has no downgrade, removing ledger entry only")
                await _check_foreign_keys(conn, unit.name)
                await conn.execute(
                    text(f"DELETE FROM {LEDGER_TABLE} WHERE name = :name"),
                    {"name": unit.name},
                )
        except Exception as e:
            self._record_failure("down", unit.name, e)
            if isinstance(e, MigrationError):
                raise
            raise MigrationError(f"Rollback of {unit.name} failed: {e}", migration=unit.name) from e

        migrations_total.labels(direction="down", status="success").inc()
        logger.info(f"✅ Rolled back {unit.name}")
        return unit.name

    async def status(self) -> MigrationStatus:
        """Report applied/pending state for every unit found."""
        units = self.load()
        applied = await self.applied_migrations()

        entries = [
            MigrationEntry(
                name=unit.name,
                applied=unit.name in applied,
                appliedAt=applied.get(unit.name),
            )
            for unit in units
        ]
        known = {unit.name for unit in units}
        applied_count = sum(1 for entry in entries if entry.applied)

        return MigrationStatus(
            entries=entries,
            total=len(entries),
            applied=applied_count,
            pending=len(entries) - applied_count,
            orphaned=[name for name in applied if name not in known],
        )


__all__ = [
    "MigrationUnit",
    "MigrationEntry",
    "MigrationStatus",
    "MigrationRunner",
    "load_migrations",
    "table_exists",
    "column_exists",
    "add_column_if_absent",
    "recreate_table",
    "LEDGER_TABLE",
]
