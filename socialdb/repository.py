"""Shared repository base for SocialDB.

This module provides the pieces every repository builds on:
- ``Repository``: holds the injected ``Store`` handle
- ``insert_or_ignore``: insert that is a no-op when a uniqueness constraint
  already holds the row (``INSERT ... ON CONFLICT DO NOTHING``)
- Small fetch helpers returning row mappings for the row mappers in
  ``socialdb.models``

Every public repository method opens exactly one ``store.transaction()`` and
passes its connection to private helpers, so units of work never nest.

Example:
    >>> from socialdb.repository import insert_or_ignore
    >>> from socialdb.models import LikeRow
    >>>
    >>> async with store.transaction() as conn:
    ...     added = await insert_or_ignore(conn, LikeRow, post_id="p-1", user_id="u-1")
"""

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import delete, literal_column, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.sql.expression import Executable
from sqlmodel import SQLModel

from socialdb.database import Store
from socialdb.errors import ValidationError


# =============================================================================
# Statement Helpers
# =============================================================================


def _where(model: type[SQLModel], keys: Mapping[str, Any]) -> list[Any]:
    table = model.__table__  # type: ignore[attr-defined]
    return [table.c[column] == value for column, value in keys.items()]


async def insert_or_ignore(conn: AsyncConnection, model: type[SQLModel], **values: Any) -> bool:
    """Insert a row unless a conflicting row already exists.

    The uniqueness constraint decides, so concurrent duplicate attempts
    resolve to a single row without an existence check first.

    Returns:
        True if a row was inserted, False if it already existed
    """
    statement = (
        sqlite_insert(model.__table__)  # type: ignore[attr-defined]
        .values(**values)
        .on_conflict_do_nothing()
    )
    result = await conn.execute(statement)
    return result.rowcount > 0


async def delete_where(conn: AsyncConnection, model: type[SQLModel], **keys: Any) -> int:
    """Delete the rows matching ``keys``; returns the number removed."""
    statement = delete(model.__table__).where(*_where(model, keys))  # type: ignore[attr-defined]
    result = await conn.execute(statement)
    return result.rowcount


async def row_exists(conn: AsyncConnection, model: type[SQLModel], **keys: Any) -> bool:
    """Check whether a row matching ``keys`` exists."""
    statement = (
        select(literal_column("1"))
        .select_from(model.__table__)  # type: ignore[attr-defined]
        .where(*_where(model, keys))
        .limit(1)
    )
    result = await conn.execute(statement)
    return result.first() is not None


async def fetch_one(
    conn: AsyncConnection, statement: Executable, params: Mapping[str, Any] | None = None
) -> RowMapping | None:
    result = await conn.execute(statement, dict(params or {}))
    return result.mappings().first()


async def fetch_all(
    conn: AsyncConnection, statement: Executable, params: Mapping[str, Any] | None = None
) -> Sequence[RowMapping]:
    result = await conn.execute(statement, dict(params or {}))
    return result.mappings().all()


def page_limit(limit: int | None, default: int) -> int:
    """Row cap for a listing; None selects ``default``.

    Raises:
        ValidationError: ``limit`` is below 1
    """
    if limit is None:
        return default
    if limit < 1:
        raise ValidationError(f"limit must be positive, got {limit}")
    return limit


# =============================================================================
# Repository Base
# =============================================================================


class Repository:
    """Base class of the social and messaging repositories.

    Args:
        store: Open store handle shared by every repository

    Example:
        >>> social = SocialRepository(store)
        >>> messaging = MessagingRepository(store)
    """

    def __init__(self, store: Store):
        self.store = store


__all__ = [
    "Repository",
    "insert_or_ignore",
    "delete_where",
    "row_exists",
    "fetch_one",
    "fetch_all",
    "page_limit",
]
