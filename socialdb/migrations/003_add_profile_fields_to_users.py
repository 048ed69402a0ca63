"""Add name, bio and link profile fields to users."""

from sqlalchemy.ext.asyncio import AsyncConnection

from socialdb.migrator import add_column_if_absent, recreate_table

PROFILE_COLUMNS = ("name", "bio", "link")

USERS_WITHOUT_PROFILE = """
    CREATE TABLE {table} (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL,
        username TEXT UNIQUE NOT NULL,
        password TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
"""


async def upgrade(conn: AsyncConnection) -> None:
    for column in PROFILE_COLUMNS:
        await add_column_if_absent(conn, "users", column, "TEXT DEFAULT ''")


async def downgrade(conn: AsyncConnection) -> None:
    await recreate_table(
        conn,
        "users",
        USERS_WITHOUT_PROFILE,
        ["id", "email", "username", "password", "created_at"],
    )
