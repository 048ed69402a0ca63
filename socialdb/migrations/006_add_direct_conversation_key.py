"""Unique key for direct conversations.

Adds ``conversations.direct_key`` (the sorted participant pair, ``a:b``) and a
partial unique index over it, so two concurrent get-or-create calls for the
same pair cannot both commit a conversation. Existing direct conversations
are backfilled; when a pair already has several, only the earliest is keyed.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from socialdb.logging import logger
from socialdb.migrator import add_column_if_absent, recreate_table
from socialdb.utils import direct_key

CONVERSATIONS_WITHOUT_KEY = """
    CREATE TABLE {table} (
        id TEXT PRIMARY KEY,
        type TEXT DEFAULT 'direct' CHECK (type IN ('direct', 'group')),
        name TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        last_message_at DATETIME
    )
"""


async def upgrade(conn: AsyncConnection) -> None:
    await add_column_if_absent(conn, "conversations", "direct_key", "TEXT")

    result = await conn.execute(
        text(
            """
            SELECT c.id, GROUP_CONCAT(cp.user_id) AS participants
            FROM conversations c
            JOIN conversation_participants cp ON cp.conversation_id = c.id
            WHERE c.type = 'direct' AND c.direct_key IS NULL
            GROUP BY c.id
            HAVING COUNT(cp.user_id) = 2
            ORDER BY c.created_at ASC, c.rowid ASC
            """
        )
    )
    rows = result.fetchall()

    existing = await conn.execute(
        text("SELECT direct_key FROM conversations WHERE direct_key IS NOT NULL")
    )
    taken = {row.direct_key for row in existing}

    keyed = 0
    for row in rows:
        first, second = row.participants.split(",")
        key = direct_key(first, second)
        if key in taken:
            logger.warning(f"Duplicate direct conversation {row.id} for pair {key} left unkeyed")
            continue
        taken.add(key)
        await conn.execute(
            text("UPDATE conversations SET direct_key = :key WHERE id = :id"),
            {"key": key, "id": row.id},
        )
        keyed += 1

    await conn.execute(
        text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_conversations_direct_key
            ON conversations(direct_key) WHERE direct_key IS NOT NULL
            """
        )
    )
    logger.info(f"Keyed {keyed} existing direct conversation(s)")


async def downgrade(conn: AsyncConnection) -> None:
    await conn.execute(text("DROP INDEX IF EXISTS idx_conversations_direct_key"))
    await recreate_table(
        conn,
        "conversations",
        CONVERSATIONS_WITHOUT_KEY,
        ["id", "type", "name", "created_at", "last_message_at"],
    )
