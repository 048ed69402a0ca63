"""Messaging: conversations, participants and messages."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        type TEXT DEFAULT 'direct' CHECK (type IN ('direct', 'group')),
        name TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        last_message_at DATETIME
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_participants (
        conversation_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        joined_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (conversation_id, user_id),
        FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        sender_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE,
        FOREIGN KEY (sender_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_conversation_created
    ON messages(conversation_id, created_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_conversation_participants_user
    ON conversation_participants(user_id)
    """,
]


async def upgrade(conn: AsyncConnection) -> None:
    for statement in STATEMENTS:
        await conn.execute(text(statement))


async def downgrade(conn: AsyncConnection) -> None:
    await conn.execute(text("DROP INDEX IF EXISTS idx_conversation_participants_user"))
    await conn.execute(text("DROP INDEX IF EXISTS idx_messages_conversation_created"))
    await conn.execute(text("DROP TABLE IF EXISTS messages"))
    await conn.execute(text("DROP TABLE IF EXISTS conversation_participants"))
    await conn.execute(text("DROP TABLE IF EXISTS conversations"))
