"""Bookmarks: (user, post) edges."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection


async def upgrade(conn: AsyncConnection) -> None:
    await conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS bookmarks (
                user_id TEXT NOT NULL,
                post_id TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, post_id),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE
            )
            """
        )
    )
    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS idx_bookmarks_user_id ON bookmarks(user_id)")
    )


async def downgrade(conn: AsyncConnection) -> None:
    await conn.execute(text("DROP INDEX IF EXISTS idx_bookmarks_user_id"))
    await conn.execute(text("DROP TABLE IF EXISTS bookmarks"))
