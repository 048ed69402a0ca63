"""Add the optional image reference to posts."""

from sqlalchemy.ext.asyncio import AsyncConnection

from socialdb.migrator import add_column_if_absent, recreate_table

POSTS_WITHOUT_IMAGE = """
    CREATE TABLE {table} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )
"""


async def upgrade(conn: AsyncConnection) -> None:
    await add_column_if_absent(conn, "posts", "image_url", "TEXT")


async def downgrade(conn: AsyncConnection) -> None:
    await recreate_table(
        conn,
        "posts",
        POSTS_WITHOUT_IMAGE,
        ["id", "user_id", "content", "created_at", "updated_at"],
        indexes=[
            "CREATE INDEX IF NOT EXISTS idx_posts_user_id ON posts(user_id)",
            "CREATE INDEX IF NOT EXISTS idx_posts_created_at ON posts(created_at)",
        ],
    )
