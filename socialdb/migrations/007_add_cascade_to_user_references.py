"""Cascade user deletion to posts, likes, comments and follows.

The initial schema declared these user references without ``ON DELETE``
actions, so deleting a user failed while any of their rows existed. SQLite
cannot alter a foreign key in place; each table is rebuilt.
"""

from sqlalchemy.ext.asyncio import AsyncConnection

from socialdb.migrator import recreate_table


def _tables(user_action: str) -> list[tuple[str, str, list[str], list[str]]]:
    return [
        (
            "posts",
            f"""
            CREATE TABLE {{table}} (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                image_url TEXT,
                FOREIGN KEY (user_id) REFERENCES users(id){user_action}
            )
            """,
            ["id", "user_id", "content", "created_at", "updated_at", "image_url"],
            [
                "CREATE INDEX IF NOT EXISTS idx_posts_user_id ON posts(user_id)",
                "CREATE INDEX IF NOT EXISTS idx_posts_created_at ON posts(created_at)",
            ],
        ),
        (
            "likes",
            f"""
            CREATE TABLE {{table}} (
                post_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (post_id, user_id),
                FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id){user_action}
            )
            """,
            ["post_id", "user_id", "created_at"],
            ["CREATE INDEX IF NOT EXISTS idx_likes_post_id ON likes(post_id)"],
        ),
        (
            "comments",
            f"""
            CREATE TABLE {{table}} (
                id TEXT PRIMARY KEY,
                post_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id){user_action}
            )
            """,
            ["id", "post_id", "user_id", "content", "created_at"],
            ["CREATE INDEX IF NOT EXISTS idx_comments_post_id ON comments(post_id)"],
        ),
        (
            "follows",
            f"""
            CREATE TABLE {{table}} (
                follower_id TEXT NOT NULL,
                following_id TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (follower_id, following_id),
                FOREIGN KEY (follower_id) REFERENCES users(id){user_action},
                FOREIGN KEY (following_id) REFERENCES users(id){user_action}
            )
            """,
            ["follower_id", "following_id", "created_at"],
            [
                "CREATE INDEX IF NOT EXISTS idx_follows_follower ON follows(follower_id)",
                "CREATE INDEX IF NOT EXISTS idx_follows_following ON follows(following_id)",
            ],
        ),
    ]


async def upgrade(conn: AsyncConnection) -> None:
    for table, create_sql, columns, indexes in _tables(" ON DELETE CASCADE"):
        await recreate_table(conn, table, create_sql, columns, indexes)


async def downgrade(conn: AsyncConnection) -> None:
    for table, create_sql, columns, indexes in _tables(""):
        await recreate_table(conn, table, create_sql, columns, indexes)
