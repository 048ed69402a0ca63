"""Social graph and content repository.

Read and write operations over users, posts, likes, comments, follows and
bookmarks. Composite reads assemble denormalized view models:

- Post views carry the author's username, the deduplicated identifiers of
  liking users and the post's comments, oldest first.
- User listings can carry each user's own follower and followee identifiers.

Aggregated identifier lists are derived per query from the edge tables and
are always lists (``[]`` when empty).

Example:
    >>> from socialdb.social import SocialRepository
    >>>
    >>> social = SocialRepository(store)
    >>> user = await social.create_user(
    ...     {"email": "a@example.com", "username": "alice", "password": "<hash>"}
    ... )
    >>> post = await social.create_post({"user_id": user.id, "content": "hello"})
    >>> feed = await social.get_feed_posts(user.id)
"""

import random
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import bindparam, insert, select, text, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection

from socialdb.config import settings
from socialdb.database import Store
from socialdb.logging import logger
from socialdb.metrics import track_operation
from socialdb.models import (
    BookmarkRow,
    Comment,
    CommentRow,
    ConnectedUser,
    FollowRow,
    LikeRow,
    Post,
    PostRow,
    PostView,
    UserCredential,
    UserProfile,
    UserRow,
    UserStats,
    UserSummary,
)
from socialdb.repository import (
    Repository,
    delete_where,
    fetch_all,
    fetch_one,
    insert_or_ignore,
    page_limit,
    row_exists,
)
from socialdb.types import NewComment, NewPost, NewUser, ProfileUpdate
from socialdb.utils import escape_like, new_id, utc_now_iso

# =============================================================================
# Queries
# =============================================================================

POST_VIEW_SELECT = """
    SELECT p.id, p.user_id, p.content, p.image_url, p.created_at, p.updated_at,
           u.username,
           GROUP_CONCAT(DISTINCT l.user_id) AS likes
    FROM posts p
    JOIN users u ON u.id = p.user_id
    LEFT JOIN likes l ON l.post_id = p.id
"""

NEWEST_FIRST = "ORDER BY p.created_at DESC, p.rowid DESC"

FEED_POSTS = text(
    POST_VIEW_SELECT
    + """
    WHERE p.user_id = :user_id
       OR p.user_id IN (SELECT following_id FROM follows WHERE follower_id = :user_id)
    GROUP BY p.id
    """
    + NEWEST_FIRST
    + " LIMIT :limit"
)

USER_POSTS = text(
    POST_VIEW_SELECT + " WHERE p.user_id = :user_id GROUP BY p.id " + NEWEST_FIRST
)

BOOKMARKED_POSTS = text(
    POST_VIEW_SELECT
    + """
    JOIN bookmarks b ON b.post_id = p.id
    WHERE b.user_id = :user_id
    GROUP BY p.id
    ORDER BY b.created_at DESC, b.rowid DESC
    """
)

POSTS_BY_ID = text(
    POST_VIEW_SELECT + " WHERE p.id IN :post_ids GROUP BY p.id"
).bindparams(bindparam("post_ids", expanding=True))

EXPLORE_CANDIDATES = text(
    """
    SELECT p.id
    FROM posts p
    WHERE p.user_id != :user_id
      AND p.user_id NOT IN (SELECT following_id FROM follows WHERE follower_id = :user_id)
    ORDER BY p.rowid
    """
)

COMMENT_SELECT = """
    SELECT c.id, c.post_id, c.user_id, c.content, c.created_at, u.username
    FROM comments c
    JOIN users u ON u.id = c.user_id
"""

OLDEST_FIRST = "ORDER BY c.created_at ASC, c.rowid ASC"

COMMENTS_FOR_POSTS = text(
    COMMENT_SELECT + " WHERE c.post_id IN :post_ids " + OLDEST_FIRST
).bindparams(bindparam("post_ids", expanding=True))

POST_COMMENTS = text(COMMENT_SELECT + " WHERE c.post_id = :post_id " + OLDEST_FIRST)

COMMENT_BY_ID = text(COMMENT_SELECT + " WHERE c.id = :comment_id")

USER_STATS = text(
    """
    SELECT
        (SELECT COUNT(*) FROM posts WHERE user_id = :user_id) AS posts,
        (SELECT COUNT(*) FROM follows WHERE following_id = :user_id) AS followers,
        (SELECT COUNT(*) FROM follows WHERE follower_id = :user_id) AS following
    """
)

SEARCH_USERS = text(
    """
    SELECT u.id, u.username, u.email, u.name, u.bio,
           GROUP_CONCAT(DISTINCT fr.follower_id) AS followers,
           GROUP_CONCAT(DISTINCT fg.following_id) AS following
    FROM users u
    LEFT JOIN follows fr ON fr.following_id = u.id
    LEFT JOIN follows fg ON fg.follower_id = u.id
    WHERE u.username LIKE :pattern ESCAPE '\\'
      AND u.id != :user_id
    GROUP BY u.id
    ORDER BY u.username
    LIMIT :limit
    """
)

# {edge} is the column naming the listed users, {anchor} the column matching :user_id
CONNECTIONS = """
    SELECT u.id, u.username, u.name, u.bio
    FROM follows f
    JOIN users u ON u.id = f.{edge}
    WHERE f.{anchor} = :user_id
    ORDER BY f.created_at DESC, f.rowid DESC
"""

CONNECTIONS_WITH_DETAILS = """
    SELECT u.id, u.username, u.name, u.bio,
           GROUP_CONCAT(DISTINCT fr.follower_id) AS followers,
           GROUP_CONCAT(DISTINCT fg.following_id) AS following
    FROM follows f
    JOIN users u ON u.id = f.{edge}
    LEFT JOIN follows fr ON fr.following_id = u.id
    LEFT JOIN follows fg ON fg.follower_id = u.id
    WHERE f.{anchor} = :user_id
    GROUP BY u.id
    ORDER BY f.created_at DESC, f.rowid DESC
"""

FOLLOWERS = text(CONNECTIONS.format(edge="follower_id", anchor="following_id"))
FOLLOWING = text(CONNECTIONS.format(edge="following_id", anchor="follower_id"))
FOLLOWERS_WITH_DETAILS = text(
    CONNECTIONS_WITH_DETAILS.format(edge="follower_id", anchor="following_id")
)
FOLLOWING_WITH_DETAILS = text(
    CONNECTIONS_WITH_DETAILS.format(edge="following_id", anchor="follower_id")
)


# =============================================================================
# Assembly Helpers
# =============================================================================


async def _comments_by_post(
    conn: AsyncConnection, post_ids: Sequence[str]
) -> dict[str, list[Comment]]:
    """Fetch comments of several posts in one query, grouped per post."""
    grouped: dict[str, list[Comment]] = defaultdict(list)
    if not post_ids:
        return grouped
    for row in await fetch_all(conn, COMMENTS_FOR_POSTS, {"post_ids": list(post_ids)}):
        grouped[row["post_id"]].append(Comment.from_row(row))
    return grouped


async def _assemble(conn: AsyncConnection, rows: Sequence[RowMapping]) -> list[PostView]:
    comments = await _comments_by_post(conn, [row["id"] for row in rows])
    return [PostView.from_row(row, comments.get(row["id"], [])) for row in rows]


async def _post_views(
    conn: AsyncConnection, statement: Any, params: Mapping[str, Any]
) -> list[PostView]:
    return await _assemble(conn, await fetch_all(conn, statement, params))


# =============================================================================
# Social Repository
# =============================================================================


class SocialRepository(Repository):
    """Users, posts, likes, comments, follows and bookmarks.

    Args:
        store: Open store handle
        rng: Random source of the explore sampler (an unseeded
            ``random.Random`` when omitted; tests pass a seeded one)
    """

    def __init__(self, store: Store, rng: random.Random | None = None):
        super().__init__(store)
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def _user_where(self, column: str, value: str) -> UserProfile | None:
        table = UserRow.__table__  # type: ignore[attr-defined]
        async with self.store.transaction() as conn:
            row = await fetch_one(conn, select(table).where(table.c[column] == value))
        return UserProfile.from_row(row) if row else None

    @track_operation("get_user_by_email")
    async def get_user_by_email(self, email: str) -> UserProfile | None:
        """Look up a user by email; None when absent."""
        return await self._user_where("email", email)

    @track_operation("get_user_by_username")
    async def get_user_by_username(self, username: str) -> UserProfile | None:
        """Look up a user by username; None when absent."""
        return await self._user_where("username", username)

    @track_operation("get_user_by_id")
    async def get_user_by_id(self, user_id: str) -> UserProfile | None:
        return await self._user_where("id", user_id)

    @track_operation("get_credential_by_email")
    async def get_credential_by_email(self, email: str) -> UserCredential | None:
        """Login material for ``email``. The only read exposing the password credential."""
        table = UserRow.__table__  # type: ignore[attr-defined]
        async with self.store.transaction() as conn:
            row = await fetch_one(conn, select(table).where(table.c.email == email))
        return UserCredential.from_row(row) if row else None

    @track_operation("create_user")
    async def create_user(self, user: NewUser) -> UserProfile:
        """Insert a new user.

        Args:
            user: Email, username and password credential, plus optional
                id and profile fields

        Returns:
            Public profile of the created user

        Raises:
            ConstraintViolation: Email or username already taken
        """
        values = {
            "id": user.get("id") or new_id(),
            "email": user["email"],
            "username": user["username"],
            "password": user["password"],
            "name": user.get("name") or "",
            "bio": user.get("bio") or "",
            "link": user.get("link") or "",
            "created_at": utc_now_iso(),
        }
        async with self.store.transaction() as conn:
            await conn.execute(insert(UserRow.__table__).values(**values))  # type: ignore[attr-defined]
        logger.debug(f"Created user {values['id']} ({values['username']})")
        return UserProfile.from_row(values)

    @track_operation("delete_user")
    async def delete_user(self, user_id: str) -> bool:
        """Delete a user; posts, edges and memberships cascade."""
        async with self.store.transaction() as conn:
            deleted = await delete_where(conn, UserRow, id=user_id)
        logger.debug(f"Deleted user {user_id}: {bool(deleted)}")
        return deleted > 0

    @track_operation("search_users")
    async def search_users(
        self, query: str, excluding_user_id: str, limit: int | None = None
    ) -> list[ConnectedUser]:
        """Case-insensitive substring search on username.

        Args:
            query: Literal substring (LIKE wildcards are escaped)
            excluding_user_id: User left out of the results (the caller)
            limit: Maximum matches (defaults to settings.search_limit)

        Returns:
            Matching users with email and follower/followee identifiers

        Raises:
            ValidationError: ``limit`` is below 1
        """
        params = {
            "pattern": f"%{escape_like(query)}%",
            "user_id": excluding_user_id,
            "limit": page_limit(limit, settings.search_limit),
        }
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, SEARCH_USERS, params)
        return [ConnectedUser.from_row(row) for row in rows]

    @track_operation("get_user_stats")
    async def get_user_stats(self, user_id: str) -> UserStats:
        """Posts authored, followers and followees of a user."""
        async with self.store.transaction() as conn:
            row = await fetch_one(conn, USER_STATS, {"user_id": user_id})
        return UserStats.from_row(row)

    @track_operation("update_user_profile")
    async def update_user_profile(
        self, user_id: str, profile: ProfileUpdate
    ) -> UserProfile | None:
        """Overwrite username, name, bio and link.

        Missing or None optional fields are stored as ''.

        Returns:
            Refreshed profile, or None if the user does not exist

        Raises:
            ConstraintViolation: Username taken by another user
        """
        table = UserRow.__table__  # type: ignore[attr-defined]
        values = {
            "username": profile["username"],
            "name": profile.get("name") or "",
            "bio": profile.get("bio") or "",
            "link": profile.get("link") or "",
        }
        async with self.store.transaction() as conn:
            result = await conn.execute(update(table).where(table.c.id == user_id).values(**values))
            if result.rowcount == 0:
                return None
            row = await fetch_one(conn, select(table).where(table.c.id == user_id))
        logger.debug(f"Updated profile of {user_id}")
        return UserProfile.from_row(row) if row else None

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    @track_operation("get_feed_posts")
    async def get_feed_posts(self, user_id: str, limit: int | None = None) -> list[PostView]:
        """Newest posts by the user and everyone they follow."""
        params = {"user_id": user_id, "limit": page_limit(limit, settings.feed_limit)}
        async with self.store.transaction() as conn:
            return await _post_views(conn, FEED_POSTS, params)

    @track_operation("get_explore_posts")
    async def get_explore_posts(self, user_id: str, limit: int | None = None) -> list[PostView]:
        """Random posts by users the caller neither is nor follows.

        Candidates are sampled with ``self.rng``, so the order differs
        between calls unless the repository was given a seeded generator.
        """
        limit = page_limit(limit, settings.explore_limit)
        async with self.store.transaction() as conn:
            result = await conn.execute(EXPLORE_CANDIDATES, {"user_id": user_id})
            candidates = list(result.scalars())
            chosen = self.rng.sample(candidates, min(limit, len(candidates)))
            if not chosen:
                return []
            views = await _post_views(conn, POSTS_BY_ID, {"post_ids": chosen})
        by_id = {view.id: view for view in views}
        return [by_id[post_id] for post_id in chosen if post_id in by_id]

    @track_operation("get_user_posts")
    async def get_user_posts(self, user_id: str) -> list[PostView]:
        """Every post by one author, newest first."""
        async with self.store.transaction() as conn:
            return await _post_views(conn, USER_POSTS, {"user_id": user_id})

    @track_operation("get_bookmarked_posts")
    async def get_bookmarked_posts(self, user_id: str) -> list[PostView]:
        """Posts the user bookmarked, most recently bookmarked first."""
        async with self.store.transaction() as conn:
            return await _post_views(conn, BOOKMARKED_POSTS, {"user_id": user_id})

    @track_operation("get_post")
    async def get_post(self, post_id: str) -> Post | None:
        table = PostRow.__table__  # type: ignore[attr-defined]
        async with self.store.transaction() as conn:
            row = await fetch_one(conn, select(table).where(table.c.id == post_id))
        return Post.from_row(row) if row else None

    @track_operation("get_post_view")
    async def get_post_view(self, post_id: str) -> PostView | None:
        """Single post with the same enrichment as the feed."""
        async with self.store.transaction() as conn:
            views = await _post_views(conn, POSTS_BY_ID, {"post_ids": [post_id]})
        return views[0] if views else None

    @track_operation("create_post")
    async def create_post(self, post: NewPost) -> Post:
        """Insert a post with server-assigned timestamps.

        Raises:
            ConstraintViolation: The author does not exist
        """
        now = utc_now_iso()
        values = {
            "id": post.get("id") or new_id(),
            "user_id": post["user_id"],
            "content": post["content"],
            "image_url": post.get("image_url"),
            "created_at": now,
            "updated_at": now,
        }
        async with self.store.transaction() as conn:
            await conn.execute(insert(PostRow.__table__).values(**values))  # type: ignore[attr-defined]
        logger.debug(f"Created post {values['id']} by {values['user_id']}")
        return Post.from_row(values)

    @track_operation("delete_post")
    async def delete_post(self, post_id: str) -> bool:
        """Delete a post; its likes, comments and bookmarks cascade."""
        async with self.store.transaction() as conn:
            deleted = await delete_where(conn, PostRow, id=post_id)
        logger.debug(f"Deleted post {post_id}: {bool(deleted)}")
        return deleted > 0

    # ------------------------------------------------------------------
    # Likes
    # ------------------------------------------------------------------

    @track_operation("is_post_liked")
    async def is_post_liked(self, post_id: str, user_id: str) -> bool:
        async with self.store.transaction() as conn:
            return await row_exists(conn, LikeRow, post_id=post_id, user_id=user_id)

    @track_operation("like_post")
    async def like_post(self, post_id: str, user_id: str) -> bool:
        """Like a post. Liking twice has no further effect.

        Returns:
            True if the like was new
        """
        async with self.store.transaction() as conn:
            return await insert_or_ignore(
                conn, LikeRow, post_id=post_id, user_id=user_id, created_at=utc_now_iso()
            )

    @track_operation("unlike_post")
    async def unlike_post(self, post_id: str, user_id: str) -> bool:
        """Remove a like; a no-op when the post was not liked."""
        async with self.store.transaction() as conn:
            return await delete_where(conn, LikeRow, post_id=post_id, user_id=user_id) > 0

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    @track_operation("is_post_bookmarked")
    async def is_post_bookmarked(self, post_id: str, user_id: str) -> bool:
        async with self.store.transaction() as conn:
            return await row_exists(conn, BookmarkRow, post_id=post_id, user_id=user_id)

    @track_operation("bookmark_post")
    async def bookmark_post(self, post_id: str, user_id: str) -> bool:
        async with self.store.transaction() as conn:
            return await insert_or_ignore(
                conn, BookmarkRow, user_id=user_id, post_id=post_id, created_at=utc_now_iso()
            )

    @track_operation("unbookmark_post")
    async def unbookmark_post(self, post_id: str, user_id: str) -> bool:
        async with self.store.transaction() as conn:
            return await delete_where(conn, BookmarkRow, post_id=post_id, user_id=user_id) > 0

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    @track_operation("get_post_comments")
    async def get_post_comments(self, post_id: str) -> list[Comment]:
        """Comments of a post, oldest first."""
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, POST_COMMENTS, {"post_id": post_id})
        return [Comment.from_row(row) for row in rows]

    @track_operation("add_comment")
    async def add_comment(self, comment: NewComment) -> Comment:
        """Insert a comment with a server timestamp.

        Returns:
            The stored comment with the commenter's username

        Raises:
            ConstraintViolation: The post or the user does not exist
        """
        values = {
            "id": comment.get("id") or new_id(),
            "post_id": comment["post_id"],
            "user_id": comment["user_id"],
            "content": comment["content"],
            "created_at": utc_now_iso(),
        }
        async with self.store.transaction() as conn:
            await conn.execute(insert(CommentRow.__table__).values(**values))  # type: ignore[attr-defined]
            row = await fetch_one(conn, COMMENT_BY_ID, {"comment_id": values["id"]})
        logger.debug(f"Added comment {values['id']} on {values['post_id']}")
        return Comment.from_row(row if row else values)

    # ------------------------------------------------------------------
    # Follows
    # ------------------------------------------------------------------

    @track_operation("is_following")
    async def is_following(self, follower_id: str, following_id: str) -> bool:
        async with self.store.transaction() as conn:
            return await row_exists(
                conn, FollowRow, follower_id=follower_id, following_id=following_id
            )

    @track_operation("follow_user")
    async def follow_user(self, follower_id: str, following_id: str) -> bool:
        """Add the edge follower -> following. Self-follow is refused by the service layer."""
        async with self.store.transaction() as conn:
            return await insert_or_ignore(
                conn,
                FollowRow,
                follower_id=follower_id,
                following_id=following_id,
                created_at=utc_now_iso(),
            )

    @track_operation("unfollow_user")
    async def unfollow_user(self, follower_id: str, following_id: str) -> bool:
        async with self.store.transaction() as conn:
            removed = await delete_where(
                conn, FollowRow, follower_id=follower_id, following_id=following_id
            )
        return removed > 0

    @track_operation("get_followers")
    async def get_followers(self, user_id: str) -> list[UserSummary]:
        """Users who follow ``user_id``, most recent first."""
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, FOLLOWERS, {"user_id": user_id})
        return [UserSummary.from_row(row) for row in rows]

    @track_operation("get_following")
    async def get_following(self, user_id: str) -> list[UserSummary]:
        """Users ``user_id`` follows, most recent first."""
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, FOLLOWING, {"user_id": user_id})
        return [UserSummary.from_row(row) for row in rows]

    @track_operation("get_followers_with_details")
    async def get_followers_with_details(self, user_id: str) -> list[ConnectedUser]:
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, FOLLOWERS_WITH_DETAILS, {"user_id": user_id})
        return [ConnectedUser.from_row(row) for row in rows]

    @track_operation("get_following_with_details")
    async def get_following_with_details(self, user_id: str) -> list[ConnectedUser]:
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, FOLLOWING_WITH_DETAILS, {"user_id": user_id})
        return [ConnectedUser.from_row(row) for row in rows]


__all__ = ["SocialRepository"]
