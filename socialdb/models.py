"""Data models for SocialDB.

This module defines both SQLModel table models (the relational store's
shape, kept in step with the migration units) and Pydantic view models
(the denormalized camelCase records handed to the API layer).

Models are organized into three sections:
1. SQLModel tables for database persistence
2. Pydantic view models returned by the repositories
3. Pure row mappers (``from_row`` classmethods) reshaping query rows into views
"""

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from sqlmodel import Field, SQLModel

from socialdb.utils import parse_datetime, split_ids

Row = Mapping[str, Any]


class ConversationKind(StrEnum):
    """Kinds of conversation."""

    DIRECT = "direct"
    GROUP = "group"


# =============================================================================
# Section 1: SQLModel Tables
# =============================================================================


class UserRow(SQLModel, table=True):
    """Persisted user account.

    Attributes:
        id: User ID (primary key)
        email: Unique login email
        username: Unique handle
        password: Password credential produced by the hasher
        name: Display name ('' when unset)
        bio: Profile bio ('' when unset)
        link: Profile link ('' when unset)
        created_at: ISO8601 UTC creation timestamp
    """

    __tablename__ = "users"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    email: str = Field(unique=True)
    username: str = Field(unique=True)
    password: str
    created_at: Optional[str] = None
    name: str = ""
    bio: str = ""
    link: str = ""


class PostRow(SQLModel, table=True):
    """Persisted post.

    Attributes:
        id: Post ID (primary key)
        user_id: FK to users.id (author, indexed)
        content: Post body
        created_at: ISO8601 UTC creation timestamp (indexed)
        updated_at: ISO8601 UTC update timestamp
        image_url: Blob-store reference of the attached image
    """

    __tablename__ = "posts"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    content: str
    created_at: Optional[str] = Field(default=None, index=True)
    updated_at: Optional[str] = None
    image_url: Optional[str] = None


class LikeRow(SQLModel, table=True):
    """Like edge; existence means "liked"."""

    __tablename__ = "likes"  # type: ignore[assignment]

    post_id: str = Field(primary_key=True, foreign_key="posts.id", ondelete="CASCADE")
    user_id: str = Field(primary_key=True, foreign_key="users.id", ondelete="CASCADE")
    created_at: Optional[str] = None


class CommentRow(SQLModel, table=True):
    """Persisted comment on a post."""

    __tablename__ = "comments"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    post_id: str = Field(foreign_key="posts.id", ondelete="CASCADE", index=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE")
    content: str
    created_at: Optional[str] = None


class FollowRow(SQLModel, table=True):
    """Directed follow edge: follower_id follows following_id."""

    __tablename__ = "follows"  # type: ignore[assignment]

    follower_id: str = Field(primary_key=True, foreign_key="users.id", ondelete="CASCADE")
    following_id: str = Field(primary_key=True, foreign_key="users.id", ondelete="CASCADE")
    created_at: Optional[str] = None


class BookmarkRow(SQLModel, table=True):
    """Bookmark edge between a user and a post."""

    __tablename__ = "bookmarks"  # type: ignore[assignment]

    user_id: str = Field(primary_key=True, foreign_key="users.id", ondelete="CASCADE")
    post_id: str = Field(primary_key=True, foreign_key="posts.id", ondelete="CASCADE")
    created_at: Optional[str] = None


class ConversationRow(SQLModel, table=True):
    """Persisted conversation.

    Attributes:
        id: Conversation ID (primary key)
        type: 'direct' or 'group'
        name: Optional group name
        created_at: ISO8601 UTC creation timestamp
        last_message_at: Timestamp of the newest message (NULL until one exists)
        direct_key: Normalized participant pair of a direct conversation
            (unique when set)
    """

    __tablename__ = "conversations"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    type: str = ConversationKind.DIRECT.value
    name: Optional[str] = None
    created_at: Optional[str] = None
    last_message_at: Optional[str] = None
    direct_key: Optional[str] = None


class ConversationParticipantRow(SQLModel, table=True):
    """Membership edge of a user in a conversation."""

    __tablename__ = "conversation_participants"  # type: ignore[assignment]

    conversation_id: str = Field(
        primary_key=True, foreign_key="conversations.id", ondelete="CASCADE"
    )
    user_id: str = Field(
        primary_key=True, foreign_key="users.id", ondelete="CASCADE", index=True
    )
    joined_at: Optional[str] = None


class MessageRow(SQLModel, table=True):
    """Append-only message; ordering key is created_at."""

    __tablename__ = "messages"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id", ondelete="CASCADE")
    sender_id: str = Field(foreign_key="users.id", ondelete="CASCADE")
    content: str
    created_at: Optional[str] = None


TABLE_NAMES = (
    "users",
    "posts",
    "likes",
    "comments",
    "follows",
    "bookmarks",
    "conversations",
    "conversation_participants",
    "messages",
)


# =============================================================================
# Section 2: Pydantic View Models
# =============================================================================


class _View(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("createdAt", "updatedAt", "lastMessageAt", mode="before", check_fields=False)
    @classmethod
    def _coerce_timestamps(cls, v: Optional[str | datetime]) -> Optional[datetime]:
        return parse_datetime(v)


class UserProfile(_View):
    """Public profile of a user. Never carries the password credential.

    Attributes:
        id: User ID
        email: Login email
        username: Handle
        name: Display name
        bio: Profile bio
        link: Profile link
        createdAt: Account creation timestamp (UTC)
    """

    id: str
    email: str
    username: str
    name: str = ""
    bio: str = ""
    link: str = ""
    createdAt: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Row) -> "UserProfile":
        return cls(
            id=row["id"],
            email=row["email"],
            username=row["username"],
            name=row.get("name") or "",
            bio=row.get("bio") or "",
            link=row.get("link") or "",
            createdAt=row.get("created_at"),
        )


class UserCredential(BaseModel):
    """Login material for the credential collaborator."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    username: str
    password: str

    @classmethod
    def from_row(cls, row: Row) -> "UserCredential":
        return cls(
            id=row["id"],
            email=row["email"],
            username=row["username"],
            password=row["password"],
        )


class UserSummary(_View):
    """Compact user record used in follower listings."""

    id: str
    username: str
    name: str = ""
    bio: str = ""

    @classmethod
    def from_row(cls, row: Row) -> "UserSummary":
        return cls(
            id=row["id"],
            username=row["username"],
            name=row.get("name") or "",
            bio=row.get("bio") or "",
        )


class ConnectedUser(UserSummary):
    """User annotated with their own follower and followee identifiers.

    Attributes:
        email: Present in search results only
        followers: IDs of users following this user
        following: IDs of users this user follows
    """

    email: Optional[str] = None
    followers: list[str] = PydanticField(default_factory=list)
    following: list[str] = PydanticField(default_factory=list)

    @classmethod
    def from_row(cls, row: Row) -> "ConnectedUser":
        return cls(
            id=row["id"],
            username=row["username"],
            name=row.get("name") or "",
            bio=row.get("bio") or "",
            email=row.get("email"),
            followers=split_ids(row.get("followers")),
            following=split_ids(row.get("following")),
        )


class UserStats(BaseModel):
    """Posts authored, followers and followees of a user."""

    posts: int = 0
    followers: int = 0
    following: int = 0

    @classmethod
    def from_row(cls, row: Optional[Row]) -> "UserStats":
        if row is None:
            return cls()
        return cls(
            posts=int(row["posts"] or 0),
            followers=int(row["followers"] or 0),
            following=int(row["following"] or 0),
        )


class Comment(_View):
    """Comment on a post, with the commenter's username."""

    id: str
    postId: str
    userId: str
    username: Optional[str] = None
    content: str
    createdAt: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Row) -> "Comment":
        return cls(
            id=row["id"],
            postId=row["post_id"],
            userId=row["user_id"],
            username=row.get("username"),
            content=row["content"],
            createdAt=row.get("created_at"),
        )


class Post(_View):
    """Plain post record.

    Attributes:
        id: Post ID
        userId: Author ID
        content: Body
        imageUrl: Blob-store reference (None when no image)
        createdAt: Creation timestamp (UTC)
        updatedAt: Last update timestamp (UTC)
    """

    id: str
    userId: str
    content: str
    imageUrl: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Row) -> "Post":
        return cls(
            id=row["id"],
            userId=row["user_id"],
            content=row["content"],
            imageUrl=row.get("image_url"),
            createdAt=row.get("created_at"),
            updatedAt=row.get("updated_at"),
        )


class PostView(Post):
    """Post enriched with author username, liking users and comments."""

    username: str
    likes: list[str] = PydanticField(default_factory=list)
    comments: list[Comment] = PydanticField(default_factory=list)

    @classmethod
    def from_row(cls, row: Row, comments: Optional[list[Comment]] = None) -> "PostView":  # type: ignore[override]
        return cls(
            id=row["id"],
            userId=row["user_id"],
            username=row["username"],
            content=row["content"],
            imageUrl=row.get("image_url"),
            likes=split_ids(row.get("likes")),
            comments=comments or [],
            createdAt=row.get("created_at"),
            updatedAt=row.get("updated_at"),
        )


class Participant(BaseModel):
    """Conversation member."""

    id: str
    username: str
    name: str = ""

    @classmethod
    def from_row(cls, row: Row) -> "Participant":
        return cls(id=row["id"], username=row["username"], name=row.get("name") or "")


class Message(_View):
    """Message with the sender's username."""

    id: str
    conversationId: str
    senderId: str
    senderUsername: Optional[str] = None
    content: str
    createdAt: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Row) -> "Message":
        return cls(
            id=row["id"],
            conversationId=row["conversation_id"],
            senderId=row["sender_id"],
            senderUsername=row.get("sender_username"),
            content=row["content"],
            createdAt=row.get("created_at"),
        )


class Conversation(_View):
    """Conversation with its participants and most recent message."""

    id: str
    type: ConversationKind
    name: Optional[str] = None
    participants: list[Participant] = PydanticField(default_factory=list)
    lastMessage: Optional[Message] = None
    createdAt: Optional[datetime] = None
    lastMessageAt: Optional[datetime] = None

    @classmethod
    def from_row(
        cls,
        row: Row,
        participants: Optional[list[Participant]] = None,
        last_message: Optional[Message] = None,
    ) -> "Conversation":
        return cls(
            id=row["id"],
            type=ConversationKind(row["type"]),
            name=row.get("name"),
            participants=participants or [],
            lastMessage=last_message,
            createdAt=row.get("created_at"),
            lastMessageAt=row.get("last_message_at"),
        )


class DirectConversation(BaseModel):
    """Result of get-or-create for a direct conversation."""

    id: str
    created: bool


__all__ = [
    "ConversationKind",
    "UserRow",
    "PostRow",
    "LikeRow",
    "CommentRow",
    "FollowRow",
    "BookmarkRow",
    "ConversationRow",
    "ConversationParticipantRow",
    "MessageRow",
    "TABLE_NAMES",
    "UserProfile",
    "UserCredential",
    "UserSummary",
    "ConnectedUser",
    "UserStats",
    "Comment",
    "Post",
    "PostView",
    "Participant",
    "Message",
    "Conversation",
    "DirectConversation",
]
