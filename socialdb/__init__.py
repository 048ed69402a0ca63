"""SocialDB - relational data-access layer for a social-networking application.

This package provides the SQLite store, schema migrations and the query layer
behind users, posts, likes, comments, follows, bookmarks and messaging.

Example:
    >>> from socialdb import MigrationRunner, SocialRepository, Store
    >>> import asyncio
    >>>
    >>> async def main():
    ...     async with Store() as store:
    ...         await MigrationRunner(store).migrate()
    ...         social = SocialRepository(store)
    ...         print(await social.get_feed_posts("u-1"))
    >>>
    >>> asyncio.run(main())
"""

from socialdb.config import settings
from socialdb.database import Store
from socialdb.errors import (
    ConstraintViolation,
    MigrationError,
    NotFoundError,
    PermissionDenied,
    SocialDBError,
    StoreUnavailable,
    TransactionFailure,
    ValidationError,
)
from socialdb.messaging import MessagingRepository
from socialdb.migrator import MigrationRunner, MigrationStatus
from socialdb.models import (
    Comment,
    ConnectedUser,
    Conversation,
    ConversationKind,
    DirectConversation,
    Message,
    Participant,
    Post,
    PostView,
    UserProfile,
    UserStats,
    UserSummary,
)
from socialdb.service import SocialService
from socialdb.social import SocialRepository

__version__ = "0.1.0"

__all__ = [
    # Main components
    "Store",
    "MigrationRunner",
    "SocialRepository",
    "MessagingRepository",
    "SocialService",
    # Configuration
    "settings",
    # Errors
    "SocialDBError",
    "ConstraintViolation",
    "TransactionFailure",
    "StoreUnavailable",
    "MigrationError",
    "NotFoundError",
    "ValidationError",
    "PermissionDenied",
    # View models
    "MigrationStatus",
    "UserProfile",
    "UserSummary",
    "ConnectedUser",
    "UserStats",
    "Post",
    "PostView",
    "Comment",
    "Conversation",
    "ConversationKind",
    "DirectConversation",
    "Participant",
    "Message",
]
