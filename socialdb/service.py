"""Request-level service layer for SocialDB.

Expresses what the HTTP layer guarantees on top of the repositories:

- Input validation (required fields, non-blank content)
- Authorization (only authors delete posts, only participants read or
  write a conversation, nobody follows themselves)
- Credential handling through the injected hasher and token service
- Image uploads through the injected blob store (only the reference is stored)

Failures are typed: ``ValidationError`` and ``PermissionDenied`` are client
errors, ``NotFoundError`` marks a missing addressed entity, everything else
comes from the store.

Example:
    >>> service = SocialService(store, hasher, tokens, blobs)
    >>> auth = await service.signup("a@example.com", "secret", "alice")
    >>> caller = await service.authenticate(auth.token)
    >>> post = await service.create_post(caller, "hello")
"""

import functools
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from socialdb.database import Store
from socialdb.errors import NotFoundError, PermissionDenied, ValidationError
from socialdb.interfaces import IBlobStore, IPasswordHasher, ITokenService
from socialdb.logging import logger, request_context, set_request_context
from socialdb.messaging import MessagingRepository
from socialdb.models import (
    Comment,
    ConnectedUser,
    DirectConversation,
    Message,
    PostView,
    UserProfile,
)
from socialdb.social import SocialRepository
from socialdb.types import Caller, TokenClaims


class AuthResult(BaseModel):
    """Token plus public profile returned by signup and login."""

    token: str
    user: UserProfile


def _require(value: str | None, message: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(message)
    return value


F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _scoped(func: F) -> F:
    """Drop the request context a service call set once it returns."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        with request_context():
            return await func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


class SocialService:
    """Validation and authorization over the social and messaging repositories.

    Args:
        store: Open store handle
        hasher: Password hashing collaborator
        tokens: Token issuing/verifying collaborator
        blobs: Image store (uploads are refused when omitted)
        rng: Random source for explore (tests pass a seeded one)
    """

    def __init__(
        self,
        store: Store,
        hasher: IPasswordHasher,
        tokens: ITokenService,
        blobs: IBlobStore | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.blobs = blobs
        self.social = SocialRepository(store, rng=rng)
        self.messaging = MessagingRepository(store)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _issue(self, user: UserProfile) -> AuthResult:
        claims: TokenClaims = {"id": user.id, "email": user.email, "username": user.username}
        return AuthResult(token=self.tokens.issue(claims), user=user)

    @_scoped
    async def signup(self, email: str, password: str, username: str) -> AuthResult:
        """Register a user and issue a token.

        Raises:
            ValidationError: Missing field, email registered or username taken
        """
        set_request_context(operation="signup")
        if not (email and password and username):
            raise ValidationError("All fields are required")
        if await self.social.get_user_by_email(email):
            raise ValidationError("Email already registered")
        if await self.social.get_user_by_username(username):
            raise ValidationError("Username already taken")

        user = await self.social.create_user(
            {"email": email, "username": username, "password": self.hasher.hash(password)}
        )
        logger.info(f"New user {user.id} signed up")
        return self._issue(user)

    @_scoped
    async def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and issue a token.

        Raises:
            ValidationError: Missing email or password
            PermissionDenied: Unknown email or wrong password
        """
        set_request_context(operation="login")
        if not (email and password):
            raise ValidationError("Email and password are required")

        credential = await self.social.get_credential_by_email(email)
        if credential is None or not self.hasher.verify(password, credential.password):
            raise PermissionDenied("Invalid credentials")

        user = await self.social.get_user_by_id(credential.id)
        if user is None:
            raise PermissionDenied("Invalid credentials")
        return self._issue(user)

    @_scoped
    async def authenticate(self, token: str | None) -> Caller:
        """Resolve a bearer token to the caller identity.

        Raises:
            PermissionDenied: Missing or invalid token
        """
        if not token:
            raise PermissionDenied("Access token required")
        claims = self.tokens.verify(token)
        if claims is None:
            raise PermissionDenied("Invalid token")
        set_request_context(user_id=claims["id"])
        return {"id": claims["id"], "username": claims["username"]}

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    @_scoped
    async def create_post(
        self,
        caller: Caller,
        content: str,
        image: bytes | None = None,
        filename: str = "upload",
    ) -> PostView:
        """Publish a post, storing ``image`` in the blob store if given.

        Raises:
            ValidationError: Blank content, or an image without a blob store
        """
        set_request_context(user_id=caller["id"], operation="create_post")
        _require(content, "Post content is required")

        image_url = None
        if image is not None:
            if self.blobs is None:
                raise ValidationError("Image uploads are not enabled")
            image_url = await self.blobs.save(image, filename)

        post = await self.social.create_post(
            {"user_id": caller["id"], "content": content, "image_url": image_url}
        )
        return PostView(
            id=post.id,
            userId=post.userId,
            username=caller["username"],
            content=post.content,
            imageUrl=post.imageUrl,
            createdAt=post.createdAt,
            updatedAt=post.updatedAt,
        )

    @_scoped
    async def delete_post(self, caller: Caller, post_id: str) -> None:
        """Delete one of the caller's own posts.

        Raises:
            NotFoundError: No such post
            PermissionDenied: The caller is not the author
        """
        set_request_context(user_id=caller["id"], operation="delete_post")
        post = await self.social.get_post(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        if post.userId != caller["id"]:
            raise PermissionDenied("Not authorized")
        await self.social.delete_post(post_id)

    async def _require_post(self, post_id: str) -> None:
        if await self.social.get_post(post_id) is None:
            raise NotFoundError("Post not found")

    @_scoped
    async def toggle_like(self, caller: Caller, post_id: str) -> bool:
        """Like or unlike a post; returns whether it is now liked."""
        set_request_context(user_id=caller["id"], operation="toggle_like")
        await self._require_post(post_id)
        if await self.social.is_post_liked(post_id, caller["id"]):
            await self.social.unlike_post(post_id, caller["id"])
            return False
        await self.social.like_post(post_id, caller["id"])
        return True

    @_scoped
    async def toggle_bookmark(self, caller: Caller, post_id: str) -> bool:
        """Bookmark or unbookmark a post; returns whether it is now bookmarked."""
        set_request_context(user_id=caller["id"], operation="toggle_bookmark")
        await self._require_post(post_id)
        if await self.social.is_post_bookmarked(post_id, caller["id"]):
            await self.social.unbookmark_post(post_id, caller["id"])
            return False
        await self.social.bookmark_post(post_id, caller["id"])
        return True

    @_scoped
    async def add_comment(self, caller: Caller, post_id: str, content: str) -> Comment:
        set_request_context(user_id=caller["id"], operation="add_comment")
        _require(content, "Comment content is required")
        await self._require_post(post_id)
        return await self.social.add_comment(
            {"post_id": post_id, "user_id": caller["id"], "content": content}
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_scoped
    async def toggle_follow(self, caller: Caller, user_id: str) -> bool:
        """Follow or unfollow a user; returns whether the caller now follows them.

        Raises:
            ValidationError: Attempt to follow oneself
            NotFoundError: No such user
        """
        set_request_context(user_id=caller["id"], operation="toggle_follow")
        if user_id == caller["id"]:
            raise ValidationError("Cannot follow yourself")
        if await self.social.get_user_by_id(user_id) is None:
            raise NotFoundError("User not found")
        if await self.social.is_following(caller["id"], user_id):
            await self.social.unfollow_user(caller["id"], user_id)
            return False
        await self.social.follow_user(caller["id"], user_id)
        return True

    @_scoped
    async def search_users(self, caller: Caller, query: str | None) -> list[ConnectedUser]:
        set_request_context(user_id=caller["id"], operation="search_users")
        if not query or not query.strip():
            return []
        return await self.social.search_users(query.strip(), caller["id"])

    @_scoped
    async def update_profile(
        self,
        caller: Caller,
        username: str,
        name: str | None = None,
        bio: str | None = None,
        link: str | None = None,
    ) -> UserProfile:
        """Overwrite the caller's profile.

        Raises:
            ValidationError: Blank username or username taken by someone else
        """
        set_request_context(user_id=caller["id"], operation="update_profile")
        _require(username, "Username is required")
        existing = await self.social.get_user_by_username(username)
        if existing is not None and existing.id != caller["id"]:
            raise ValidationError("Username already taken")

        profile = await self.social.update_user_profile(
            caller["id"], {"username": username, "name": name, "bio": bio, "link": link}
        )
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    @_scoped
    async def start_direct_conversation(
        self, caller: Caller, other_user_id: str
    ) -> DirectConversation:
        """Get or create the caller's direct conversation with another user.

        Raises:
            ValidationError: ``other_user_id`` is the caller
            NotFoundError: No such user
        """
        set_request_context(user_id=caller["id"], operation="start_direct_conversation")
        if other_user_id == caller["id"]:
            raise ValidationError("Cannot start a conversation with yourself")
        if await self.social.get_user_by_id(other_user_id) is None:
            raise NotFoundError("User not found")
        return await self.messaging.get_or_create_direct_conversation(caller["id"], other_user_id)

    async def _require_participant(self, caller: Caller, conversation_id: str) -> None:
        if not await self.messaging.is_participant(conversation_id, caller["id"]):
            raise PermissionDenied("Not a participant of this conversation")

    @_scoped
    async def send_message(self, caller: Caller, conversation_id: str, content: str) -> Message:
        """Send a message to a conversation the caller belongs to.

        Raises:
            ValidationError: Blank content
            PermissionDenied: The caller is not a participant
        """
        set_request_context(user_id=caller["id"], operation="send_message")
        _require(content, "Message content is required")
        await self._require_participant(caller, conversation_id)
        return await self.messaging.create_message(
            {"conversation_id": conversation_id, "sender_id": caller["id"], "content": content}
        )

    @_scoped
    async def list_messages(
        self,
        caller: Caller,
        conversation_id: str,
        limit: int | None = None,
        before: str | datetime | None = None,
    ) -> list[Message]:
        set_request_context(user_id=caller["id"], operation="list_messages")
        await self._require_participant(caller, conversation_id)
        return await self.messaging.get_conversation_messages(
            conversation_id, limit=limit, before=before
        )


__all__ = ["AuthResult", "SocialService"]
