"""Type definitions for SocialDB.

TypedDict shapes of command inputs accepted by the repositories and the
service layer.

Reference:
    - PEP 589 TypedDict: https://peps.python.org/pep-0589/

Example:
    >>> from socialdb.types import NewPost
    >>> post: NewPost = {"user_id": "u-1", "content": "hello"}
"""

from typing import NotRequired, Required, TypedDict


# =============================================================================
# Caller Identity
# =============================================================================


class Caller(TypedDict):
    """Authenticated identity attached to each request.

    Attributes:
        id: User ID
        username: Handle at token issue time
    """

    id: str
    username: str


class TokenClaims(TypedDict, total=False):
    """Claims carried inside an issued token."""

    id: Required[str]
    email: Required[str]
    username: Required[str]


# =============================================================================
# Command Inputs
# =============================================================================


class NewUser(TypedDict, total=False):
    """Input of ``create_user``.

    Attributes:
        email: Required unique email
        username: Required unique handle
        password: Required credential produced by the hasher (never plaintext)
        id: Optional identifier (generated when absent)
        name: Optional display name
        bio: Optional bio
        link: Optional profile link
    """

    email: Required[str]
    username: Required[str]
    password: Required[str]
    id: NotRequired[str]
    name: NotRequired[str]
    bio: NotRequired[str]
    link: NotRequired[str]


class NewPost(TypedDict, total=False):
    """Input of ``create_post``; ``image_url`` is a blob-store reference."""

    user_id: Required[str]
    content: Required[str]
    id: NotRequired[str]
    image_url: NotRequired[str | None]


class NewComment(TypedDict, total=False):
    """Input of ``add_comment``."""

    post_id: Required[str]
    user_id: Required[str]
    content: Required[str]
    id: NotRequired[str]


class NewMessage(TypedDict, total=False):
    """Input of ``create_message``."""

    conversation_id: Required[str]
    sender_id: Required[str]
    content: Required[str]
    id: NotRequired[str]


class ProfileUpdate(TypedDict, total=False):
    """Input of ``update_user_profile``.

    Overwrite semantics: absent optional fields are stored as ''.
    """

    username: Required[str]
    name: NotRequired[str | None]
    bio: NotRequired[str | None]
    link: NotRequired[str | None]


__all__ = [
    "Caller",
    "TokenClaims",
    "NewUser",
    "NewPost",
    "NewComment",
    "NewMessage",
    "ProfileUpdate",
]
