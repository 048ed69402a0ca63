"""Protocol interfaces for the external collaborators.

Password hashing, token issuance and image storage are owned by other
libraries; the service layer only depends on these structural contracts.
Using @runtime_checkable Protocol allows isinstance() checks without
inheritance, so tests can pass plain fakes.

Example:
    >>> from socialdb.interfaces import IPasswordHasher
    >>> class PlainHasher:
    ...     def hash(self, plaintext):
    ...         return "plain$" + plaintext
    ...     def verify(self, plaintext, credential):
    ...         return credential == "plain$" + plaintext
    >>> isinstance(PlainHasher(), IPasswordHasher)
    True
"""

from typing import Protocol, runtime_checkable

from socialdb.types import TokenClaims


@runtime_checkable
class IPasswordHasher(Protocol):
    """Turns a plaintext password into a stored credential and checks it."""

    def hash(self, plaintext: str) -> str:
        """Return the credential to persist for ``plaintext``."""
        ...

    def verify(self, plaintext: str, credential: str) -> bool:
        """Check ``plaintext`` against a stored credential."""
        ...


@runtime_checkable
class ITokenService(Protocol):
    """Issues and verifies bearer tokens."""

    def issue(self, claims: TokenClaims) -> str:
        """Sign ``claims`` into an opaque token."""
        ...

    def verify(self, token: str) -> TokenClaims | None:
        """Return the claims of a valid token, or None when it is invalid or expired."""
        ...


@runtime_checkable
class IBlobStore(Protocol):
    """Stores uploaded images and hands back a stable reference."""

    async def save(self, data: bytes, filename: str) -> str:
        """Persist ``data`` and return its reference path (e.g. ``/uploads/x.png``)."""
        ...


__all__ = [
    "IPasswordHasher",
    "ITokenService",
    "IBlobStore",
]
