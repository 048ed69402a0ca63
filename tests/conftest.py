"""Pytest configuration and shared fixtures for SocialDB tests."""

import itertools
import os
import random
import sys
import tempfile
from typing import Any

# Settings are read at import time; pin the testing profile first
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="socialdb-tests-"))

import pytest
import pytest_asyncio
from loguru import logger

from socialdb.database import Store
from socialdb.messaging import MessagingRepository
from socialdb.metrics import reset_metrics
from socialdb.migrator import MigrationRunner
from socialdb.service import SocialService
from socialdb.social import SocialRepository
from socialdb.types import Caller, TokenClaims

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


@pytest.fixture(autouse=True)
def clean_metrics():
    """Start every test from empty metric samples."""
    reset_metrics()
    yield


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def store():
    """Open in-memory store with no schema."""
    store = Store(MEMORY_URL)
    await store.open()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def migrated_store(store: Store) -> Store:
    """In-memory store migrated to the latest schema."""
    await MigrationRunner(store).migrate()
    return store


@pytest.fixture
def social(migrated_store: Store) -> SocialRepository:
    return SocialRepository(migrated_store, rng=random.Random(1234))


@pytest.fixture
def messaging(migrated_store: Store) -> MessagingRepository:
    return MessagingRepository(migrated_store)


@pytest.fixture
def make_user(social: SocialRepository):
    """Factory creating users with unique emails and usernames."""
    counter = itertools.count(1)

    async def _make(username: str | None = None, **fields: Any):
        username = username or f"user{next(counter)}"
        return await social.create_user(
            {
                "email": f"{username}@example.com",
                "username": username,
                "password": "hashed$secret",
                **fields,
            }
        )

    return _make


# =============================================================================
# Collaborator Fakes
# =============================================================================


class FakeHasher:
    """Reversible stand-in for a password hasher."""

    def hash(self, plaintext: str) -> str:
        return f"hashed${plaintext}"

    def verify(self, plaintext: str, credential: str) -> bool:
        return credential == f"hashed${plaintext}"


class FakeTokens:
    """Token service keeping issued claims in memory."""

    def __init__(self) -> None:
        self.issued: dict[str, TokenClaims] = {}

    def issue(self, claims: TokenClaims) -> str:
        token = f"token-{len(self.issued) + 1}"
        self.issued[token] = claims
        return token

    def verify(self, token: str) -> TokenClaims | None:
        return self.issued.get(token)


class FakeBlobs:
    """Blob store keeping uploads in memory."""

    def __init__(self) -> None:
        self.saved: dict[str, bytes] = {}

    async def save(self, data: bytes, filename: str) -> str:
        reference = f"/uploads/{len(self.saved) + 1}-{filename}"
        self.saved[reference] = data
        return reference


@pytest.fixture
def tokens() -> FakeTokens:
    return FakeTokens()


@pytest.fixture
def blobs() -> FakeBlobs:
    return FakeBlobs()


@pytest.fixture
def service(migrated_store: Store, tokens: FakeTokens, blobs: FakeBlobs) -> SocialService:
    return SocialService(
        migrated_store, FakeHasher(), tokens, blobs, rng=random.Random(1234)
    )


@pytest.fixture
def make_caller(service: SocialService):
    """Factory signing up a user through the service and returning its caller identity."""
    counter = itertools.count(1)

    async def _make(username: str | None = None) -> Caller:
        username = username or f"member{next(counter)}"
        auth = await service.signup(f"{username}@example.com", "secret", username)
        return await service.authenticate(auth.token)

    return _make
