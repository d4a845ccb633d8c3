import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

import pytest
from fastapi.testclient import TestClient

from civicboard.auth.passwords import HashParams, PasswordHasher
from civicboard.auth.users import InMemoryIdentityStore, NewIdentity
from civicboard.config import Settings

# Cheap argon2 parameters so the suite stays fast.
FAST_PARAMS = HashParams(time_cost=1, memory_cost=1024, parallelism=1)

TOKEN_SECRET = "test-token-secret-0123456789abcdef"
SESSION_SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture()
def hasher() -> PasswordHasher:
    return PasswordHasher(FAST_PARAMS)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        token_secret=TOKEN_SECRET,
        session_secret=SESSION_SECRET,
        hash_params=FAST_PARAMS,
    )


@pytest.fixture()
def identities() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture()
def make_identity(identities, hasher):
    """Create an identity directly in the store; returns it."""

    async def _make(username="alice", password="Secret123", email=None, role="user"):
        return await identities.create(
            NewIdentity(
                username=username,
                email=email or f"{username}@example.org",
                password_hash=hasher.hash(password),
                role=role,
            )
        )

    return _make


@pytest.fixture()
def app(settings, identities):
    from civicboard.app import create_app

    return create_app(settings, identities=identities)


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)
