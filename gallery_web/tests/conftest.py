"""
Pytest configuration for gallery_web. In-memory SQLite for the audit trail, an Ed25519
keypair standing in for the platform's signing key, and a controllable clock for TTLs.
"""
import os

# Must be set before gallery_web.audit creates its engine
os.environ["AUDIT_DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from gallery_web.config import Settings
from gallery_web.kv_store import MemoryStore

GUILD_ID = 1122334455667788
PROVIDER = "https://provider.test"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def signing_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def settings(signing_key):
    return Settings(
        client_id="gallery-client",
        client_secret="gallery-secret",
        root_url="https://gallery.test",
        guild_id=GUILD_ID,
        redis_url="memory://",
        public_key=signing_key.public_key(),
        authorize_url=f"{PROVIDER}/oauth2/authorize",
        token_url=f"{PROVIDER}/api/oauth2/token",
        revoke_url=f"{PROVIDER}/api/oauth2/token/revoke",
        api_url=f"{PROVIDER}/api/v10",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)
