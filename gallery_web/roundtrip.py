"""
Pending login handshakes (state -> PKCE verifier, return path), held in the KV store.
Written by begin() when the session gate redirects to the provider, consumed exactly once
by complete() in the callback. TTL bounds how long a user may take at the provider.
"""
import json
import logging
from dataclasses import dataclass

from gallery_web.config import ROUNDTRIP_TTL, Settings
from gallery_web.errors import InvalidState
from gallery_web.kv_store import KVStore
from gallery_web.pkce import build_authorize_url, generate_pkce, generate_state

logger = logging.getLogger(__name__)

KEY_PREFIX = "token:csrf:"


@dataclass(frozen=True)
class RoundtripRecord:
    pkce_verifier: str
    redirect: str

    def dumps(self) -> str:
        return json.dumps({"pkce": self.pkce_verifier, "redirect": self.redirect})

    @classmethod
    def loads(cls, raw: str) -> "RoundtripRecord":
        data = json.loads(raw)
        return cls(pkce_verifier=data["pkce"], redirect=data["redirect"])


def safe_return_path(path: str | None) -> str:
    """Only same-origin absolute paths are allowed back out of the callback."""
    if not path or not path.startswith("/") or path.startswith("//") or "\\" in path:
        return "/"
    return path


async def begin(store: KVStore, settings: Settings, original_path: str) -> str:
    """Start a login handshake and return the provider authorization URL to redirect to."""
    code_verifier, code_challenge = generate_pkce()
    state = generate_state()
    record = RoundtripRecord(pkce_verifier=code_verifier, redirect=safe_return_path(original_path))
    await store.set_ex(f"{KEY_PREFIX}{state}", record.dumps(), ROUNDTRIP_TTL)
    logger.debug("Started login handshake state=%s... redirect=%s", state[:8], record.redirect)

    return build_authorize_url(
        authorize_url=settings.authorize_url,
        client_id=settings.client_id,
        redirect_uri=settings.redirect_uri,
        scopes=settings.scopes,
        state=state,
        code_challenge=code_challenge,
    )


async def complete(store: KVStore, state: str) -> RoundtripRecord:
    """
    Redeem the state from the provider callback. Raises InvalidState when the record
    never existed, expired, or was already redeemed; those cases are not distinguished.
    """
    if not state:
        raise InvalidState("empty state")
    raw = await store.get_del(f"{KEY_PREFIX}{state}")
    if raw is None:
        logger.info("Unknown, expired or replayed state=%s...", state[:8])
        raise InvalidState("no roundtrip record")
    try:
        return RoundtripRecord.loads(raw)
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Corrupt roundtrip record for state=%s...: %s", state[:8], e)
        raise InvalidState("corrupt roundtrip record") from e
