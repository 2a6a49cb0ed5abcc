"""
Login callback orchestration and the session gate.
state -> roundtrip record -> code exchange -> permission check -> session issue.
Provider tokens are revoked in the background as soon as the permission decision exists,
whether it was positive or not.
"""
import logging

from fastapi import Request

from gallery_web import roundtrip, sessions
from gallery_web.background import spawn_detached
from gallery_web.errors import LoginRequired
from gallery_web.kv_store import KVStore
from gallery_web.oauth_client import OAuthClient
from gallery_web.permissions import PermissionOracle

logger = logging.getLogger(__name__)


async def authenticate(
    store: KVStore,
    oauth: OAuthClient,
    oracle: PermissionOracle,
    code: str,
    state: str,
) -> tuple[str, str]:
    """Complete a login. Returns (session_token, return_path); raises GalleryError subclasses."""
    record = await roundtrip.complete(store, state)
    tokens = await oauth.exchange(code, record.pkce_verifier)
    try:
        await oracle.check(tokens.access_token)
    finally:
        spawn_detached(oauth.revoke(tokens), name="revoke-oauth-tokens")

    token = await sessions.issue(store)
    logger.info("Issued session after successful login")
    return token, record.redirect


async def require_session(request: Request) -> str:
    """
    Dependency: return the session token, or send the browser into the login handshake.
    The path of the gated request is where the callback will return to.
    """
    store = request.app.state.store
    token = request.cookies.get(sessions.COOKIE_NAME)
    if await sessions.validate(store, token):
        return token
    location = await roundtrip.begin(store, request.app.state.settings, request.url.path)
    raise LoginRequired(location)
