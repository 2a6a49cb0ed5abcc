"""
Opaque session tokens. A token is valid iff token:auth:<token> exists in the KV store;
expiry is absolute from issuance (TTL is never refreshed). Deleting the key revokes it.
"""
import logging

from fastapi.responses import Response

from gallery_web.config import SESSION_TTL
from gallery_web.kv_store import KVStore
from gallery_web.pkce import randstring

logger = logging.getLogger(__name__)

COOKIE_NAME = "token"
KEY_PREFIX = "token:auth:"
TOKEN_LENGTH = 64


async def issue(store: KVStore) -> str:
    token = randstring(TOKEN_LENGTH)
    await store.set_ex(f"{KEY_PREFIX}{token}", "true", SESSION_TTL)
    return token


async def validate(store: KVStore, token: str | None) -> bool:
    if not token:
        return False
    return await store.exists(f"{KEY_PREFIX}{token}")


async def revoke(store: KVStore, token: str | None) -> None:
    if not token:
        return
    await store.delete(f"{KEY_PREFIX}{token}")
    logger.info("Session revoked")


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=SESSION_TTL,
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/", secure=True, httponly=True, samesite="lax")
