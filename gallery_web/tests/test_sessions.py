"""Tests for opaque session tokens and the session cookie."""
import ast
from pathlib import Path

import pytest
from fastapi.responses import Response

from gallery_web import sessions
from gallery_web.config import SESSION_TTL
from gallery_web.pkce import ALPHABET
from gallery_web.sessions import (
    KEY_PREFIX,
    TOKEN_LENGTH,
    clear_session_cookie,
    issue,
    revoke,
    set_session_cookie,
    validate,
)


@pytest.mark.asyncio
async def test_issued_token_validates(store):
    token = await issue(store)
    assert len(token) == TOKEN_LENGTH >= 64
    assert all(c in ALPHABET for c in token)
    assert await validate(store, token) is True


@pytest.mark.asyncio
async def test_token_invalid_after_ttl(store, clock):
    token = await issue(store)
    clock.advance(SESSION_TTL - 1)
    assert await validate(store, token) is True
    clock.advance(1)
    assert await validate(store, token) is False


@pytest.mark.asyncio
async def test_validation_does_not_extend_lifetime(store, clock):
    token = await issue(store)
    for _ in range(4):
        clock.advance(SESSION_TTL / 4 - 1)
        assert await validate(store, token) is True
    clock.advance(10)
    assert await validate(store, token) is False


@pytest.mark.asyncio
async def test_token_invalid_after_record_deleted(store):
    token = await issue(store)
    await store.delete(f"{KEY_PREFIX}{token}")
    assert await validate(store, token) is False


@pytest.mark.asyncio
async def test_revoke(store):
    token = await issue(store)
    other = await issue(store)
    await revoke(store, token)
    assert await validate(store, token) is False
    assert await validate(store, other) is True


@pytest.mark.asyncio
async def test_empty_or_unknown_token(store):
    assert await validate(store, None) is False
    assert await validate(store, "") is False
    assert await validate(store, "x" * 64) is False


def test_session_cookie_attributes():
    response = Response()
    set_session_cookie(response, "abc123")
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("token=abc123;")
    lowered = cookie.lower()
    assert "max-age=86400" in lowered
    assert "path=/" in lowered
    assert "secure" in lowered
    assert "httponly" in lowered
    assert "samesite=lax" in lowered


def test_clear_session_cookie():
    response = Response()
    clear_session_cookie(response)
    cookie = response.headers["set-cookie"].lower()
    assert cookie.startswith("token=")
    assert "max-age=0" in cookie


def test_package_imports_only_declared_web_framework():
    """starlette arrives transitively through fastapi; modules import it via fastapi."""
    package_dir = Path(sessions.__file__).parent
    for source in package_dir.glob("*.py"):
        tree = ast.parse(source.read_text())
        for node in ast.walk(tree):
            if isinstance(node, ast.ImportFrom) and node.module:
                assert not node.module.startswith("starlette"), source.name
            elif isinstance(node, ast.Import):
                assert not any(a.name.startswith("starlette") for a in node.names), source.name
