"""Tests for code exchange and token revocation against a mocked provider."""
import base64
from urllib.parse import parse_qs

import httpx
import pytest

from gallery_web.errors import CodeExchangeFailed
from gallery_web.oauth_client import OAuthClient, OAuthTokenPair


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _basic(request: httpx.Request) -> tuple[str, str]:
    scheme, _, value = request.headers["authorization"].partition(" ")
    assert scheme == "Basic"
    user, _, password = base64.b64decode(value).decode().partition(":")
    return user, password


def _client(settings, handler) -> OAuthClient:
    return OAuthClient(settings, httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=5.0))


@pytest.mark.asyncio
async def test_exchange_sends_code_and_verifier(settings):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "access_token": "at",
                "refresh_token": "rt",
                "token_type": "Bearer",
                "expires_in": 604800,
                "scope": "identify guilds",
            },
        )

    tokens = await _client(settings, handler).exchange("the-code", "the-verifier")
    assert tokens == OAuthTokenPair(
        access_token="at", refresh_token="rt", token_type="Bearer", expires_in=604800, scope="identify guilds"
    )

    (request,) = seen
    assert str(request.url) == settings.token_url
    assert request.method == "POST"
    form = _form(request)
    assert form == {
        "grant_type": "authorization_code",
        "code": "the-code",
        "redirect_uri": "https://gallery.test/oauth2/callback",
        "code_verifier": "the-verifier",
    }
    assert _basic(request) == ("gallery-client", "gallery-secret")


@pytest.mark.asyncio
async def test_exchange_without_refresh_token(settings):
    tokens = await _client(settings, lambda r: httpx.Response(200, json={"access_token": "at"})).exchange("c", "v")
    assert tokens.access_token == "at"
    assert tokens.refresh_token is None


@pytest.mark.asyncio
async def test_exchange_provider_rejects(settings):
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid code_verifier"})

    with pytest.raises(CodeExchangeFailed) as exc:
        await _client(settings, handler).exchange("c", "wrong")
    assert exc.value.status_code == 400
    assert "code_verifier" in str(exc.value)


@pytest.mark.asyncio
async def test_exchange_non_json_error(settings):
    with pytest.raises(CodeExchangeFailed):
        await _client(settings, lambda r: httpx.Response(502, text="bad gateway")).exchange("c", "v")


@pytest.mark.asyncio
async def test_exchange_transport_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CodeExchangeFailed):
        await _client(settings, handler).exchange("c", "v")


@pytest.mark.asyncio
async def test_exchange_missing_access_token(settings):
    with pytest.raises(CodeExchangeFailed):
        await _client(settings, lambda r: httpx.Response(200, json={"token_type": "Bearer"})).exchange("c", "v")


@pytest.mark.asyncio
async def test_exchange_is_not_retried(settings):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "server_error"})

    with pytest.raises(CodeExchangeFailed):
        await _client(settings, handler).exchange("c", "v")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_revoke_revokes_refresh_then_access(settings):
    seen = []

    def handler(request):
        seen.append(_form(request))
        assert str(request.url) == settings.revoke_url
        return httpx.Response(200)

    await _client(settings, handler).revoke(OAuthTokenPair(access_token="at", refresh_token="rt"))
    assert seen == [
        {"token": "rt", "token_type_hint": "refresh_token"},
        {"token": "at", "token_type_hint": "access_token"},
    ]


@pytest.mark.asyncio
async def test_revoke_without_refresh_token(settings):
    seen = []

    def handler(request):
        seen.append(_form(request)["token_type_hint"])
        return httpx.Response(200)

    await _client(settings, handler).revoke(OAuthTokenPair(access_token="at"))
    assert seen == ["access_token"]


@pytest.mark.asyncio
async def test_revoke_swallows_failures(settings, caplog):
    def handler(request):
        if _form(request)["token_type_hint"] == "refresh_token":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(503)

    await _client(settings, handler).revoke(OAuthTokenPair(access_token="at", refresh_token="rt"))
    assert "Revoking refresh_token failed" in caplog.text
    assert "Revoking access_token returned HTTP 503" in caplog.text


def test_token_pair_repr_hides_secrets():
    pair = OAuthTokenPair(access_token="secret-at", refresh_token="secret-rt")
    assert "secret" not in repr(pair)
