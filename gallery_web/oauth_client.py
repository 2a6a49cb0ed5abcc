"""
Provider token endpoint calls: authorization code exchange (with PKCE verifier) and
RFC 7009 revocation. Tokens never leave memory; the callback revokes them as soon as
the permission decision is made.
"""
import logging
from dataclasses import dataclass

import httpx

from gallery_web.config import Settings
from gallery_web.errors import CodeExchangeFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthTokenPair:
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return f"OAuthTokenPair(token_type={self.token_type!r}, scope={self.scope!r})"


class OAuthClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.settings.client_id, self.settings.client_secret)

    async def exchange(self, code: str, pkce_verifier: str) -> OAuthTokenPair:
        """
        Trade an authorization code for tokens. Any failure is CodeExchangeFailed;
        codes are single-use so there is nothing to retry.
        """
        try:
            r = await self.http.post(
                self.settings.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.settings.redirect_uri,
                    "code_verifier": pkce_verifier,
                },
                headers={"Accept": "application/json"},
                auth=self._auth(),
            )
        except httpx.HTTPError as e:
            logger.warning("Token exchange transport error: %s", e)
            raise CodeExchangeFailed(f"transport error: {e}") from e

        if r.status_code != 200:
            err = {}
            if r.headers.get("content-type", "").startswith("application/json"):
                try:
                    err = r.json()
                except ValueError:
                    pass
            if not isinstance(err, dict):
                err = {}
            err_desc = err.get("error_description", err.get("error", "")) or f"HTTP {r.status_code}"
            logger.info("Token exchange rejected by provider: %s", err_desc)
            raise CodeExchangeFailed(str(err_desc))

        try:
            data = r.json()
            access_token = data["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Token exchange returned an unusable body: %s", e)
            raise CodeExchangeFailed("malformed token response") from e
        if not access_token:
            raise CodeExchangeFailed("empty access token")

        return OAuthTokenPair(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            token_type=data.get("token_type", "Bearer"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def _revoke_one(self, token: str, hint: str) -> None:
        try:
            r = await self.http.post(
                self.settings.revoke_url,
                data={"token": token, "token_type_hint": hint},
                auth=self._auth(),
            )
        except httpx.HTTPError as e:
            logger.warning("Revoking %s failed: %s", hint, e)
            return
        if r.status_code != 200:
            logger.warning("Revoking %s returned HTTP %s", hint, r.status_code)
        else:
            logger.debug("Revoked %s", hint)

    async def revoke(self, tokens: OAuthTokenPair) -> None:
        """Best-effort revocation of refresh and access tokens. Never raises for provider errors."""
        if tokens.refresh_token:
            await self._revoke_one(tokens.refresh_token, "refresh_token")
        await self._revoke_one(tokens.access_token, "access_token")
