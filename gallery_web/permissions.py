"""
Permission check against the platform API using the freshly exchanged access token.
The principal must be in the configured guild and hold the required permission bit
(or ADMINISTRATOR); when role ids are configured, they must also hold one of them.
"""
import logging
from typing import Protocol

import httpx

from gallery_web.config import PERMISSION_ADMINISTRATOR, Settings
from gallery_web.errors import NoPermissions, OracleError

logger = logging.getLogger(__name__)


class PermissionOracle(Protocol):
    async def check(self, access_token: str) -> None:
        """Return if authorized; raise NoPermissions or OracleError otherwise."""
        ...


def has_permission(permissions: int, required: int) -> bool:
    if permissions & PERMISSION_ADMINISTRATOR:
        return True
    return permissions & required == required


class DiscordPermissionOracle:
    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http

    async def _get_json(self, path: str, access_token: str, params: dict | None = None):
        try:
            r = await self.http.get(
                f"{self.settings.api_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise OracleError(f"platform API transport error: {e}") from e
        if r.status_code in (403, 404):
            # user is not a member or the token lacks access; a well-formed "no"
            raise NoPermissions(f"platform API returned HTTP {r.status_code} for {path}")
        if r.status_code != 200:
            raise OracleError(f"platform API returned HTTP {r.status_code} for {path}")
        try:
            return r.json()
        except ValueError as e:
            raise OracleError(f"platform API returned invalid JSON for {path}") from e

    async def check(self, access_token: str) -> None:
        guild_id = self.settings.guild_id
        # guilds are ordered by id; after=id-1 makes the target guild the only candidate
        guilds = await self._get_json(
            "/users/@me/guilds",
            access_token,
            params={"after": str(guild_id - 1), "limit": "1"},
        )
        if not isinstance(guilds, list):
            raise OracleError("guild listing is not a list")
        if not guilds:
            raise NoPermissions("not a member of any guild at or after the target")

        guild = guilds[0]
        try:
            returned_id = int(guild["id"])
            permissions = int(guild.get("permissions", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise OracleError(f"malformed guild object: {e}") from e
        if returned_id != guild_id:
            raise NoPermissions("not a member of the configured guild")
        if not has_permission(permissions, self.settings.required_permission):
            raise NoPermissions("missing required guild permission")

        if self.settings.required_roles:
            member = await self._get_json(f"/users/@me/guilds/{guild_id}/member", access_token)
            try:
                roles = {int(r) for r in member.get("roles", [])}
            except (AttributeError, TypeError, ValueError) as e:
                raise OracleError(f"malformed member object: {e}") from e
            if not roles & self.settings.required_roles:
                raise NoPermissions("missing required role")
        logger.debug("Permission check passed for guild %s", guild_id)
