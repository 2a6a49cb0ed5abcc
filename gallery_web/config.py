"""
Gallery Web configuration.
Provider endpoints and lifetimes are module constants; deployment values (client credentials,
guild, store URL, webhook key) are read once into an immutable Settings at startup.
A missing or malformed required value is a startup error, never a request-time one.
"""
import os
from dataclasses import dataclass, field

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from gallery_web.errors import ConfigError

# Discord OAuth2 endpoints (overridable for tests and staging)
DEFAULT_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
DEFAULT_TOKEN_URL = "https://discord.com/api/oauth2/token"
DEFAULT_REVOKE_URL = "https://discord.com/api/oauth2/token/revoke"
DEFAULT_API_URL = "https://discord.com/api/v10"

# Pending login handshake lifetime (seconds)
ROUNDTRIP_TTL = 600

# Session lifetime (seconds); absolute from issuance, never extended by activity
SESSION_TTL = 86400

# Permission bits from the platform's guild permission set
PERMISSION_ADMINISTRATOR = 1 << 3
PERMISSION_MODERATE_MEMBERS = 1 << 40

# Outbound HTTP timeout (seconds); must stay finite
DEFAULT_HTTP_TIMEOUT = 10.0

# Audit trail database. SQLite is enough for a single instance.
AUDIT_DATABASE_URL = os.environ.get("AUDIT_DATABASE_URL", "sqlite:///./gallery_audit.db")


def _required(environ, name: str) -> str:
    value = (environ.get(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} required in the environment")
    return value


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def load_public_key(hex_key: str) -> Ed25519PublicKey:
    """Parse the platform's hex-encoded 32-byte Ed25519 verification key."""
    try:
        raw = bytes.fromhex(hex_key.strip())
    except ValueError:
        raise ConfigError("DISCORD_PUBLIC_KEY must be hex encoded") from None
    if len(raw) != 32:
        raise ConfigError(f"DISCORD_PUBLIC_KEY must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    root_url: str
    guild_id: int
    redis_url: str
    public_key: Ed25519PublicKey
    authorize_url: str = DEFAULT_AUTHORIZE_URL
    token_url: str = DEFAULT_TOKEN_URL
    revoke_url: str = DEFAULT_REVOKE_URL
    api_url: str = DEFAULT_API_URL
    required_permission: int = PERMISSION_MODERATE_MEMBERS
    required_roles: frozenset[int] = field(default_factory=frozenset)
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    application_id: int | None = None
    bot_token: str | None = field(default=None, repr=False)

    @property
    def redirect_uri(self) -> str:
        return f"{self.root_url}/oauth2/callback"

    @property
    def scopes(self) -> list[str]:
        scopes = ["identify", "guilds"]
        if self.required_roles:
            # member lookup is needed to see role ids
            scopes.append("guilds.members.read")
        return scopes

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from the environment (os.environ by default). Raises ConfigError."""
        env = os.environ if environ is None else environ

        guild_id = _parse_int("GUILD", _required(env, "GUILD"))
        required_permission = PERMISSION_MODERATE_MEMBERS
        if (env.get("REQUIRED_PERMISSION") or "").strip():
            required_permission = _parse_int("REQUIRED_PERMISSION", env["REQUIRED_PERMISSION"].strip())
        roles = frozenset(
            _parse_int("REQUIRED_ROLES", r.strip())
            for r in (env.get("REQUIRED_ROLES") or "").split(",")
            if r.strip()
        )

        # bot credentials are only needed to register commands; both or neither
        application_id = None
        bot_token = (env.get("DISCORD_TOKEN") or "").strip() or None
        if (env.get("APPLICATION_ID") or "").strip():
            application_id = _parse_int("APPLICATION_ID", env["APPLICATION_ID"].strip())
        if (application_id is None) != (bot_token is None):
            raise ConfigError("APPLICATION_ID and DISCORD_TOKEN must be set together")

        timeout_raw = (env.get("HTTP_TIMEOUT") or "").strip()
        http_timeout = DEFAULT_HTTP_TIMEOUT
        if timeout_raw:
            try:
                http_timeout = float(timeout_raw)
            except ValueError:
                raise ConfigError(f"HTTP_TIMEOUT must be a number, got {timeout_raw!r}") from None
            if http_timeout <= 0:
                raise ConfigError("HTTP_TIMEOUT must be positive")

        return cls(
            client_id=_required(env, "CLIENT_ID"),
            client_secret=_required(env, "CLIENT_SECRET"),
            root_url=_required(env, "ROOT_URL").rstrip("/"),
            guild_id=guild_id,
            redis_url=_required(env, "REDIS_URL"),
            public_key=load_public_key(_required(env, "DISCORD_PUBLIC_KEY")),
            authorize_url=env.get("OAUTH_AUTHORIZE_URL", DEFAULT_AUTHORIZE_URL),
            token_url=env.get("OAUTH_TOKEN_URL", DEFAULT_TOKEN_URL),
            revoke_url=env.get("OAUTH_REVOKE_URL", DEFAULT_REVOKE_URL),
            api_url=env.get("DISCORD_API_URL", DEFAULT_API_URL).rstrip("/"),
            required_permission=required_permission,
            required_roles=roles,
            http_timeout=http_timeout,
            application_id=application_id,
            bot_token=bot_token,
        )
