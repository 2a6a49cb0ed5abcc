"""
PKCE (RFC 7636) and random identifier helpers for login initiation.
S256 only. The verifier stays server-side; only the challenge goes to the provider.
"""
import hashlib
import secrets
import string
from base64 import urlsafe_b64encode
from urllib.parse import urlencode

# Identifier alphabet for session tokens and upload ids
ALPHABET = string.ascii_letters + string.digits


def randstring(length: int) -> str:
    """Cryptographically random string over ALPHABET."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def code_challenge_for(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy).
    """
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, code_challenge_for(code_verifier)


def build_authorize_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str,
    prompt: str | None = "none",
) -> str:
    """Build the provider authorization URL with required and optional params."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if prompt:
        params["prompt"] = prompt
    sep = "&" if "?" in authorize_url else "?"
    return f"{authorize_url}{sep}{urlencode(params)}"
