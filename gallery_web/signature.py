"""
Inbound interaction webhook verification (Ed25519 over timestamp || body).
The body is never parsed until the signature over its exact bytes has been checked.
"""
import base64
import binascii
import logging
import re

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from gallery_web.errors import InvalidSignature, MissingHeader
from gallery_web.interactions import Interaction, parse_interaction

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature-Ed25519"
TIMESTAMP_HEADER = "X-Signature-Timestamp"

_SIGNATURE_LENGTH = 64

# Lowercase hex or canonical base64: one accepted spelling per signature and encoding
_HEX_SIGNATURE = re.compile(rb"[0-9a-f]+")


def decode_signature(value: bytes) -> bytes:
    """Hex (the platform's encoding) with a base64 fallback. Raises InvalidSignature."""
    text = value.strip()
    try:
        if _HEX_SIGNATURE.fullmatch(text):
            raw = binascii.unhexlify(text)
        else:
            raw = base64.b64decode(text, validate=True)
            if base64.b64encode(raw) != text:
                raise ValueError("non-canonical base64")
    except (binascii.Error, ValueError):
        raise InvalidSignature("signature is neither hex nor base64") from None
    if len(raw) != _SIGNATURE_LENGTH:
        raise InvalidSignature(f"signature has {len(raw)} bytes, expected {_SIGNATURE_LENGTH}")
    return raw


def _as_bytes(value: bytes | str | None) -> bytes | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.encode("latin-1")
    return value


def verify_signature(
    signature: bytes | str | None,
    timestamp: bytes | str | None,
    body: bytes,
    public_key: Ed25519PublicKey,
) -> None:
    """Raise MissingHeader or InvalidSignature unless signature is valid over timestamp + body."""
    signature = _as_bytes(signature)
    timestamp = _as_bytes(timestamp)
    if not signature:
        logger.debug("Interaction rejected: missing %s", SIGNATURE_HEADER)
        raise MissingHeader(SIGNATURE_HEADER)
    if not timestamp:
        logger.debug("Interaction rejected: missing %s", TIMESTAMP_HEADER)
        raise MissingHeader(TIMESTAMP_HEADER)

    try:
        raw_signature = decode_signature(signature)
    except InvalidSignature:
        logger.warning("Interaction rejected: undecodable signature header")
        raise

    try:
        public_key.verify(raw_signature, timestamp + body)
    except CryptoInvalidSignature:
        logger.warning("Interaction rejected: signature does not match payload")
        raise InvalidSignature("signature verification failed") from None


def verify(
    signature: bytes | str | None,
    timestamp: bytes | str | None,
    body: bytes,
    public_key: Ed25519PublicKey,
) -> Interaction:
    """Verify the request, then (and only then) parse the body into an Interaction."""
    verify_signature(signature, timestamp, body, public_key)
    return parse_interaction(body)
