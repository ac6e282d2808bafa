"""
Hash and key-material utilities for API key issuance.

Raw API keys are never stored; only their SHA-256 digest and a short display
prefix are persisted.
"""

import base64
import hashlib
import secrets
from typing import NamedTuple

from ..constants import Limits


class GeneratedApiKey(NamedTuple):
    """A freshly generated API key and the values persisted for it."""

    key: str
    key_hash: str
    key_prefix: str


def hash_api_key(raw_key: str) -> str:
    """Return the lowercase hex SHA-256 digest of a raw API key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(
    prefix: str = Limits.API_KEY_PREFIX,
    num_bytes: int = Limits.API_KEY_BYTES,
    display_prefix_length: int = Limits.API_KEY_DISPLAY_PREFIX_LENGTH,
) -> GeneratedApiKey:
    """
    Generate a new random API key.

    The key is ``prefix`` followed by the unpadded URL-safe base64 encoding of
    ``num_bytes`` bytes from a CSPRNG.

    Args:
        prefix: Fixed key prefix (``ip_``)
        num_bytes: Number of random bytes (at least 32)
        display_prefix_length: Characters of the raw key kept for display

    Returns:
        GeneratedApiKey with the raw key, its hash and its display prefix
    """
    random_part = base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).rstrip(b"=")
    key = prefix + random_part.decode("ascii")
    return GeneratedApiKey(
        key=key,
        key_hash=hash_api_key(key),
        key_prefix=key[:display_prefix_length],
    )


def generate_webhook_secret(num_bytes: int = Limits.WEBHOOK_SECRET_BYTES) -> str:
    """Generate a hex-encoded signing secret for a webhook subscription."""
    return secrets.token_hex(num_bytes)
