"""HMAC-SHA256 signing for webhook payloads."""

import hashlib
import hmac
from typing import Any, Union


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(payload: Union[str, bytes], secret: str) -> str:
    """
    Sign a serialized payload.

    Args:
        payload: The exact body bytes (or text) sent to the subscriber
        secret: The subscription's signing secret

    Returns:
        Lowercase hex HMAC-SHA256 digest
    """
    return hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256).hexdigest()


def verify_signature(payload: Any, signature: Any, secret: Any) -> bool:
    """
    Check a webhook signature in constant time.

    Never raises: malformed input of any kind yields False.
    """
    if not isinstance(payload, (str, bytes)) or not isinstance(secret, (str, bytes)):
        return False
    if not isinstance(signature, str) or not signature:
        return False

    try:
        provided = bytes.fromhex(signature)
    except ValueError:
        return False

    expected = hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256).digest()
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)
