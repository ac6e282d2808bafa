"""
At-rest encryption for webhook signing secrets.

On PostgreSQL values go through pgcrypto with a per-tenant symmetric key.
SQLite (tests, local development) stores the UTF-8 bytes unchanged.
"""

from typing import Optional, Union

from sqlalchemy import text
from sqlalchemy.orm import Session

WEBHOOK_SECRET_KEY_SUFFIX = "webhook_secret"


def _uses_pgcrypto(session: Session) -> bool:
    return session.bind.dialect.name == "postgresql"


def _encryption_key(tenant_id: str, key_suffix: str) -> str:
    return f"{tenant_id}_{key_suffix}" if key_suffix else tenant_id


def encrypt_value(session: Session, value: str, tenant_id: str, key_suffix: str = "") -> bytes:
    """
    Encrypt a string for storage in an EncryptedBinary column.

    Args:
        session: Database session (its dialect picks the strategy)
        value: Plaintext to encrypt
        tenant_id: Tenant whose key is used
        key_suffix: Separates keys for different kinds of data

    Returns:
        Ciphertext on PostgreSQL, UTF-8 bytes on SQLite
    """
    if _uses_pgcrypto(session):
        return session.execute(
            text("SELECT pgp_sym_encrypt(:data, :key)"),
            {"data": value, "key": _encryption_key(tenant_id, key_suffix)},
        ).scalar()

    return value.encode() if isinstance(value, str) else value


def decrypt_value(
    session: Session,
    encrypted_value: Union[bytes, str, None],
    tenant_id: str,
    key_suffix: str = "",
) -> Optional[str]:
    """
    Reverse encrypt_value. Empty input decrypts to None.
    """
    if not encrypted_value:
        return None

    if _uses_pgcrypto(session):
        return session.execute(
            text("SELECT pgp_sym_decrypt(:data, :key)"),
            {"data": encrypted_value, "key": _encryption_key(tenant_id, key_suffix)},
        ).scalar()

    if isinstance(encrypted_value, bytes):
        return encrypted_value.decode()
    return encrypted_value


def encrypt_webhook_secret(session: Session, secret: str, tenant_id: str) -> bytes:
    return encrypt_value(session, secret, tenant_id, WEBHOOK_SECRET_KEY_SUFFIX)


def decrypt_webhook_secret(session: Session, encrypted, tenant_id: str) -> Optional[str]:
    return decrypt_value(session, encrypted, tenant_id, WEBHOOK_SECRET_KEY_SUFFIX)
