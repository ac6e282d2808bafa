"""
Unit tests for webhook secret encryption.

SQLite stores plaintext bytes; the PostgreSQL branch is exercised with a
mocked session.
"""

from unittest.mock import MagicMock

from sqlalchemy.orm import Session

from ip_platform_core.utils.encryption_utils import (
    decrypt_value,
    decrypt_webhook_secret,
    encrypt_value,
    encrypt_webhook_secret,
)


def _postgres_session(scalar_result):
    session = MagicMock()
    session.bind.dialect.name = "postgresql"
    session.execute.return_value.scalar.return_value = scalar_result
    return session


class TestSQLiteEncryption:
    """Test the plaintext path used in tests and local development."""

    def test_webhook_secret_round_trip(self, db_session: Session, sample_tenant_id):
        encrypted = encrypt_webhook_secret(db_session, "whsec_abc123", sample_tenant_id)

        assert encrypted == b"whsec_abc123"
        assert decrypt_webhook_secret(db_session, encrypted, sample_tenant_id) == "whsec_abc123"

    def test_decrypt_empty_value(self, db_session: Session, sample_tenant_id):
        assert decrypt_value(db_session, None, sample_tenant_id) is None
        assert decrypt_value(db_session, b"", sample_tenant_id) is None

    def test_decrypt_accepts_str(self, db_session: Session, sample_tenant_id):
        assert decrypt_value(db_session, "already-text", sample_tenant_id) == "already-text"


class TestPostgresEncryption:
    """Test the pgcrypto path with a mocked session."""

    def test_encrypt_uses_tenant_scoped_key(self):
        session = _postgres_session(b"\x00cipher")

        result = encrypt_webhook_secret(session, "whsec_abc123", "tenant-a")

        assert result == b"\x00cipher"
        statement, params = session.execute.call_args[0]
        assert "pgp_sym_encrypt" in str(statement)
        assert params == {"data": "whsec_abc123", "key": "tenant-a_webhook_secret"}

    def test_decrypt_uses_same_key(self):
        session = _postgres_session("whsec_abc123")

        result = decrypt_webhook_secret(session, b"\x00cipher", "tenant-a")

        assert result == "whsec_abc123"
        statement, params = session.execute.call_args[0]
        assert "pgp_sym_decrypt" in str(statement)
        assert params["key"] == "tenant-a_webhook_secret"

    def test_key_without_suffix_is_tenant_id(self):
        session = _postgres_session(b"cipher")

        encrypt_value(session, "value", "tenant-b")

        _, params = session.execute.call_args[0]
        assert params["key"] == "tenant-b"
