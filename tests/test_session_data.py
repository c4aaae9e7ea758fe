"""
Tests for the session data model.

Tests cover:
- id generation
- available modes derived from stored credentials
- expiry and remaining TTL
- record serialization
- status payload
- masked representations
"""
from datetime import timedelta

import pytest

from passgage_session.data import (
    AuthContext,
    AuthMode,
    Credentials,
    SessionData,
    generate_session_id,
    utcnow,
)


@pytest.fixture
def session():
    """A personal session holding an email/password pair."""
    return SessionData.new(
        Credentials(email="a@b.com", password="ct-password", token="ct-token"),
        AuthMode.PERSONAL,
        600,
    )


# --- Test Session Identity ---

class TestSessionIdentity:

    def test_id_is_generated(self, session):
        assert len(session.id) == 64
        int(session.id, 16)

    def test_ids_differ(self):
        assert generate_session_id() != generate_session_id()

    def test_custom_id(self):
        session = SessionData(id="my-id", expires_at=utcnow())
        assert session.id == "my-id"


# --- Test Available Modes ---

class TestAvailableModes:

    @pytest.mark.parametrize("fields, modes", [
        ({}, []),
        ({"administrative_key": "ct"}, [AuthMode.ADMINISTRATIVE]),
        ({"email": "a@b.com"}, []),
        ({"email": "a@b.com", "password": "ct"}, [AuthMode.PERSONAL]),
        ({"token": "ct"}, [AuthMode.PERSONAL]),
        (
            {"administrative_key": "ct", "token": "ct"},
            [AuthMode.ADMINISTRATIVE, AuthMode.PERSONAL],
        ),
    ])
    def test_modes(self, fields, modes):
        assert Credentials(**fields).modes() == modes

    def test_secret_fields(self):
        assert "email" not in Credentials().secret_fields


# --- Test Expiry ---

class TestExpiry:

    def test_fresh_session(self, session):
        assert session.is_expired() is False
        assert 595 <= session.ttl() <= 600

    def test_expired_at_deadline(self, session):
        assert session.is_expired(session.expires_at) is True
        assert session.is_expired(session.expires_at - timedelta(seconds=1)) is False

    def test_negative_ttl(self, session):
        assert session.ttl(session.expires_at + timedelta(seconds=30)) == -30

    def test_touch(self, session):
        before = session.last_used_at
        session.touch()
        assert session.last_used_at >= before
        assert session.expires_at - session.created_at == timedelta(seconds=600)


# --- Test Serialization ---

class TestRecord:

    def test_from_record_restores_fields(self, session):
        restored = SessionData.from_record(session.to_record())
        assert restored.id == session.id
        assert restored.auth_mode is AuthMode.PERSONAL
        assert restored.credentials.token == "ct-token"
        assert restored.expires_at == session.expires_at

    def test_from_bytes(self, session):
        restored = SessionData.from_record(session.to_record().encode("utf-8"))
        assert restored.id == session.id

    def test_invalid_record(self):
        with pytest.raises(ValueError):
            SessionData.from_record('{"id": "x"}')


# --- Test Status ---

class TestStatus:

    def test_status_fields(self, session):
        status = session.status()
        assert status["sessionId"] == session.id
        assert status["currentMode"] == "personal"
        assert status["availableModes"] == ["personal"]
        assert set(status) == {
            "sessionId", "currentMode", "availableModes",
            "createdAt", "expiresAt", "lastUsed",
        }

    def test_status_has_no_credentials(self, session):
        text = str(session.status())
        assert "ct-password" not in text
        assert "ct-token" not in text


# --- Test Representation ---

class TestRepr:

    def test_session_repr(self, session):
        assert repr(session).startswith("<Passgage-Session [mode:personal")
        assert "ct-token" not in repr(session)

    def test_auth_context_authorization(self):
        context = AuthContext(mode=AuthMode.PERSONAL, personal_token="jwt")
        assert context.authorization == "Bearer jwt"
        assert "jwt" not in repr(context)

    def test_auth_context_is_frozen(self):
        context = AuthContext(mode=AuthMode.ADMINISTRATIVE, administrative_key="k")
        with pytest.raises(ValueError):
            context.mode = AuthMode.PERSONAL
