"""Tests for session tokens and credential encryption."""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from src.app.config import get_settings
from src.app.core.security import (
    SESSION_ALGORITHM,
    create_session_token,
    decrypt_secret,
    encrypt_secret,
    verify_session_token,
)
from src.app.meetings.schemas import SessionUser

USER = SessionUser(id=42, slug="alice", email="alice@example.com", first_name="Alice")


class TestSessionTokens:
    def test_round_trip(self):
        token = create_session_token(USER)
        assert verify_session_token(token) == USER

    def test_tampered_token_rejected(self):
        token = create_session_token(USER)
        header, payload, signature = token.split(".")
        forged = ".".join([header, payload, signature[::-1]])

        assert verify_session_token(forged) is None

    def test_garbage_rejected(self):
        assert verify_session_token("not-a-token") is None

    def test_expired_token_rejected(self):
        token = create_session_token(USER, expires_delta=timedelta(seconds=-1))
        assert verify_session_token(token) is None

    def test_token_signed_with_other_secret_rejected(self):
        token = jwt.encode(
            {"sub": "42", "slug": "alice", "type": "session"},
            "another-secret-that-is-long-enough-123",
            algorithm=SESSION_ALGORITHM,
        )
        assert verify_session_token(token) is None

    def test_wrong_token_type_rejected(self):
        token = jwt.encode(
            {"sub": "42", "slug": "alice", "type": "access"},
            get_settings().SESSION_SECRET,
            algorithm=SESSION_ALGORITHM,
        )
        assert verify_session_token(token) is None

    def test_non_numeric_subject_rejected(self):
        token = jwt.encode(
            {"sub": "alice", "slug": "alice", "type": "session"},
            get_settings().SESSION_SECRET,
            algorithm=SESSION_ALGORITHM,
        )
        assert verify_session_token(token) is None


class TestCredentialEncryption:
    def test_round_trip(self):
        ciphertext = encrypt_secret("1//refresh-token")

        assert ciphertext != "1//refresh-token"
        assert decrypt_secret(ciphertext) == "1//refresh-token"

    def test_ciphertexts_are_randomized(self):
        assert encrypt_secret("same") != encrypt_secret("same")

    def test_wrong_secret_raises_value_error(self):
        ciphertext = encrypt_secret("1//refresh-token", secret="a" * 32)

        with pytest.raises(ValueError):
            decrypt_secret(ciphertext, secret="b" * 32)

    def test_garbage_raises_value_error(self):
        with pytest.raises(ValueError):
            decrypt_secret("not-a-fernet-token")
