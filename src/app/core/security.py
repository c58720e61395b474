"""Session tokens and credential encryption.

Provides the security primitives used by the auth endpoints and request
dependencies:

- Session cookie: HS256 JWT signed with SESSION_SECRET carrying the owner
  identity (sub, slug, email, first_name).
- Credential encryption: Fernet over the owner's Google refresh token,
  keyed from SESSION_SECRET. Rotating the secret invalidates both sessions
  and stored credentials; owners sign in again to re-store them.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from src.app.config import get_settings
from src.app.meetings.schemas import SessionUser

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "meet_session"
SESSION_ALGORITHM = "HS256"


# ── Session Tokens ──────────────────────────────────────────────────────────


def create_session_token(user: SessionUser, expires_delta: timedelta | None = None) -> str:
    """Create a signed session token for ``user``."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.SESSION_MAX_AGE_DAYS))
    to_encode = {
        "sub": str(user.id),
        "slug": user.slug,
        "email": user.email,
        "first_name": user.first_name,
        "iat": now,
        "exp": expire,
        "type": "session",
    }
    return jwt.encode(to_encode, settings.SESSION_SECRET, algorithm=SESSION_ALGORITHM)


def verify_session_token(token: str) -> SessionUser | None:
    """Decode a session token.

    Returns:
        The SessionUser, or None if the token is invalid, expired, or
        malformed. Requests carrying such a token are treated as anonymous.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[SESSION_ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != "session" or not payload.get("sub"):
        return None
    try:
        return SessionUser(
            id=int(payload["sub"]),
            slug=payload.get("slug", ""),
            email=payload.get("email", ""),
            first_name=payload.get("first_name", ""),
        )
    except (TypeError, ValueError):
        logger.warning("Session token carried a malformed subject")
        return None


# ── Credential Encryption ───────────────────────────────────────────────────


def _fernet(secret: str | None = None) -> Fernet:
    secret = secret if secret is not None else get_settings().SESSION_SECRET
    key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
    return Fernet(key)


def encrypt_secret(plaintext: str, secret: str | None = None) -> str:
    """Encrypt a credential for storage."""
    return _fernet(secret).encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str, secret: str | None = None) -> str:
    """Decrypt a stored credential.

    Raises:
        ValueError: If the ciphertext was not produced with the current key.
    """
    try:
        return _fernet(secret).decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise ValueError("Stored credential cannot be decrypted with the current key") from e
