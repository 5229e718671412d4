"""Nonces, PKCE pairs and expiry checks shared by every OAuth flow."""

import base64
import hashlib
import secrets
from datetime import UTC, datetime, timedelta


def generate_state() -> str:
    """Generate an unguessable OAuth state nonce."""
    return secrets.token_urlsafe(32)


def generate_pkce_pair() -> tuple[str, str]:
    """Return (code_verifier, code_challenge) using the S256 method."""
    verifier = secrets.token_urlsafe(64)
    return verifier, pkce_challenge(verifier)


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def generate_session_token(platform: str) -> str:
    """Opaque single-use handle handed to mobile clients."""
    return f"{platform[:2]}_{secrets.token_urlsafe(24)}"


def is_expired(
    created_at: datetime | None, ttl_minutes: int, now: datetime | None = None
) -> bool:
    if created_at is None:
        return True
    now = now or datetime.now(UTC)
    return now - created_at > timedelta(minutes=ttl_minutes)
