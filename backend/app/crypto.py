"""Encryption of OAuth tokens stored at rest.

Tokens are Fernet-encrypted when ``POSTBRIDGE_ENCRYPTION_KEY`` holds a valid
key. Without one they are only base64-encoded, which keeps development
databases readable. Rows written before a key was configured stay decodable.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

PLACEHOLDER_KEY = "change-me-in-production"


@lru_cache
def _fernet_for(key: str) -> Fernet | None:
    if not key or key == PLACEHOLDER_KEY:
        return None
    try:
        return Fernet(key.encode())
    except ValueError:
        return None


def encrypt_token(raw: str | None) -> str:
    if not raw:
        return ""
    fernet = _fernet_for(settings.encryption_key)
    if fernet is None:
        return base64.b64encode(raw.encode()).decode()
    return fernet.encrypt(raw.encode()).decode()


def decrypt_token(stored: str | None) -> str:
    if not stored:
        return ""
    fernet = _fernet_for(settings.encryption_key)
    if fernet is not None:
        try:
            return fernet.decrypt(stored.encode()).decode()
        except InvalidToken:
            pass
    return base64.b64decode(stored.encode()).decode()
