from __future__ import annotations

import logging

from passlib.context import CryptContext
from passlib.hash import pbkdf2_sha256

logger = logging.getLogger(__name__)

# bcrypt first; pbkdf2_sha256 hashes are accepted when the bcrypt backend is unusable.
_pwd_context = CryptContext(schemes=["bcrypt", "pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    try:
        return _pwd_context.hash(password)
    except (ValueError, RuntimeError, AttributeError) as exc:
        logger.warning("bcrypt unavailable, hashing with pbkdf2_sha256: %s", exc.__class__.__name__)
        return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False
