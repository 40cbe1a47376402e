import hashlib
import hmac
from typing import Optional
from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def is_legacy_hash(hashed: Optional[str]) -> bool:
    # Imported tenants may carry unsalted sha256 hex digests.
    if not hashed:
        return False
    return not hashed.startswith("$2")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    if is_legacy_hash(hashed):
        legacy = hashlib.sha256(password.encode("utf-8")).hexdigest()
        return hmac.compare_digest(legacy, hashed)
    return _pwd_context.verify(password, hashed)


def needs_rehash(hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    if is_legacy_hash(hashed):
        return True
    return _pwd_context.needs_update(hashed)


def hash_session_token(token: str) -> str:
    # Sessions are stored as a one-way hash so a DB leak doesn't grant access.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()
