from __future__ import annotations

from passlib.context import CryptContext

# Used by the local auth stores (in-memory and SQL). The managed backend
# hashes credentials itself and never sees this context.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)
