# certledger/core/security.py
"""Operator credentials: hashing and login verification."""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from certledger import crud
from certledger.models.user import User

logger = logging.getLogger(__name__)

# argon2 for new hashes; bcrypt variants are verified and rehashed on login
pwd_context = CryptContext(
    schemes=["argon2", "bcrypt_sha256", "bcrypt"],
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=19456,
    argon2__parallelism=1,
)


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_and_maybe_upgrade(plain: str, stored_hash: str) -> Tuple[bool, Optional[str]]:
    """(ok, new_hash). new_hash is set when the stored hash uses a deprecated scheme."""
    if not pwd_context.verify(plain, stored_hash):
        return False, None
    return True, pwd_context.hash(plain) if pwd_context.needs_update(stored_hash) else None


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    """The active operator matching the credentials, or None."""
    user = crud.user.get_by_email(db, email)
    if user is None or not password or user.status != "active":
        logger.info("login refused for %s", email)
        return None
    ok, new_hash = verify_and_maybe_upgrade(password, user.hashed_password)
    if not ok:
        logger.info("login refused for %s: bad password", email)
        return None
    if new_hash:
        user.hashed_password = new_hash
        db.commit()
        logger.info("password hash of %s upgraded", user.email)
    return user
