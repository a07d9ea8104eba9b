"""
Identity - Password Hashing

bcrypt via passlib. The salt is generated by passlib from the OS random
source; the cost factor comes from settings.
"""

import logging
from typing import Optional

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

DEFAULT_BCRYPT_ROUNDS = 12


class PasswordHasher:
    """Salted one-way password hashing."""

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS):
        self.rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def hash(self, password: str) -> str:
        """Hash a password"""
        return self._context.hash(password)

    def verify(self, plain_password: str, hashed_password: Optional[str]) -> bool:
        """Verify a password against its hash"""
        if not hashed_password:
            return False
        try:
            return self._context.verify(plain_password, hashed_password)
        except (ValueError, TypeError) as e:
            # Malformed stored hash: treat as mismatch
            logger.error(f"Password verification error: {e}")
            return False
