"""Password hashing and complexity policy.

Hashes use bcrypt, which salts automatically. Inputs are truncated to 72
bytes, bcrypt's limit.
"""

from __future__ import annotations

import re

import bcrypt

MIN_PASSWORD_LENGTH = 8
_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{}|;':\",./<>?]")


def password_policy_errors(password: str) -> list[str]:
    """Return every complexity rule the password breaks (empty when valid)."""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain at least one special character")
    return errors


class PasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        # Checked against when the account does not exist so both paths cost one bcrypt round.
        self._dummy_hash = self.hash("dummy-password-for-timing")

    def hash(self, password: str) -> str:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def burn(self, password: str) -> None:
        """Spend the same effort as a real check without a stored hash."""
        self.verify(password, self._dummy_hash)
