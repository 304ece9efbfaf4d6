"""Password hashing backed by bcrypt."""

from __future__ import annotations

import bcrypt


class PasswordHasher:
    """One-way hashing and verification of account passwords.

    Strength rules are not enforced here; the account service validates the
    password against its configured pattern before hashing.

    Examples
    --------
    >>> hasher = PasswordHasher(rounds=4)
    >>> hashed = hasher.hash("Secret123")
    >>> hasher.verify("Secret123", hashed)
    True
    >>> hasher.verify("secret123", hashed)
    False
    """

    def __init__(self, rounds: int = 12) -> None:
        """Initialise the hasher.

        Parameters
        ----------
        rounds:
            bcrypt work factor (log2 of iterations) embedded in new hashes.
        """
        self._rounds = rounds

    def hash(self, password: str) -> str:
        """Return a salted bcrypt hash for ``password``.

        Raises
        ------
        ValueError
            Propagated from bcrypt when the password exceeds 72 bytes.
        """
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` when ``password`` matches ``password_hash``; never raises."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            # malformed hash or non-string input
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        """Return ``True`` when the hash was produced with a different work factor."""
        # bcrypt format: $2b$<rounds>$<salt+digest>
        parts = password_hash.split("$")
        try:
            return int(parts[2]) != self._rounds
        except (ValueError, IndexError):
            return True
