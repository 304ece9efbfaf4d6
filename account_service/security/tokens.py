"""Issuing and validating account session JWTs."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import jwt

from ..config import Settings

ALGORITHM = "HS256"


class TokenError(Exception):
    """Raised when a session token cannot be decoded or verified."""


@dataclass(slots=True, frozen=True)
class TokenClaims:
    """Verified contents of a session token."""

    subject: str
    account_id: str
    issued_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTokenIssuer:
    """Creates and verifies signed, time-limited tokens bound to an account."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int,
        *,
        issuer: str = "accounts.identity",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret = secret
        self._ttl_seconds = ttl_seconds
        self._issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionTokenIssuer":
        return cls(
            settings.jwt_secret,
            settings.jwt_ttl_seconds,
            issuer=settings.jwt_issuer,
        )

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, account_id: str, email: str) -> str:
        """Create a signed JWT for an account.

        Parameters
        ----------
        account_id:
            Account identifier embedded in the ``jti`` claim.
        email:
            Account email embedded in the ``sub`` claim.

        Returns
        -------
        str
            The encoded token. Two tokens issued for the same account within
            the same second still differ thanks to the random ``nonce`` claim.
        """

        now = int(self._clock().timestamp())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": email,
            "jti": account_id,
            "iat": now,
            "exp": now + self._ttl_seconds,
            "nonce": secrets.token_urlsafe(8),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> bool:
        """Return ``True`` iff the signature is valid and the token has not expired."""
        try:
            self._decode(token)
        except TokenError:
            return False
        return True

    def subject_of(self, token: str) -> str:
        """Return the email embedded in ``token``.

        Raises
        ------
        TokenError
            When the token is malformed, expired, or signed with another key.
        """
        return self.claims_of(token).subject

    def claims_of(self, token: str) -> TokenClaims:
        """Decode ``token`` into :class:`TokenClaims`, raising ``TokenError`` on failure."""
        payload = self._decode(token)
        return TokenClaims(
            subject=payload["sub"],
            account_id=payload["jti"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                # time claims are checked against the injected clock below
                options={
                    "require": ["exp", "iat", "sub", "jti"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            raise TokenError(str(exc)) from exc

        issued_at, expires_at = payload["iat"], payload["exp"]
        if not isinstance(issued_at, (int, float)) or not isinstance(expires_at, (int, float)):
            raise TokenError("iat and exp must be numeric")
        now = self._clock().timestamp()
        if expires_at <= now:
            raise TokenError("Signature has expired")
        if issued_at > now:
            raise TokenError("The token is not yet valid (iat)")
        return payload
