from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest

from account_service.config import Settings
from account_service.domain.service import AccountService
from account_service.domain.store import InMemoryAccountStore
from account_service.security.passwords import PasswordHasher
from account_service.security.tokens import SessionTokenIssuer

TEST_SECRET = "unit-test-secret-with-at-least-32-bytes"


class FrozenClock:
    """Manually advanced clock so timestamps are predictable in assertions."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def hasher() -> PasswordHasher:
    # minimum bcrypt cost keeps the suite fast
    return PasswordHasher(rounds=4)


@pytest.fixture
def tokens() -> SessionTokenIssuer:
    return SessionTokenIssuer(TEST_SECRET, ttl_seconds=3600, issuer="accounts.test")


@pytest.fixture
def service(store, hasher, tokens, clock) -> AccountService:
    settings = Settings()
    return AccountService(
        store,
        hasher,
        tokens,
        email_pattern=re.compile(settings.email_regex),
        password_pattern=re.compile(settings.password_regex),
        clock=clock,
    )
