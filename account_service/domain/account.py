from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Phone:
    """Contact number owned by an account; has no lifecycle of its own."""

    number: str
    city_code: str
    country_code: str


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered user and its credentials."""

    account_id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    last_login: datetime
    token: str | None = None
    active: bool = True
    phones: list[Phone] = field(default_factory=list)
    # 0 until first saved; the store bumps it on every write
    version: int = 0
