"""Domain-level request contracts and read projections shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar, Union

from .account import Account, Phone

T = TypeVar("T")


class Unset(Enum):
    """Marker for a partial-update field the caller did not provide."""

    UNSET = "unset"

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = Unset.UNSET

Maybe = Union[T, Unset]


@dataclass(slots=True, frozen=True)
class PhoneInput:
    number: str
    city_code: str
    country_code: str

    def to_phone(self) -> Phone:
        return Phone(number=self.number, city_code=self.city_code, country_code=self.country_code)


@dataclass(slots=True)
class CreateAccountInput:
    """Inputs required to register an account."""

    name: str
    email: str
    password: str
    phones: list[PhoneInput] | None = None


@dataclass(slots=True)
class UpdateAccountInput:
    """Partial update; every field left as ``UNSET`` keeps its stored value.

    ``phones=[]`` clears the collection while ``phones=UNSET`` leaves it alone.
    """

    name: Maybe[str] = UNSET
    email: Maybe[str] = UNSET
    password: Maybe[str] = UNSET
    active: Maybe[bool] = UNSET
    phones: Maybe[list[PhoneInput]] = UNSET


@dataclass(slots=True, frozen=True)
class PhoneView:
    number: str
    city_code: str
    country_code: str


@dataclass(slots=True, frozen=True)
class AccountView:
    """Read-only projection of an ``Account`` without its password hash."""

    account_id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime
    last_login: datetime
    token: str | None
    active: bool
    phones: tuple[PhoneView, ...] = ()

    @classmethod
    def from_domain(cls, account: Account) -> "AccountView":
        """Build a view from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            name=account.name,
            email=account.email,
            created_at=account.created_at,
            updated_at=account.updated_at,
            last_login=account.last_login,
            token=account.token,
            active=account.active,
            phones=tuple(
                PhoneView(number=p.number, city_code=p.city_code, country_code=p.country_code)
                for p in account.phones
            ),
        )


@dataclass(frozen=True)
class PagedView(Generic[T]):
    content: list[T] = field(default_factory=list)
    page: int = 0
    size: int = 10
    total_elements: int = 0
    total_pages: int = 0
