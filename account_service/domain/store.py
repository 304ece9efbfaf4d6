"""Account persistence contract and the in-memory reference store."""

from __future__ import annotations

import copy
from threading import Lock
from typing import Protocol

from .account import Account
from .errors import AccountNotFoundError, ConcurrentModificationError, EmailAlreadyExistsError


class AccountStore(Protocol):
    """Persistence port consumed by ``AccountService``.

    Implementations compare emails case-insensitively and must refuse to save
    an account whose email already belongs to a different account, raising
    ``EmailAlreadyExistsError``. That check has to be atomic with the write.

    ``save`` is optimistic: an account with ``version == 0`` is inserted, any
    other version must match the stored row. A stored row that is gone raises
    ``AccountNotFoundError`` and one with another version raises
    ``ConcurrentModificationError``. The returned copy carries the new version.
    """

    def save(self, account: Account) -> Account: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def delete_by_id(self, account_id: str) -> None: ...

    def find_page(self, page: int, size: int) -> list[Account]: ...

    def count(self) -> int: ...


class InMemoryAccountStore:
    """Thread-safe dict-backed store that lists accounts in insertion order.

    Accounts are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._ids_by_email: dict[str, str] = {}
        self._lock = Lock()

    def save(self, account: Account) -> Account:
        key = account.email.lower()
        with self._lock:
            owner = self._ids_by_email.get(key)
            if owner is not None and owner != account.account_id:
                raise EmailAlreadyExistsError(account.email)

            previous = self._accounts.get(account.account_id)
            if account.version == 0:
                if previous is not None:
                    raise ConcurrentModificationError(account.account_id)
            elif previous is None:
                raise AccountNotFoundError(account.account_id)
            elif previous.version != account.version:
                raise ConcurrentModificationError(account.account_id)

            if previous is not None and previous.email.lower() != key:
                del self._ids_by_email[previous.email.lower()]

            stored = copy.deepcopy(account)
            stored.version = account.version + 1
            self._accounts[account.account_id] = stored
            self._ids_by_email[key] = account.account_id
            return copy.deepcopy(stored)

    def find_by_email(self, email: str) -> Account | None:
        with self._lock:
            account_id = self._ids_by_email.get(email.lower())
            if account_id is None:
                return None
            return copy.deepcopy(self._accounts[account_id])

    def find_by_id(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return copy.deepcopy(account) if account is not None else None

    def delete_by_id(self, account_id: str) -> None:
        with self._lock:
            account = self._accounts.pop(account_id, None)
            if account is not None:
                self._ids_by_email.pop(account.email.lower(), None)

    def find_page(self, page: int, size: int) -> list[Account]:
        start = max(page, 0) * size
        with self._lock:
            selected = list(self._accounts.values())[start : start + size]
            return [copy.deepcopy(account) for account in selected]

    def count(self) -> int:
        with self._lock:
            return len(self._accounts)
