"""Account service orchestrating validation, hashing, token issuance and persistence."""

from __future__ import annotations

import logging
import math
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from .account import Account, Phone
from .contracts import (
    UNSET,
    AccountView,
    CreateAccountInput,
    PagedView,
    PhoneInput,
    UpdateAccountInput,
)
from .errors import (
    AccountNotFoundError,
    EmailAlreadyExistsError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidPasswordError,
)
from .store import AccountStore
from ..security.passwords import PasswordHasher
from ..security.tokens import SessionTokenIssuer

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountService:
    """Account lifecycle workflows: registration, login, lookup, update, removal.

    The service keeps no state of its own. Business-rule failures are raised as
    ``AccountError`` subclasses. Every read-modify-write carries the version it
    read, so the store refuses a write that would overwrite a newer change.
    """

    def __init__(
        self,
        store: AccountStore,
        hasher: PasswordHasher,
        tokens: SessionTokenIssuer,
        *,
        email_pattern: re.Pattern[str],
        password_pattern: re.Pattern[str],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store dependencies used to orchestrate persistence, hashing and token issuance."""
        self._store = store
        self._hasher = hasher
        self._tokens = tokens
        self._email_pattern = email_pattern
        self._password_pattern = password_pattern
        self._clock = clock

    def create_account(self, payload: CreateAccountInput) -> AccountView:
        """Register a new account and return its view, including a fresh session token."""
        logger.info("creating account name=%s email=%s", payload.name, payload.email)
        email = self._validate_email(payload.email)
        self._validate_password(payload.password)
        self._ensure_email_available(email)

        now = self._clock()
        account = Account(
            account_id=str(uuid.uuid4()),
            name=payload.name,
            email=email,
            password_hash=self._hasher.hash(payload.password),
            created_at=now,
            updated_at=now,
            last_login=now,
            active=True,
            phones=_to_phones(payload.phones),
        )
        account.token = self._tokens.issue(account.account_id, account.email)
        logger.debug("account built account_id=%s phones=%d", account.account_id, len(account.phones))

        saved = self._store.save(account)
        logger.info("account created account_id=%s email=%s", saved.account_id, saved.email)
        return AccountView.from_domain(saved)

    def authenticate(self, email: str, password: str) -> AccountView:
        """Check credentials, rotate the session token and record the login time.

        Unknown emails and wrong passwords both raise ``InvalidCredentialsError``,
        as does an account deleted between the lookup and the write. A concurrent
        change to the same account raises ``ConcurrentModificationError``.
        """
        logger.info("login attempt email=%s", email)
        account = self._store.find_by_email(email.lower())
        if account is None:
            logger.warning("login rejected: unknown email=%s", email)
            raise InvalidCredentialsError()
        if not self._hasher.verify(password, account.password_hash):
            logger.warning("login rejected: password mismatch email=%s", email)
            raise InvalidCredentialsError()

        now = self._clock()
        account.last_login = now
        account.updated_at = self._advance(account.updated_at, now)
        account.token = self._tokens.issue(account.account_id, account.email)
        if self._hasher.needs_rehash(account.password_hash):
            logger.info("re-hashing password with current work factor account_id=%s", account.account_id)
            account.password_hash = self._hasher.hash(password)

        try:
            saved = self._store.save(account)
        except AccountNotFoundError as exc:
            logger.warning("login rejected: account removed during login email=%s", email)
            raise InvalidCredentialsError() from exc
        logger.info("login succeeded account_id=%s", saved.account_id)
        return AccountView.from_domain(saved)

    def get_by_id(self, account_id: str) -> AccountView:
        """Return the account view or raise ``AccountNotFoundError``."""
        return AccountView.from_domain(self._require(account_id))

    def list_paged(self, page: int, size: int) -> PagedView[AccountView]:
        """Return one page of accounts in store order.

        Negative pages are treated as page 0 and non-positive sizes as the
        default size. Pages past the end yield empty content.
        """
        page = max(page, 0)
        size = size if size > 0 else DEFAULT_PAGE_SIZE
        logger.info("listing accounts page=%s size=%s", page, size)

        accounts = self._store.find_page(page, size)
        total = self._store.count()
        return PagedView(
            content=[AccountView.from_domain(account) for account in accounts],
            page=page,
            size=size,
            total_elements=total,
            total_pages=math.ceil(total / size) if total else 0,
        )

    def update(self, account_id: str, changes: UpdateAccountInput) -> AccountView:
        """Apply a partial update; fields left ``UNSET`` keep their stored values."""
        logger.info("updating account account_id=%s", account_id)
        account = self._require(account_id)

        if changes.name is not UNSET and changes.name and changes.name.strip():
            account.name = changes.name

        if changes.email is not UNSET and changes.email and changes.email.strip():
            email = self._validate_email(changes.email)
            if email != account.email.lower():
                self._ensure_email_available(email)
            account.email = email

        if changes.password is not UNSET and changes.password and changes.password.strip():
            self._validate_password(changes.password)
            account.password_hash = self._hasher.hash(changes.password)

        if changes.active is not UNSET and changes.active is not None:
            account.active = changes.active

        if changes.phones is not UNSET and changes.phones is not None:
            account.phones = _to_phones(changes.phones)

        account.updated_at = self._advance(account.updated_at, self._clock())
        saved = self._store.save(account)
        logger.info("account updated account_id=%s", saved.account_id)
        return AccountView.from_domain(saved)

    def delete_by_id(self, account_id: str) -> None:
        """Remove an account; later lookups by its identifier fail with not-found."""
        logger.info("deleting account account_id=%s", account_id)
        self._require(account_id)
        self._store.delete_by_id(account_id)
        logger.info("account deleted account_id=%s", account_id)

    def _require(self, account_id: str) -> Account:
        account = self._store.find_by_id(account_id)
        if account is None:
            logger.warning("account not found account_id=%s", account_id)
            raise AccountNotFoundError(account_id)
        return account

    def _validate_email(self, email: str) -> str:
        if not self._email_pattern.fullmatch(email):
            logger.debug("invalid email format email=%s", email)
            raise InvalidEmailError(email)
        return email.lower()

    def _validate_password(self, password: str) -> None:
        if not self._password_pattern.fullmatch(password):
            logger.debug("password failed strength pattern")
            raise InvalidPasswordError()

    def _ensure_email_available(self, email: str) -> None:
        if self._store.find_by_email(email) is not None:
            logger.warning("email already registered email=%s", email)
            raise EmailAlreadyExistsError(email)

    @staticmethod
    def _advance(previous: datetime, now: datetime) -> datetime:
        # updated_at must strictly increase even when the clock has not ticked
        if now <= previous:
            return previous + timedelta(microseconds=1)
        return now


def _to_phones(phones: list[PhoneInput] | None) -> list[Phone]:
    if not phones:
        return []
    return [phone.to_phone() for phone in phones]
