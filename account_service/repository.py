"""Postgres-backed account persistence."""

from __future__ import annotations

import logging

from psycopg import errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, Phone
from .domain.errors import (
    AccountError,
    AccountNotFoundError,
    ConcurrentModificationError,
    EmailAlreadyExistsError,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id    TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    email         TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    active        BOOLEAN NOT NULL DEFAULT TRUE,
    created_at    TIMESTAMPTZ NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL,
    last_login    TIMESTAMPTZ NOT NULL,
    token         TEXT,
    version       INTEGER NOT NULL DEFAULT 1,
    seq           BIGSERIAL
);
ALTER TABLE accounts ADD COLUMN IF NOT EXISTS version INTEGER NOT NULL DEFAULT 1;
CREATE UNIQUE INDEX IF NOT EXISTS accounts_email_lower_idx ON accounts (lower(email));
CREATE TABLE IF NOT EXISTS account_phones (
    account_id   TEXT NOT NULL REFERENCES accounts (account_id) ON DELETE CASCADE,
    position     INTEGER NOT NULL,
    number       TEXT NOT NULL,
    city_code    TEXT NOT NULL,
    country_code TEXT NOT NULL,
    PRIMARY KEY (account_id, position)
);
"""

_ACCOUNT_COLUMNS = (
    "account_id, name, email, password_hash, active, created_at, updated_at, last_login, token, version"
)


class PostgresAccountStore:
    """Account store on Postgres.

    Email uniqueness comes from a ``lower(email)`` index and stale writes are
    refused through the ``version`` column.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self) -> None:
        """Create the account tables and indexes when they do not exist yet."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()

    def save(self, account: Account) -> Account:
        """Insert a new account or update a stored one whose version still matches.

        Phones are replaced in the same transaction. The returned account
        carries the version written by this call.
        """
        with self._pool.connection() as conn:
            try:
                with conn.cursor(row_factory=tuple_row) as cur:
                    if account.version == 0:
                        row = self._insert(cur, account)
                    else:
                        row = self._update(cur, account)
                    if row is None:
                        conflict = self._write_conflict(cur, account)
                        conn.rollback()
                        raise conflict
                    cur.execute("DELETE FROM account_phones WHERE account_id = %s", (account.account_id,))
                    if account.phones:
                        cur.executemany(
                            """
                            INSERT INTO account_phones (account_id, position, number, city_code, country_code)
                            VALUES (%s, %s, %s, %s, %s)
                            """,
                            [
                                (account.account_id, position, p.number, p.city_code, p.country_code)
                                for position, p in enumerate(account.phones)
                            ],
                        )
                conn.commit()
            except errors.UniqueViolation as exc:
                conn.rollback()
                logger.info("email uniqueness violated on save account_id=%s", account.account_id)
                raise EmailAlreadyExistsError(account.email) from exc

        return self._map_record(row, list(account.phones))

    def _insert(self, cur, account: Account) -> tuple | None:
        cur.execute(
            f"""
            INSERT INTO accounts ({_ACCOUNT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 1)
            ON CONFLICT (account_id) DO NOTHING
            RETURNING {_ACCOUNT_COLUMNS}
            """,
            (
                account.account_id,
                account.name,
                account.email,
                account.password_hash,
                account.active,
                account.created_at,
                account.updated_at,
                account.last_login,
                account.token,
            ),
        )
        return cur.fetchone()

    def _update(self, cur, account: Account) -> tuple | None:
        cur.execute(
            f"""
            UPDATE accounts SET
                name = %s,
                email = %s,
                password_hash = %s,
                active = %s,
                updated_at = %s,
                last_login = %s,
                token = %s,
                version = version + 1
            WHERE account_id = %s AND version = %s
            RETURNING {_ACCOUNT_COLUMNS}
            """,
            (
                account.name,
                account.email,
                account.password_hash,
                account.active,
                account.updated_at,
                account.last_login,
                account.token,
                account.account_id,
                account.version,
            ),
        )
        return cur.fetchone()

    def _write_conflict(self, cur, account: Account) -> AccountError:
        """Explain why a versioned write matched no row."""
        if account.version == 0:
            logger.info("account id already taken on insert account_id=%s", account.account_id)
            return ConcurrentModificationError(account.account_id)
        cur.execute("SELECT version FROM accounts WHERE account_id = %s", (account.account_id,))
        current = cur.fetchone()
        if current is None:
            logger.info("account vanished before save account_id=%s", account.account_id)
            return AccountNotFoundError(account.account_id)
        logger.info(
            "stale account version account_id=%s expected=%s stored=%s",
            account.account_id,
            account.version,
            current[0],
        )
        return ConcurrentModificationError(account.account_id)

    def find_by_email(self, email: str) -> Account | None:
        """Fetch an account by case-insensitive email or return ``None``."""
        return self._find_one("lower(email) = lower(%s)", email)

    def find_by_id(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        return self._find_one("account_id = %s", account_id)

    def delete_by_id(self, account_id: str) -> None:
        """Remove the account; phones go with it through the cascading foreign key."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))
            conn.commit()

    def find_page(self, page: int, size: int) -> list[Account]:
        """Return accounts in insertion order for the given zero-based page."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    ORDER BY seq
                    LIMIT %s OFFSET %s
                    """,
                    (size, max(page, 0) * size),
                )
                rows = cur.fetchall()
                phones = self._load_phones(cur, [row[0] for row in rows])
        return [self._map_record(row, phones.get(row[0], [])) for row in rows]

    def count(self) -> int:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT count(*) FROM accounts")
                (total,) = cur.fetchone()
        return int(total)

    def _find_one(self, where_sql: str, value: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE {where_sql}",
                    (value,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                phones = self._load_phones(cur, [row[0]])
        return self._map_record(row, phones.get(row[0], []))

    def _load_phones(self, cur, account_ids: list[str]) -> dict[str, list[Phone]]:
        """Return phones grouped by account, each list in its stored order."""
        if not account_ids:
            return {}
        cur.execute(
            """
            SELECT account_id, number, city_code, country_code
            FROM account_phones
            WHERE account_id = ANY(%s)
            ORDER BY account_id, position
            """,
            (account_ids,),
        )
        grouped: dict[str, list[Phone]] = {}
        for account_id, number, city_code, country_code in cur.fetchall():
            grouped.setdefault(account_id, []).append(
                Phone(number=number, city_code=city_code, country_code=country_code)
            )
        return grouped

    def _map_record(self, row: tuple, phones: list[Phone]) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            name=row[1],
            email=row[2],
            password_hash=row[3],
            active=row[4],
            created_at=row[5],
            updated_at=row[6],
            last_login=row[7],
            token=row[8],
            version=row[9],
            phones=phones,
        )
