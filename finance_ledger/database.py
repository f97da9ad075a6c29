"""SQLite persistence layer for the finance_ledger service.

The repository hides SQL details from the rest of the code. It relies on the
standard library :mod:`sqlite3` module and exposes two scopes:

* :meth:`SQLiteRepository.unit_of_work` opens a connection, takes the database
  write lock with ``BEGIN IMMEDIATE`` and commits or rolls back every statement
  issued through the yielded :class:`UnitOfWork` as one indivisible step.
* :meth:`SQLiteRepository.snapshot` opens a deferred read transaction so a
  group of reads observes one consistent state.

Monetary columns hold integer minor units (cents); conversion to and from
:class:`~decimal.Decimal` happens only in this module.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import pandas as pd

from .errors import ConstraintViolation
from .models import (
    Account,
    Budget,
    Category,
    RecurringTransaction,
    Transaction,
    User,
    from_cents,
    to_cents,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    category_type TEXT NOT NULL CHECK (category_type IN ('income', 'expense')),
    parent_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    account_type TEXT NOT NULL CHECK (
        account_type IN ('checking', 'savings', 'credit_card', 'investment', 'cash')
    ),
    balance_cents INTEGER NOT NULL DEFAULT 0,
    currency TEXT NOT NULL DEFAULT 'GBP',
    institution_name TEXT,
    account_number_last4 TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    category_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
    transaction_date TEXT NOT NULL,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    transaction_type TEXT NOT NULL CHECK (transaction_type IN ('debit', 'credit')),
    description TEXT,
    merchant_name TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CONSTRAINT unique_transaction UNIQUE (account_id, transaction_date, amount_cents, merchant_name)
);

CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    category_id TEXT NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    CONSTRAINT unique_user_category_period UNIQUE (user_id, category_id, start_date),
    CONSTRAINT valid_date_range CHECK (end_date > start_date)
);

CREATE TABLE IF NOT EXISTS recurring_transactions (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    category_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    description TEXT NOT NULL,
    frequency TEXT NOT NULL CHECK (
        frequency IN ('daily', 'weekly', 'biweekly', 'monthly', 'quarterly', 'yearly')
    ),
    start_date TEXT NOT NULL,
    end_date TEXT,
    next_occurrence TEXT NOT NULL,
    merchant_name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SQLiteRepository:
    """Encapsulates all SQLite access for the application.

    Every scope opens its own connection, so the repository can be shared
    between request threads and the scheduler.
    """

    def __init__(self, database_path: Path, busy_timeout: float = 30.0) -> None:
        self._database_path = database_path
        self._busy_timeout = busy_timeout

    def connect(self) -> sqlite3.Connection:
        """Open a connection in autocommit mode; scopes issue BEGIN themselves."""

        connection = sqlite3.connect(
            self._database_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        connection = self.connect()
        try:
            connection.executescript(SCHEMA_SQL)
        finally:
            connection.close()
        logger.info("Ledger schema ready at %s", self._database_path)

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------
    @contextmanager
    def unit_of_work(self) -> Iterator["UnitOfWork"]:
        """Run a group of writes atomically under the database write lock.

        ``sqlite3.IntegrityError`` raised inside the block is re-raised as
        :class:`ConstraintViolation` after the rollback.
        """

        connection = self.connect()
        try:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield UnitOfWork(connection)
            except sqlite3.IntegrityError as exc:
                _rollback(connection)
                raise ConstraintViolation(str(exc)) from exc
            except BaseException:
                _rollback(connection)
                raise
            else:
                connection.execute("COMMIT")
        finally:
            connection.close()

    @contextmanager
    def snapshot(self) -> Iterator["UnitOfWork"]:
        """Run a group of reads against one consistent database state."""

        connection = self.connect()
        try:
            connection.execute("BEGIN")
            try:
                yield UnitOfWork(connection)
            finally:
                _rollback(connection)
        finally:
            connection.close()


class UnitOfWork:
    """Row-level data access bound to one open database transaction."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def execute(self, sql: str, params: Iterable[Any] | dict[str, Any] = ()) -> sqlite3.Cursor:
        if isinstance(params, dict):
            return self._connection.execute(sql, params)
        return self._connection.execute(sql, tuple(params))

    def query_frame(self, sql: str, params: Iterable[Any] | dict[str, Any] = ()) -> pd.DataFrame:
        """Return the result of ``sql`` as a :class:`~pandas.DataFrame`."""

        if not isinstance(params, dict):
            params = tuple(params)
        return pd.read_sql_query(sql, self._connection, params=params)

    # ------------------------------------------------------------------
    # Users and categories
    # ------------------------------------------------------------------
    def insert_user(self, user: User) -> None:
        now = _timestamp()
        self.execute(
            """
            INSERT INTO users (id, email, first_name, last_name, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user.id, user.email, user.first_name, user.last_name, int(user.is_active), now, now),
        )

    def get_user(self, user_id: str) -> Optional[User]:
        row = self.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return User(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            is_active=bool(row["is_active"]),
            created_at=_parse_timestamp(row["created_at"]),
        )

    def insert_category(self, category: Category) -> None:
        self.execute(
            """
            INSERT INTO categories (id, name, category_type, parent_id, description, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                category.id,
                category.name,
                category.category_type,
                category.parent_id,
                category.description,
                _timestamp(),
            ),
        )

    def get_category(self, category_id: str) -> Optional[Category]:
        row = self.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
        if row is None:
            return None
        return _row_to_category(row)

    def list_categories(self) -> list[Category]:
        rows = self.execute("SELECT * FROM categories ORDER BY category_type, name").fetchall()
        return [_row_to_category(row) for row in rows]

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def insert_account(self, account: Account) -> None:
        now = _timestamp()
        self.execute(
            """
            INSERT INTO accounts (
                id, user_id, name, account_type, balance_cents, currency,
                institution_name, account_number_last4, is_active, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                account.id,
                account.user_id,
                account.name,
                account.account_type,
                to_cents(account.balance),
                account.currency,
                account.institution_name,
                account.account_number_last4,
                int(account.is_active),
                now,
                now,
            ),
        )

    def get_account(self, account_id: str) -> Optional[Account]:
        row = self.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        if row is None:
            return None
        return _row_to_account(row)

    def list_accounts(self) -> list[Account]:
        rows = self.execute("SELECT * FROM accounts ORDER BY created_at, id").fetchall()
        return [_row_to_account(row) for row in rows]

    def set_account_active(self, account_id: str, is_active: bool) -> bool:
        cursor = self.execute(
            "UPDATE accounts SET is_active = ?, updated_at = ? WHERE id = ?",
            (int(is_active), _timestamp(), account_id),
        )
        return cursor.rowcount == 1

    def adjust_account_balance(self, account_id: str, delta: Decimal) -> bool:
        """Add ``delta`` to the stored balance in place.

        The arithmetic happens inside the UPDATE statement so concurrent
        writers cannot lose each other's adjustments.
        """

        cursor = self.execute(
            """
            UPDATE accounts
            SET balance_cents = balance_cents + ?, updated_at = ?
            WHERE id = ?
            """,
            (to_cents(delta), _timestamp(), account_id),
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def insert_transaction(self, transaction: Transaction) -> None:
        now = _timestamp()
        self.execute(
            """
            INSERT INTO transactions (
                id, account_id, category_id, transaction_date, amount_cents,
                transaction_type, description, merchant_name, is_recurring, notes,
                created_at, updated_at
            ) VALUES (
                :id, :account_id, :category_id, :transaction_date, :amount_cents,
                :transaction_type, :description, :merchant_name, :is_recurring, :notes,
                :created_at, :updated_at
            )
            """,
            {**_transaction_params(transaction), "created_at": now, "updated_at": now},
        )

    def update_transaction(self, transaction: Transaction) -> None:
        self.execute(
            """
            UPDATE transactions SET
                account_id = :account_id,
                category_id = :category_id,
                transaction_date = :transaction_date,
                amount_cents = :amount_cents,
                transaction_type = :transaction_type,
                description = :description,
                merchant_name = :merchant_name,
                is_recurring = :is_recurring,
                notes = :notes,
                updated_at = :updated_at
            WHERE id = :id
            """,
            {**_transaction_params(transaction), "updated_at": _timestamp()},
        )

    def delete_transaction(self, transaction_id: str) -> None:
        self.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = self.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
        if row is None:
            return None
        return _row_to_transaction(row)

    def list_transactions(self, account_id: str, limit: int = 200) -> list[Transaction]:
        rows = self.execute(
            """
            SELECT * FROM transactions
            WHERE account_id = ?
            ORDER BY transaction_date DESC, created_at DESC
            LIMIT ?
            """,
            (account_id, limit),
        ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def signed_transaction_total(self, account_id: str) -> Decimal:
        """Recompute the signed sum of every transaction on an account."""

        row = self.execute(
            """
            SELECT COALESCE(SUM(
                CASE transaction_type
                    WHEN 'credit' THEN amount_cents
                    WHEN 'debit' THEN -amount_cents
                END
            ), 0) AS total_cents
            FROM transactions
            WHERE account_id = ?
            """,
            (account_id,),
        ).fetchone()
        return from_cents(int(row["total_cents"]))

    # ------------------------------------------------------------------
    # Recurring transactions
    # ------------------------------------------------------------------
    def insert_recurring(self, recurring: RecurringTransaction) -> None:
        now = _timestamp()
        self.execute(
            """
            INSERT INTO recurring_transactions (
                id, account_id, category_id, amount_cents, description, frequency,
                start_date, end_date, next_occurrence, merchant_name, is_active,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                recurring.id,
                recurring.account_id,
                recurring.category_id,
                to_cents(recurring.amount),
                recurring.description,
                recurring.frequency,
                recurring.start_date.isoformat(),
                _date_to_iso(recurring.end_date),
                recurring.next_occurrence.isoformat(),
                recurring.merchant_name,
                int(recurring.is_active),
                now,
                now,
            ),
        )

    def get_recurring(self, recurring_id: str) -> Optional[RecurringTransaction]:
        row = self.execute(
            "SELECT * FROM recurring_transactions WHERE id = ?",
            (recurring_id,),
        ).fetchone()
        if row is None:
            return None
        return _row_to_recurring(row)

    def list_due_recurring(self, as_of: date) -> list[RecurringTransaction]:
        rows = self.execute(
            """
            SELECT * FROM recurring_transactions
            WHERE is_active = 1
              AND next_occurrence <= :as_of
              AND (end_date IS NULL OR end_date >= :as_of)
            ORDER BY next_occurrence, id
            """,
            {"as_of": as_of.isoformat()},
        ).fetchall()
        return [_row_to_recurring(row) for row in rows]

    def set_next_occurrence(self, recurring_id: str, next_occurrence: date) -> None:
        self.execute(
            """
            UPDATE recurring_transactions
            SET next_occurrence = ?, updated_at = ?
            WHERE id = ?
            """,
            (next_occurrence.isoformat(), _timestamp(), recurring_id),
        )

    def set_recurring_active(self, recurring_id: str, is_active: bool) -> bool:
        cursor = self.execute(
            "UPDATE recurring_transactions SET is_active = ?, updated_at = ? WHERE id = ?",
            (int(is_active), _timestamp(), recurring_id),
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------
    def insert_budget(self, budget: Budget) -> None:
        self.execute(
            """
            INSERT INTO budgets (id, user_id, category_id, amount_cents, start_date, end_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                budget.id,
                budget.user_id,
                budget.category_id,
                to_cents(budget.amount),
                budget.start_date.isoformat(),
                budget.end_date.isoformat(),
                _timestamp(),
            ),
        )

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        self.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, value),
        )

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row["value"])


def _rollback(connection: sqlite3.Connection) -> None:
    if connection.in_transaction:
        connection.execute("ROLLBACK")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _date_to_iso(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _iso_to_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    return date.fromisoformat(value)


def _transaction_params(transaction: Transaction) -> dict[str, object]:
    return {
        "id": transaction.id,
        "account_id": transaction.account_id,
        "category_id": transaction.category_id,
        "transaction_date": transaction.transaction_date.isoformat(),
        "amount_cents": to_cents(transaction.amount),
        "transaction_type": transaction.transaction_type,
        "description": transaction.description,
        "merchant_name": transaction.merchant_name,
        "is_recurring": int(transaction.is_recurring),
        "notes": transaction.notes,
    }


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        category_type=row["category_type"],
        parent_id=row["parent_id"],
        description=row["description"],
    )


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        account_type=row["account_type"],
        balance=from_cents(int(row["balance_cents"])),
        currency=row["currency"],
        institution_name=row["institution_name"],
        account_number_last4=row["account_number_last4"],
        is_active=bool(row["is_active"]),
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        account_id=row["account_id"],
        category_id=row["category_id"],
        transaction_date=date.fromisoformat(row["transaction_date"]),
        amount=from_cents(int(row["amount_cents"])),
        transaction_type=row["transaction_type"],
        description=row["description"],
        merchant_name=row["merchant_name"],
        is_recurring=bool(row["is_recurring"]),
        notes=row["notes"],
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _row_to_recurring(row: sqlite3.Row) -> RecurringTransaction:
    return RecurringTransaction(
        id=row["id"],
        account_id=row["account_id"],
        category_id=row["category_id"],
        amount=from_cents(int(row["amount_cents"])),
        description=row["description"],
        frequency=row["frequency"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=_iso_to_date(row["end_date"]),
        next_occurrence=date.fromisoformat(row["next_occurrence"]),
        merchant_name=row["merchant_name"],
        is_active=bool(row["is_active"]),
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )
