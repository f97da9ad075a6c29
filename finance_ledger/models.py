"""Domain models used by the finance_ledger service.

The classes defined here are lightweight data containers that do not know
anything about persistence or transport concerns. Monetary values are always
:class:`~decimal.Decimal`; the repository converts them to integer minor units
(cents) at the storage boundary.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class TransactionType(str, Enum):
    """Direction of a transaction: debit is money out, credit is money in."""

    DEBIT = "debit"
    CREDIT = "credit"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    INVESTMENT = "investment"
    CASH = "cash"


class CategoryType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Cadence(str, Enum):
    """Recurrence interval of a recurring transaction definition."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


@dataclass(slots=True)
class User:
    id: str
    email: str
    first_name: str
    last_name: str
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class Category:
    id: str
    name: str
    category_type: str
    parent_id: Optional[str] = None
    description: Optional[str] = None


@dataclass(slots=True)
class Account:
    """A ledger account whose :attr:`balance` is maintained by the ledger.

    The balance is never written directly by callers: it only moves through
    :class:`~finance_ledger.ledger.LedgerService` when transactions are
    created, changed or deleted.
    """

    id: str
    user_id: str
    name: str
    account_type: str
    balance: Decimal = ZERO
    currency: str = "GBP"
    institution_name: Optional[str] = None
    account_number_last4: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class TransactionDraft:
    """Input for a new transaction, before it has an identity."""

    account_id: str
    transaction_date: date
    amount: Decimal
    transaction_type: str
    category_id: Optional[str] = None
    description: Optional[str] = None
    merchant_name: Optional[str] = None
    notes: Optional[str] = None
    is_recurring: bool = False


@dataclass(slots=True)
class Transaction:
    id: str
    account_id: str
    transaction_date: date
    amount: Decimal
    transaction_type: str
    category_id: Optional[str] = None
    description: Optional[str] = None
    merchant_name: Optional[str] = None
    notes: Optional[str] = None
    is_recurring: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def signed_amount(self) -> Decimal:
        """Return the balance impact of the transaction.

        Credits increase the owning account's balance and debits reduce it.
        """

        return signed(self.amount, self.transaction_type)


@dataclass(slots=True)
class RecurringTransaction:
    """A recurring obligation (bill, subscription) that the scheduler turns
    into concrete transactions."""

    id: str
    account_id: str
    amount: Decimal
    description: str
    frequency: str
    start_date: date
    next_occurrence: date
    end_date: Optional[date] = None
    category_id: Optional[str] = None
    merchant_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_due(self, as_of: date) -> bool:
        if not self.is_active or self.next_occurrence > as_of:
            return False
        return self.end_date is None or self.end_date >= as_of


@dataclass(slots=True)
class Budget:
    id: str
    user_id: str
    category_id: str
    amount: Decimal
    start_date: date
    end_date: date


@dataclass(slots=True)
class ReconciliationResult:
    """Outcome of comparing an account's stored balance with the signed sum
    of its transactions."""

    account_id: str
    stored_balance: Decimal
    calculated_balance: Decimal
    difference: Decimal
    is_reconciled: bool


@dataclass(slots=True)
class SchedulerFailure:
    recurring_id: str
    occurrence: date
    reason: str


@dataclass(slots=True)
class SchedulerRun:
    """Summary of one :meth:`RecurringScheduler.process_due` call."""

    as_of: date
    processed: int = 0
    failures: list[SchedulerFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def signed(amount: Decimal, transaction_type: str) -> Decimal:
    if transaction_type == TransactionType.CREDIT.value:
        return amount
    if transaction_type == TransactionType.DEBIT.value:
        return -amount
    raise ValueError(f"unknown transaction type {transaction_type!r}")


def to_cents(amount: Decimal) -> int:
    """Convert a cent-precision decimal amount to integer minor units."""

    return int((amount / CENT).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


__all__ = [
    "CENT",
    "ZERO",
    "TransactionType",
    "AccountType",
    "CategoryType",
    "Cadence",
    "User",
    "Category",
    "Account",
    "TransactionDraft",
    "Transaction",
    "RecurringTransaction",
    "Budget",
    "ReconciliationResult",
    "SchedulerFailure",
    "SchedulerRun",
    "signed",
    "to_cents",
    "from_cents",
]
