"""Ledger balance maintenance.

:class:`LedgerService` is the only code path that changes an account balance.
Each transaction mutation and its compensating balance adjustment run inside a
single :meth:`SQLiteRepository.unit_of_work`, so an observer either sees both
or neither. The stored balance is adjusted incrementally (one UPDATE per
affected account) instead of being recomputed from history; :meth:`reconcile`
recomputes it independently to detect drift.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional
from uuid import uuid4

from .database import SQLiteRepository, UnitOfWork
from .errors import ConstraintViolation, NotFoundError, ValidationError
from .models import (
    CENT,
    ZERO,
    Account,
    AccountType,
    ReconciliationResult,
    Transaction,
    TransactionDraft,
    TransactionType,
)

logger = logging.getLogger(__name__)

# Stored and recomputed balances further apart than this are reported as drift.
BALANCE_TOLERANCE = CENT

EDITABLE_FIELDS = frozenset(
    {
        "account_id",
        "category_id",
        "transaction_date",
        "amount",
        "transaction_type",
        "description",
        "merchant_name",
        "notes",
    }
)


class LedgerService:
    """Create, change and delete transactions while keeping balances in step."""

    def __init__(self, repository: SQLiteRepository, default_currency: str = "GBP") -> None:
        self._repository = repository
        self._default_currency = default_currency

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def create_account(
        self,
        user_id: str,
        name: str,
        account_type: str,
        opening_balance: Decimal | int | str = ZERO,
        opened_on: Optional[date] = None,
        currency: Optional[str] = None,
        institution_name: Optional[str] = None,
        account_number_last4: Optional[str] = None,
    ) -> Account:
        """Create an account, recording any opening balance as a transaction.

        A non-zero opening balance becomes a credit (or a debit, when
        negative) dated ``opened_on`` so the balance always equals the signed
        sum of the account's transactions.
        """

        if not name or not name.strip():
            raise ValidationError("account name is required")
        account_type = coerce_choice(AccountType, account_type, "account type")
        opening = _coerce_decimal(opening_balance, "opening balance")
        if opening != opening.quantize(CENT):
            raise ValidationError("opening balance must be expressed in whole minor units")
        if account_number_last4 is not None and not (
            len(account_number_last4) == 4 and account_number_last4.isdigit()
        ):
            raise ValidationError("account_number_last4 must be four digits")

        account = Account(
            id=str(uuid4()),
            user_id=user_id,
            name=name.strip(),
            account_type=account_type,
            currency=(currency or self._default_currency).upper(),
            institution_name=institution_name,
            account_number_last4=account_number_last4,
        )
        with self._repository.unit_of_work() as uow:
            uow.insert_account(account)
            if opening != ZERO:
                direction = TransactionType.CREDIT if opening > ZERO else TransactionType.DEBIT
                self.apply_create(
                    uow,
                    TransactionDraft(
                        account_id=account.id,
                        transaction_date=opened_on or date.today(),
                        amount=abs(opening),
                        transaction_type=direction.value,
                        description="Opening balance",
                    ),
                )
            created = uow.get_account(account.id)
        logger.info("Created %s account %s (%s)", account_type, account.id, account.name)
        return created

    def get_account(self, account_id: str) -> Account:
        with self._repository.snapshot() as uow:
            account = uow.get_account(account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    def deactivate_account(self, account_id: str) -> Account:
        """Soft-delete an account; its transactions and balance are kept."""

        with self._repository.unit_of_work() as uow:
            if not uow.set_account_active(account_id, False):
                raise NotFoundError("account", account_id)
            account = uow.get_account(account_id)
        logger.info("Deactivated account %s", account_id)
        return account

    def list_transactions(self, account_id: str, limit: int = 200) -> list[Transaction]:
        with self._repository.snapshot() as uow:
            if uow.get_account(account_id) is None:
                raise NotFoundError("account", account_id)
            return uow.list_transactions(account_id, limit)

    # ------------------------------------------------------------------
    # Transaction mutations
    # ------------------------------------------------------------------
    def create_transaction(self, draft: TransactionDraft) -> Transaction:
        with self._repository.unit_of_work() as uow:
            return self.apply_create(uow, draft)

    def update_transaction(self, transaction_id: str, changes: Mapping[str, object]) -> Transaction:
        with self._repository.unit_of_work() as uow:
            return self.apply_update(uow, transaction_id, changes)

    def delete_transaction(self, transaction_id: str) -> Transaction:
        with self._repository.unit_of_work() as uow:
            return self.apply_delete(uow, transaction_id)

    def get_transaction(self, transaction_id: str) -> Transaction:
        with self._repository.snapshot() as uow:
            transaction = uow.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    # The apply_* methods run inside a caller-owned unit of work so that other
    # services (the recurring scheduler) reuse the same balance path.

    def apply_create(self, uow: UnitOfWork, draft: TransactionDraft) -> Transaction:
        transaction = Transaction(
            id=str(uuid4()),
            account_id=draft.account_id,
            category_id=draft.category_id,
            transaction_date=coerce_date(draft.transaction_date),
            amount=validate_amount(draft.amount),
            transaction_type=validate_direction(draft.transaction_type),
            description=draft.description,
            merchant_name=draft.merchant_name,
            notes=draft.notes,
            is_recurring=draft.is_recurring,
        )
        uow.insert_transaction(transaction)
        self._adjust(uow, transaction.account_id, transaction.signed_amount())
        logger.debug(
            "Account %s balance updated: %s %s",
            transaction.account_id,
            transaction.transaction_type,
            transaction.amount,
        )
        return uow.get_transaction(transaction.id)

    def apply_update(
        self,
        uow: UnitOfWork,
        transaction_id: str,
        changes: Mapping[str, object],
    ) -> Transaction:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot change field(s): {', '.join(sorted(unknown))}")

        previous = uow.get_transaction(transaction_id)
        if previous is None:
            raise NotFoundError("transaction", transaction_id)

        updated = replace(previous, **changes)
        updated.amount = validate_amount(updated.amount)
        updated.transaction_type = validate_direction(updated.transaction_type)
        updated.transaction_date = coerce_date(updated.transaction_date)
        if not updated.account_id:
            raise ValidationError("account_id is required")

        uow.update_transaction(updated)
        self._adjust(uow, previous.account_id, -previous.signed_amount())
        self._adjust(uow, updated.account_id, updated.signed_amount())
        logger.debug(
            "Transaction %s moved from %s %s on %s to %s %s on %s",
            transaction_id,
            previous.transaction_type,
            previous.amount,
            previous.account_id,
            updated.transaction_type,
            updated.amount,
            updated.account_id,
        )
        return uow.get_transaction(transaction_id)

    def apply_delete(self, uow: UnitOfWork, transaction_id: str) -> Transaction:
        transaction = uow.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        uow.delete_transaction(transaction_id)
        self._adjust(uow, transaction.account_id, -transaction.signed_amount())
        logger.debug("Transaction %s removed from account %s", transaction_id, transaction.account_id)
        return transaction

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile(self, account_id: str) -> ReconciliationResult:
        """Compare the stored balance with a full recomputation.

        Read-only. A mismatch is reported, never corrected.
        """

        with self._repository.snapshot() as uow:
            return reconcile_account(uow, account_id)

    @staticmethod
    def _adjust(uow: UnitOfWork, account_id: str, delta: Decimal) -> None:
        if not uow.adjust_account_balance(account_id, delta):
            raise ConstraintViolation(f"account {account_id} does not exist")


def reconcile_account(uow: UnitOfWork, account_id: str) -> ReconciliationResult:
    account = uow.get_account(account_id)
    if account is None:
        raise NotFoundError("account", account_id)
    calculated = uow.signed_transaction_total(account_id)
    difference = account.balance - calculated
    return ReconciliationResult(
        account_id=account_id,
        stored_balance=account.balance,
        calculated_balance=calculated,
        difference=difference,
        is_reconciled=abs(difference) < BALANCE_TOLERANCE,
    )


def validate_amount(value: object) -> Decimal:
    """Return ``value`` as a strictly positive, cent-precision decimal."""

    amount = _coerce_decimal(value, "amount")
    if amount == ZERO:
        raise ValidationError("Transaction amount cannot be zero")
    if amount < ZERO:
        raise ValidationError(
            "Transaction amount must be positive. Use transaction_type to indicate direction."
        )
    if amount != amount.quantize(CENT):
        raise ValidationError("Transaction amount must be expressed in whole minor units")
    return amount.quantize(CENT)


def validate_direction(value: object) -> str:
    return coerce_choice(TransactionType, value, "transaction type")


def _coerce_decimal(value: object, label: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{label} {value!r} is not a number") from exc
    if not amount.is_finite():
        raise ValidationError(f"{label} must be finite")
    return amount


def coerce_choice(enum_type, value: object, label: str) -> str:
    try:
        return enum_type(value).value
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"{label} must be one of: {allowed}") from exc


def coerce_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"invalid date {value!r}") from exc
    raise ValidationError("transaction_date is required")
