"""Recurring transaction scheduler.

An external job runner calls :meth:`RecurringScheduler.process_due` once per
period with the business date to process. Every due definition is handled in
its own unit of work: the occurrence is materialized through
:class:`~finance_ledger.ledger.LedgerService` and the definition's
``next_occurrence`` is advanced in the same commit. A definition whose
materialization fails is rolled back and left unadvanced, so the next run
retries the same occurrence; the transaction uniqueness constraint on
``(account, date, amount, merchant)`` stops a retry from posting it twice.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from dateutil.relativedelta import relativedelta

from .database import SQLiteRepository
from .errors import FinanceLedgerError, NotFoundError, ValidationError
from .ledger import LedgerService, validate_amount, coerce_date, coerce_choice
from .models import (
    Cadence,
    RecurringTransaction,
    SchedulerFailure,
    SchedulerRun,
    TransactionDraft,
    TransactionType,
)

logger = logging.getLogger(__name__)

AUTO_GENERATED_NOTE = "Auto-generated from recurring transaction"
LAST_RUN_SETTING = "recurring.last_run"

CADENCE_STEPS: dict[str, relativedelta | timedelta] = {
    Cadence.DAILY.value: timedelta(days=1),
    Cadence.WEEKLY.value: timedelta(weeks=1),
    Cadence.BIWEEKLY.value: timedelta(weeks=2),
    Cadence.MONTHLY.value: relativedelta(months=1),
    Cadence.QUARTERLY.value: relativedelta(months=3),
    Cadence.YEARLY.value: relativedelta(years=1),
}


def next_occurrence(current: date, cadence: str) -> date:
    """Return the date one cadence step after ``current``.

    Calendar steps clamp to the last day of a shorter month (31 Jan + 1 month
    is 29 Feb in a leap year). An unrecognized cadence returns ``current``
    unchanged.
    """

    step = CADENCE_STEPS.get(str(cadence))
    if step is None:
        return current
    return current + step


class RecurringScheduler:
    """Materialize due recurring definitions into ledger transactions."""

    def __init__(self, repository: SQLiteRepository, ledger: LedgerService) -> None:
        self._repository = repository
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Definition management
    # ------------------------------------------------------------------
    def create_recurring(
        self,
        account_id: str,
        amount: Decimal | int | str,
        description: str,
        frequency: str,
        start_date: date,
        end_date: Optional[date] = None,
        first_occurrence: Optional[date] = None,
        category_id: Optional[str] = None,
        merchant_name: Optional[str] = None,
    ) -> RecurringTransaction:
        if not description or not description.strip():
            raise ValidationError("description is required")
        start_date = coerce_date(start_date)
        if end_date is not None:
            end_date = coerce_date(end_date)
            if end_date < start_date:
                raise ValidationError("end_date must not be before start_date")
        first = coerce_date(first_occurrence) if first_occurrence is not None else start_date
        if first < start_date:
            raise ValidationError("first_occurrence must not be before start_date")

        recurring = RecurringTransaction(
            id=str(uuid4()),
            account_id=account_id,
            amount=validate_amount(amount),
            description=description.strip(),
            frequency=coerce_choice(Cadence, frequency, "frequency"),
            start_date=start_date,
            end_date=end_date,
            next_occurrence=first,
            category_id=category_id,
            merchant_name=merchant_name,
        )
        with self._repository.unit_of_work() as uow:
            uow.insert_recurring(recurring)
            created = uow.get_recurring(recurring.id)
        logger.info(
            "Scheduled %s recurring %s of %s on account %s from %s",
            created.frequency,
            created.id,
            created.amount,
            created.account_id,
            created.next_occurrence,
        )
        return created

    def get_recurring(self, recurring_id: str) -> RecurringTransaction:
        with self._repository.snapshot() as uow:
            recurring = uow.get_recurring(recurring_id)
        if recurring is None:
            raise NotFoundError("recurring transaction", recurring_id)
        return recurring

    def deactivate_recurring(self, recurring_id: str) -> RecurringTransaction:
        """Cancel a definition. Already-materialized transactions are untouched."""

        with self._repository.unit_of_work() as uow:
            if not uow.set_recurring_active(recurring_id, False):
                raise NotFoundError("recurring transaction", recurring_id)
            recurring = uow.get_recurring(recurring_id)
        logger.info("Cancelled recurring %s", recurring_id)
        return recurring

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    def process_due(self, as_of: date) -> SchedulerRun:
        """Materialize one occurrence of every definition due on ``as_of``.

        Returns a :class:`SchedulerRun` whose ``processed`` count covers the
        definitions that were materialized and advanced, and whose
        ``failures`` lists the definitions that were skipped.
        """

        run = SchedulerRun(as_of=as_of)
        with self._repository.snapshot() as uow:
            due = uow.list_due_recurring(as_of)
        logger.info("Processing %d due recurring transaction(s) as of %s", len(due), as_of)

        for recurring in due:
            try:
                if self._process_one(recurring.id, as_of):
                    run.processed += 1
            except (FinanceLedgerError, sqlite3.Error) as exc:
                logger.warning(
                    "Recurring %s occurrence %s not materialized: %s",
                    recurring.id,
                    recurring.next_occurrence,
                    exc,
                )
                run.failures.append(
                    SchedulerFailure(
                        recurring_id=recurring.id,
                        occurrence=recurring.next_occurrence,
                        reason=str(exc),
                    )
                )

        with self._repository.unit_of_work() as uow:
            uow.set_setting(LAST_RUN_SETTING, as_of.isoformat())
        logger.info(
            "Recurring run for %s finished: %d processed, %d failed",
            as_of,
            run.processed,
            run.failed_count,
        )
        return run

    def _process_one(self, recurring_id: str, as_of: date) -> bool:
        with self._repository.unit_of_work() as uow:
            # Re-read under the write lock: an overlapping run or a manual
            # edit may have advanced or cancelled the definition.
            recurring = uow.get_recurring(recurring_id)
            if recurring is None or not recurring.is_due(as_of):
                logger.debug("Recurring %s no longer due, skipping", recurring_id)
                return False

            transaction = self._ledger.apply_create(
                uow,
                TransactionDraft(
                    account_id=recurring.account_id,
                    transaction_date=recurring.next_occurrence,
                    amount=recurring.amount,
                    transaction_type=TransactionType.DEBIT.value,
                    category_id=recurring.category_id,
                    description=recurring.description,
                    merchant_name=recurring.merchant_name,
                    notes=AUTO_GENERATED_NOTE,
                    is_recurring=True,
                ),
            )

            following = next_occurrence(recurring.next_occurrence, recurring.frequency)
            if following == recurring.next_occurrence:
                logger.warning(
                    "Recurring %s has unrecognized frequency %r; next_occurrence left at %s",
                    recurring.id,
                    recurring.frequency,
                    following,
                )
            uow.set_next_occurrence(recurring.id, following)

        logger.info(
            "Processed recurring transaction: %s (ID: %s), next occurrence %s",
            recurring.description,
            transaction.id,
            following,
        )
        return True
