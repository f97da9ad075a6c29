import logging
from datetime import date
from decimal import Decimal

import pytest

from finance_ledger.errors import NotFoundError, ValidationError
from finance_ledger.models import TransactionDraft
from finance_ledger.scheduler import AUTO_GENERATED_NOTE, next_occurrence


@pytest.mark.parametrize(
    "cadence, current, expected",
    [
        ("daily", date(2024, 1, 31), date(2024, 2, 1)),
        ("weekly", date(2024, 1, 1), date(2024, 1, 8)),
        ("biweekly", date(2024, 1, 1), date(2024, 1, 15)),
        ("monthly", date(2024, 1, 1), date(2024, 2, 1)),
        ("monthly", date(2024, 1, 31), date(2024, 2, 29)),
        ("quarterly", date(2024, 11, 15), date(2025, 2, 15)),
        ("yearly", date(2024, 2, 29), date(2025, 2, 28)),
        ("fortnightly", date(2024, 1, 1), date(2024, 1, 1)),
    ],
)
def test_next_occurrence(cadence, current, expected):
    assert next_occurrence(current, cadence) == expected


def netflix(finance, account_id, **overrides):
    fields = dict(
        account_id=account_id,
        amount=Decimal("15.99"),
        description="Netflix subscription",
        frequency="monthly",
        start_date=date(2024, 1, 1),
        merchant_name="Netflix",
    )
    fields.update(overrides)
    return finance.scheduler.create_recurring(**fields)


def test_monthly_definition_materializes_and_advances(finance, checking):
    recurring = netflix(finance, checking.id)

    run = finance.scheduler.process_due(date(2024, 1, 15))

    assert run.processed == 1
    assert run.failures == []
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 2, 1)
    materialized = [tx for tx in finance.ledger.list_transactions(checking.id) if tx.is_recurring]
    assert len(materialized) == 1
    tx = materialized[0]
    assert tx.transaction_date == date(2024, 1, 1)
    assert tx.amount == Decimal("15.99")
    assert tx.transaction_type == "debit"
    assert tx.merchant_name == "Netflix"
    assert tx.notes == AUTO_GENERATED_NOTE
    assert finance.ledger.get_account(checking.id).balance == Decimal("984.01")
    assert finance.ledger.reconcile(checking.id).is_reconciled


def test_category_is_copied_to_materialized_transaction(finance, checking):
    subscriptions = next(c for c in finance.list_categories() if c.name == "Subscriptions")
    netflix(finance, checking.id, category_id=subscriptions.id)

    finance.scheduler.process_due(date(2024, 1, 1))

    recurring_tx = [tx for tx in finance.ledger.list_transactions(checking.id) if tx.is_recurring]
    assert recurring_tx[0].category_id == subscriptions.id


def test_failed_materialization_is_retried_on_next_run(finance, checking):
    recurring = netflix(finance, checking.id)
    manual = finance.ledger.create_transaction(
        TransactionDraft(
            account_id=checking.id,
            transaction_date=date(2024, 1, 1),
            amount=Decimal("15.99"),
            transaction_type="debit",
            merchant_name="Netflix",
        )
    )

    run = finance.scheduler.process_due(date(2024, 1, 15))

    assert run.processed == 0
    assert run.failed_count == 1
    assert run.failures[0].recurring_id == recurring.id
    assert run.failures[0].occurrence == date(2024, 1, 1)
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 1, 1)
    assert finance.ledger.get_account(checking.id).balance == Decimal("984.01")

    finance.ledger.delete_transaction(manual.id)
    retry = finance.scheduler.process_due(date(2024, 1, 15))

    assert retry.processed == 1
    assert retry.failures == []
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 2, 1)
    assert finance.ledger.get_account(checking.id).balance == Decimal("984.01")


def test_one_failure_does_not_abort_the_batch(finance, checking, caplog):
    first = netflix(finance, checking.id, merchant_name="Netflix", first_occurrence=date(2024, 1, 1))
    second = netflix(
        finance,
        checking.id,
        merchant_name="Spotify",
        amount=Decimal("9.99"),
        first_occurrence=date(2024, 1, 2),
    )
    third = netflix(
        finance,
        checking.id,
        merchant_name="Gym",
        amount=Decimal("30.00"),
        first_occurrence=date(2024, 1, 3),
    )
    finance.ledger.create_transaction(
        TransactionDraft(
            account_id=checking.id,
            transaction_date=date(2024, 1, 2),
            amount=Decimal("9.99"),
            transaction_type="debit",
            merchant_name="Spotify",
        )
    )

    with caplog.at_level(logging.INFO, logger="finance_ledger.scheduler"):
        run = finance.scheduler.process_due(date(2024, 1, 15))

    assert run.processed == 2
    assert [failure.recurring_id for failure in run.failures] == [second.id]
    assert run.failures[0].occurrence == date(2024, 1, 2)
    outcomes = [
        "failed" if "not materialized" in record.getMessage() else "processed"
        for record in caplog.records
        if "not materialized" in record.getMessage() or record.getMessage().startswith("Processed recurring")
    ]
    assert outcomes == ["processed", "failed", "processed"]
    assert finance.scheduler.get_recurring(first.id).next_occurrence == date(2024, 2, 1)
    assert finance.scheduler.get_recurring(second.id).next_occurrence == date(2024, 1, 2)
    assert finance.scheduler.get_recurring(third.id).next_occurrence == date(2024, 2, 3)
    gym = [tx for tx in finance.ledger.list_transactions(checking.id) if tx.merchant_name == "Gym"]
    assert [tx.transaction_date for tx in gym] == [date(2024, 1, 3)]
    assert finance.ledger.reconcile(checking.id).is_reconciled


def test_only_one_occurrence_is_materialized_per_run(finance, checking):
    recurring = netflix(finance, checking.id, frequency="weekly")

    finance.scheduler.process_due(date(2024, 1, 31))
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 1, 8)

    finance.scheduler.process_due(date(2024, 1, 31))
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 1, 15)


def test_definitions_not_due_are_ignored(finance, checking):
    future = netflix(finance, checking.id, start_date=date(2024, 3, 1))
    expired = netflix(
        finance,
        checking.id,
        merchant_name="Old Gym",
        start_date=date(2023, 1, 1),
        end_date=date(2023, 12, 31),
    )
    cancelled = netflix(finance, checking.id, merchant_name="Magazine")
    finance.scheduler.deactivate_recurring(cancelled.id)

    run = finance.scheduler.process_due(date(2024, 1, 15))

    assert run.processed == 0
    assert finance.scheduler.get_recurring(future.id).next_occurrence == date(2024, 3, 1)
    assert finance.scheduler.get_recurring(expired.id).next_occurrence == date(2023, 1, 1)
    assert finance.scheduler.get_recurring(cancelled.id).next_occurrence == date(2024, 1, 1)


def test_cancelling_keeps_materialized_transactions(finance, checking):
    recurring = netflix(finance, checking.id)
    finance.scheduler.process_due(date(2024, 1, 1))

    cancelled = finance.scheduler.deactivate_recurring(recurring.id)

    assert cancelled.is_active is False
    assert len([tx for tx in finance.ledger.list_transactions(checking.id) if tx.is_recurring]) == 1
    assert finance.scheduler.process_due(date(2024, 2, 1)).processed == 0


def test_unrecognized_cadence_leaves_next_occurrence_unchanged(finance, repository, checking):
    recurring = netflix(finance, checking.id)
    connection = repository.connect()
    try:
        connection.execute("PRAGMA ignore_check_constraints = ON")
        connection.execute(
            "UPDATE recurring_transactions SET frequency = 'fortnightly' WHERE id = ?",
            (recurring.id,),
        )
    finally:
        connection.close()

    run = finance.scheduler.process_due(date(2024, 1, 15))

    assert run.processed == 1
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 1, 1)


def test_last_run_date_is_recorded(finance, checking):
    assert finance.last_recurring_run() is None

    finance.scheduler.process_due(date(2024, 1, 15))

    assert finance.last_recurring_run() == date(2024, 1, 15)


def test_create_recurring_validation(finance, checking):
    with pytest.raises(ValidationError):
        netflix(finance, checking.id, amount=Decimal("0"))
    with pytest.raises(ValidationError):
        netflix(finance, checking.id, frequency="hourly")
    with pytest.raises(ValidationError):
        netflix(finance, checking.id, end_date=date(2023, 12, 31))
    with pytest.raises(ValidationError):
        netflix(finance, checking.id, first_occurrence=date(2023, 12, 1))


def test_first_occurrence_can_follow_start_date(finance, checking):
    recurring = netflix(finance, checking.id, first_occurrence=date(2024, 1, 20))

    assert recurring.next_occurrence == date(2024, 1, 20)
    assert finance.scheduler.process_due(date(2024, 1, 15)).processed == 0


def test_missing_definition(finance):
    with pytest.raises(NotFoundError):
        finance.scheduler.get_recurring("missing")
    with pytest.raises(NotFoundError):
        finance.scheduler.deactivate_recurring("missing")
