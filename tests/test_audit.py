from datetime import date
from decimal import Decimal

import pytest

from finance_ledger.errors import ValidationError
from finance_ledger.models import TransactionDraft


def statuses(report):
    return dict(zip(report["test_name"], report["status"]))


def test_reconcile_all_lists_every_account(finance, checking, savings):
    frame = finance.auditor.reconcile_all()

    assert set(frame["account_id"]) == {checking.id, savings.id}
    assert frame["is_reconciled"].all()


def test_reconcile_all_flags_drift(finance, repository, checking, savings):
    connection = repository.connect()
    try:
        connection.execute("UPDATE accounts SET balance_cents = 0 WHERE id = ?", (savings.id,))
    finally:
        connection.close()

    frame = finance.auditor.reconcile_all().set_index("account_id")

    assert bool(frame.loc[checking.id, "is_reconciled"]) is True
    assert bool(frame.loc[savings.id, "is_reconciled"]) is False
    assert frame.loc[savings.id, "difference"] == Decimal("-500.00")


def test_data_quality_report_on_clean_ledger(finance, checking):
    groceries = next(c for c in finance.list_categories() if c.name == "Groceries")
    finance.ledger.update_transaction(
        finance.ledger.list_transactions(checking.id)[0].id,
        {"category_id": groceries.id},
    )

    report = finance.auditor.data_quality_report(date(2024, 1, 5))

    assert list(report.columns) == ["test_name", "issues_found", "status"]
    assert set(report["status"]) == {"PASS"}
    assert "Unreconciled Balances" in set(report["test_name"])


def test_data_quality_report_flags_warnings(finance, user, checking):
    finance.ledger.create_transaction(
        TransactionDraft(
            account_id=checking.id,
            transaction_date=date(2024, 3, 1),
            amount=Decimal("1500.00"),
            transaction_type="debit",
            merchant_name="Landlord",
        )
    )
    recurring = finance.scheduler.create_recurring(
        account_id=checking.id,
        amount=Decimal("10.00"),
        description="Cloud storage",
        frequency="monthly",
        start_date=date(2024, 6, 1),
    )
    finance.scheduler.deactivate_recurring(recurring.id)

    report = statuses(finance.auditor.data_quality_report(date(2024, 2, 1)))

    assert report["Negative Checking Balances"] == "WARNING"
    assert report["Future-Dated Transactions"] == "WARNING"
    assert report["Uncategorized Transactions"] == "WARNING"
    assert report["Inactive Recurring with Future Dates"] == "WARNING"
    assert report["Unreconciled Balances"] == "PASS"


def test_data_freshness_warns_on_stale_ledger(finance, checking):
    report = statuses(finance.auditor.data_quality_report(date(2024, 3, 1)))

    assert report["Data Freshness"] == "WARNING"


def test_overlapping_budgets_fail(finance, user):
    rent = next(c for c in finance.list_categories() if c.name == "Rent")
    finance.create_budget(user.id, rent.id, Decimal("1200.00"), date(2024, 1, 1), date(2024, 1, 31))
    finance.create_budget(user.id, rent.id, Decimal("1200.00"), date(2024, 1, 15), date(2024, 2, 14))

    report = statuses(finance.auditor.data_quality_report(date(2024, 1, 31)))

    assert report["Overlapping Budgets"] == "FAIL"
    assert report["Invalid Budget Dates"] == "PASS"


def test_budget_requires_end_after_start(finance, user):
    rent = next(c for c in finance.list_categories() if c.name == "Rent")

    with pytest.raises(ValidationError):
        finance.create_budget(user.id, rent.id, Decimal("100.00"), date(2024, 1, 1), date(2024, 1, 1))
    with pytest.raises(ValidationError):
        finance.create_budget(user.id, rent.id, Decimal("0"), date(2024, 1, 1), date(2024, 1, 31))
