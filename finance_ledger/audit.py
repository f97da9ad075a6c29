"""Read-only auditing: balance reconciliation and data-quality checks.

Findings are returned as :class:`pandas.DataFrame` objects for operators to
inspect or export. Nothing in this module writes to the ledger; a balance that
does not reconcile is reported, never corrected.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta

import pandas as pd

from .database import SQLiteRepository, UnitOfWork
from .ledger import reconcile_account

logger = logging.getLogger(__name__)

RECONCILIATION_COLUMNS = [
    "account_id",
    "stored_balance",
    "calculated_balance",
    "difference",
    "is_reconciled",
]
REPORT_COLUMNS = ["test_name", "issues_found", "status"]

# Latest transaction older than this relative to ``as_of`` is flagged as stale.
FRESHNESS_WINDOW = timedelta(days=7)

# (name, severity on failure, SQL returning a single ``issues`` column)
_COUNT_CHECKS: list[tuple[str, str, str]] = [
    (
        "Orphaned Transactions",
        "FAIL",
        """
        SELECT COUNT(*) AS issues
        FROM transactions t
        LEFT JOIN accounts a ON t.account_id = a.id
        WHERE a.id IS NULL
        """,
    ),
    (
        "Invalid Transaction Amounts",
        "FAIL",
        "SELECT COUNT(*) AS issues FROM transactions WHERE amount_cents IS NULL OR amount_cents <= 0",
    ),
    (
        "Negative Checking Balances",
        "WARNING",
        "SELECT COUNT(*) AS issues FROM accounts WHERE account_type = 'checking' AND balance_cents < 0",
    ),
    (
        "Invalid Budget Dates",
        "FAIL",
        "SELECT COUNT(*) AS issues FROM budgets WHERE end_date <= start_date",
    ),
    (
        "Uncategorized Transactions",
        "WARNING",
        "SELECT COUNT(*) AS issues FROM transactions WHERE category_id IS NULL",
    ),
    (
        "Future-Dated Transactions",
        "WARNING",
        """
        SELECT COUNT(*) AS issues
        FROM transactions
        WHERE transaction_date > :as_of AND is_recurring = 0
        """,
    ),
    (
        "Overlapping Budgets",
        "FAIL",
        """
        SELECT COUNT(*) AS issues
        FROM budgets b1
        WHERE EXISTS (
            SELECT 1 FROM budgets b2
            WHERE b1.id != b2.id
              AND b1.user_id = b2.user_id
              AND b1.category_id = b2.category_id
              AND b1.start_date <= b2.end_date
              AND b1.end_date >= b2.start_date
        )
        """,
    ),
    (
        "Inactive Recurring with Future Dates",
        "WARNING",
        """
        SELECT COUNT(*) AS issues
        FROM recurring_transactions
        WHERE is_active = 0 AND next_occurrence > :as_of
        """,
    ),
]


class LedgerAuditor:
    """Run reconciliation and data-quality checks against the ledger."""

    def __init__(self, repository: SQLiteRepository) -> None:
        self._repository = repository

    def reconcile_all(self) -> pd.DataFrame:
        """Return one reconciliation row per account."""

        with self._repository.snapshot() as uow:
            return _reconciliation_frame(uow)

    def data_quality_report(self, as_of: date) -> pd.DataFrame:
        """Return one row per check with ``issues_found`` and ``status``.

        ``status`` is ``PASS`` when no issue was found, otherwise the check's
        severity (``FAIL`` or ``WARNING``).
        """

        rows: list[dict[str, object]] = []
        with self._repository.snapshot() as uow:
            params = {"as_of": as_of.isoformat()}
            for name, severity, sql in _COUNT_CHECKS:
                issues = int(uow.query_frame(sql, params)["issues"].iloc[0])
                rows.append(_report_row(name, issues, severity))

            rows.append(_report_row("Data Freshness", _stale_data(uow, as_of), "WARNING"))

            reconciliation = _reconciliation_frame(uow)
            unreconciled = int((~reconciliation["is_reconciled"].astype(bool)).sum())
            rows.append(_report_row("Unreconciled Balances", unreconciled, "FAIL"))

        report = pd.DataFrame(rows, columns=REPORT_COLUMNS)
        failing = report[report["status"] != "PASS"]
        if not failing.empty:
            logger.warning(
                "Data-quality checks flagged as of %s: %s",
                as_of,
                ", ".join(failing["test_name"]),
            )
        return report


def _reconciliation_frame(uow: UnitOfWork) -> pd.DataFrame:
    results = [reconcile_account(uow, account.id) for account in uow.list_accounts()]
    return pd.DataFrame(
        [
            {
                "account_id": result.account_id,
                "stored_balance": result.stored_balance,
                "calculated_balance": result.calculated_balance,
                "difference": result.difference,
                "is_reconciled": result.is_reconciled,
            }
            for result in results
        ],
        columns=RECONCILIATION_COLUMNS,
    )


def _stale_data(uow: UnitOfWork, as_of: date) -> int:
    latest = uow.query_frame("SELECT MAX(transaction_date) AS latest FROM transactions")["latest"].iloc[0]
    if latest is None or pd.isna(latest):
        return 1
    return int(date.fromisoformat(latest) < as_of - FRESHNESS_WINDOW)


def _report_row(name: str, issues: int, severity: str) -> dict[str, object]:
    return {
        "test_name": name,
        "issues_found": issues,
        "status": "PASS" if issues == 0 else severity,
    }
