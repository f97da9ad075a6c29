from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

from finance_ledger.models import TransactionDraft


def test_concurrent_create_and_move_keeps_balances_exact(finance, checking, savings):
    def create_then_move(index):
        created = finance.ledger.create_transaction(
            TransactionDraft(
                account_id=checking.id,
                transaction_date=date(2024, 1, 10),
                amount=Decimal("2.00"),
                transaction_type="debit",
                merchant_name=f"Vendor {index}",
            )
        )
        finance.ledger.update_transaction(created.id, {"account_id": savings.id})

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(create_then_move, range(20)))

    assert finance.ledger.get_account(checking.id).balance == Decimal("1000.00")
    assert finance.ledger.get_account(savings.id).balance == Decimal("460.00")
    assert finance.ledger.reconcile(checking.id).is_reconciled
    assert finance.ledger.reconcile(savings.id).is_reconciled


def test_overlapping_scheduler_runs_materialize_once(finance, checking):
    recurring = finance.scheduler.create_recurring(
        account_id=checking.id,
        amount=Decimal("15.99"),
        description="Netflix subscription",
        frequency="monthly",
        start_date=date(2024, 1, 1),
    )

    with ThreadPoolExecutor(max_workers=8) as pool:
        runs = list(pool.map(lambda _: finance.scheduler.process_due(date(2024, 1, 15)), range(8)))

    assert sum(run.processed for run in runs) == 1
    assert all(run.failures == [] for run in runs)
    materialized = [tx for tx in finance.ledger.list_transactions(checking.id) if tx.is_recurring]
    assert len(materialized) == 1
    assert finance.scheduler.get_recurring(recurring.id).next_occurrence == date(2024, 2, 1)
    assert finance.ledger.get_account(checking.id).balance == Decimal("984.01")
