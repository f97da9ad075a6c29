from datetime import date
from decimal import Decimal

import pytest

from finance_ledger.config import AppConfig
from finance_ledger.database import SQLiteRepository
from finance_ledger.services import FinanceService


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        project_root=tmp_path,
        database_file=tmp_path / "ledger.db",
        log_level="DEBUG",
        default_currency="GBP",
        busy_timeout=5.0,
        seed_categories=True,
    )


@pytest.fixture
def finance(config):
    service = FinanceService.from_config(config)
    service.initialise()
    return service


@pytest.fixture
def repository(finance, config):
    return SQLiteRepository(config.database_file)


@pytest.fixture
def user(finance):
    return finance.create_user("john.smith@example.com", "John", "Smith")


@pytest.fixture
def checking(finance, user):
    return finance.ledger.create_account(
        user.id,
        "Everyday Checking",
        "checking",
        opening_balance=Decimal("1000.00"),
        opened_on=date(2024, 1, 1),
    )


@pytest.fixture
def savings(finance, user):
    return finance.ledger.create_account(
        user.id,
        "Rainy Day",
        "savings",
        opening_balance=Decimal("500.00"),
        opened_on=date(2024, 1, 1),
    )