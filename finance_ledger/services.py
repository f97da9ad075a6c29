"""High-level application services orchestrating the finance_ledger backend."""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from .audit import LedgerAuditor
from .config import AppConfig
from .database import SQLiteRepository
from .errors import NotFoundError, ValidationError
from .ledger import LedgerService, coerce_choice, coerce_date, validate_amount
from .models import Budget, Category, CategoryType, User
from .scheduler import LAST_RUN_SETTING, RecurringScheduler

logger = logging.getLogger(__name__)

# (name, type, parent name)
DEFAULT_CATEGORIES: list[tuple[str, str, Optional[str]]] = [
    ("Income", "income", None),
    ("Salary", "income", "Income"),
    ("Other Income", "income", "Income"),
    ("Housing", "expense", None),
    ("Rent", "expense", "Housing"),
    ("Utilities", "expense", "Housing"),
    ("Food", "expense", None),
    ("Groceries", "expense", "Food"),
    ("Eating Out", "expense", "Food"),
    ("Transport", "expense", None),
    ("Subscriptions", "expense", None),
    ("Shopping", "expense", None),
    ("Health", "expense", None),
    ("Entertainment", "expense", None),
    ("Other Expense", "expense", None),
]


class FinanceService:
    """Coordinates the ledger, scheduler and auditor over one repository."""

    def __init__(self, config: AppConfig, repository: SQLiteRepository) -> None:
        self._config = config
        self._repository = repository
        self.ledger = LedgerService(repository, default_currency=config.default_currency)
        self.scheduler = RecurringScheduler(repository, self.ledger)
        self.auditor = LedgerAuditor(repository)

    @classmethod
    def from_config(cls, config: AppConfig) -> "FinanceService":
        repository = SQLiteRepository(config.database_file, busy_timeout=config.busy_timeout)
        return cls(config, repository)

    def initialise(self) -> None:
        """Create the schema and, when configured, the default categories."""

        self._repository.initialise_schema()
        if self._config.seed_categories:
            self.seed_default_categories()

    # ------------------------------------------------------------------
    # Users, categories and budgets
    # ------------------------------------------------------------------
    def create_user(self, email: str, first_name: str, last_name: str) -> User:
        if not email or "@" not in email:
            raise ValidationError("a valid email is required")
        if not first_name or not last_name:
            raise ValidationError("first_name and last_name are required")
        user = User(id=str(uuid4()), email=email.strip().lower(), first_name=first_name, last_name=last_name)
        with self._repository.unit_of_work() as uow:
            uow.insert_user(user)
            return uow.get_user(user.id)

    def get_user(self, user_id: str) -> User:
        with self._repository.snapshot() as uow:
            user = uow.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    def create_category(
        self,
        name: str,
        category_type: str,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Category:
        """Create a category, optionally under an existing parent.

        A new row cannot close a cycle because its id is fresh, so checking
        that the parent exists keeps the tree acyclic.
        """

        if not name or not name.strip():
            raise ValidationError("category name is required")
        category = Category(
            id=str(uuid4()),
            name=name.strip(),
            category_type=coerce_choice(CategoryType, category_type, "category type"),
            parent_id=parent_id,
            description=description,
        )
        with self._repository.unit_of_work() as uow:
            if parent_id is not None and uow.get_category(parent_id) is None:
                raise NotFoundError("category", parent_id)
            uow.insert_category(category)
        return category

    def list_categories(self) -> list[Category]:
        with self._repository.snapshot() as uow:
            return uow.list_categories()

    def seed_default_categories(self) -> int:
        """Insert any missing default categories. Safe to re-run."""

        with self._repository.unit_of_work() as uow:
            by_name = {category.name: category for category in uow.list_categories()}
            added = 0
            for name, category_type, parent_name in DEFAULT_CATEGORIES:
                if name in by_name:
                    continue
                parent = by_name.get(parent_name) if parent_name else None
                category = Category(
                    id=str(uuid4()),
                    name=name,
                    category_type=category_type,
                    parent_id=parent.id if parent else None,
                )
                uow.insert_category(category)
                by_name[name] = category
                added += 1
        if added:
            logger.info("Seeded %d default categories", added)
        return added

    def create_budget(
        self,
        user_id: str,
        category_id: str,
        amount: Decimal | int | str,
        start_date: date,
        end_date: date,
    ) -> Budget:
        start_date = coerce_date(start_date)
        end_date = coerce_date(end_date)
        if end_date <= start_date:
            raise ValidationError("budget end_date must be after start_date")
        budget = Budget(
            id=str(uuid4()),
            user_id=user_id,
            category_id=category_id,
            amount=validate_amount(amount),
            start_date=start_date,
            end_date=end_date,
        )
        with self._repository.unit_of_work() as uow:
            uow.insert_budget(budget)
        return budget

    # ------------------------------------------------------------------
    # Scheduler helpers
    # ------------------------------------------------------------------
    def last_recurring_run(self) -> Optional[date]:
        with self._repository.snapshot() as uow:
            value = uow.get_setting(LAST_RUN_SETTING)
        if value is None:
            return None
        return date.fromisoformat(value)
