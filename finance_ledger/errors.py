"""Exception hierarchy shared by the ledger, scheduler and HTTP layers."""
from __future__ import annotations


class FinanceLedgerError(Exception):
    """Base class for every error raised by finance_ledger services."""


class ValidationError(FinanceLedgerError):
    """A proposed write violates a business rule and was rejected before any
    state changed."""


class ConstraintViolation(FinanceLedgerError):
    """The storage layer refused a write (uniqueness, foreign key or check).

    The unit of work that raised it has already been rolled back, so neither
    the row mutation nor its balance adjustment is visible.
    """


class NotFoundError(FinanceLedgerError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


__all__ = [
    "FinanceLedgerError",
    "ValidationError",
    "ConstraintViolation",
    "NotFoundError",
]
