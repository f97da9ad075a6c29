"""Request bodies accepted by the HTTP API.

Monetary fields are parsed as :class:`~decimal.Decimal`; business rules
(positive amounts, known directions and cadences) are enforced by the
services so that HTTP and CLI callers get the same errors.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class UserIn(BaseModel):
    email: str = Field(..., description="Login email, unique per user")
    first_name: str
    last_name: str


class CategoryIn(BaseModel):
    name: str
    category_type: str = Field(..., description="'income' or 'expense'")
    parent_id: Optional[str] = Field(None, description="Parent category for nested trees")
    description: Optional[str] = None


class AccountIn(BaseModel):
    user_id: str
    name: str
    account_type: str = Field(..., description="checking, savings, credit_card, investment or cash")
    opening_balance: Decimal = Field(Decimal("0.00"), description="Recorded as an opening transaction")
    opened_on: Optional[date] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    institution_name: Optional[str] = None
    account_number_last4: Optional[str] = None


class TransactionIn(BaseModel):
    account_id: str
    transaction_date: date
    amount: Decimal = Field(..., description="Strictly positive; direction carries the sign")
    transaction_type: str = Field(..., description="'debit' or 'credit'")
    category_id: Optional[str] = None
    description: Optional[str] = None
    merchant_name: Optional[str] = None
    notes: Optional[str] = None


class TransactionPatch(BaseModel):
    """Partial update; only fields present in the request body are changed."""

    account_id: Optional[str] = None
    transaction_date: Optional[date] = None
    amount: Optional[Decimal] = None
    transaction_type: Optional[str] = None
    category_id: Optional[str] = None
    description: Optional[str] = None
    merchant_name: Optional[str] = None
    notes: Optional[str] = None


class RecurringIn(BaseModel):
    account_id: str
    amount: Decimal
    description: str
    frequency: str = Field(..., description="daily, weekly, biweekly, monthly, quarterly or yearly")
    start_date: date
    end_date: Optional[date] = None
    first_occurrence: Optional[date] = Field(None, description="Defaults to start_date")
    category_id: Optional[str] = None
    merchant_name: Optional[str] = None


class BudgetIn(BaseModel):
    user_id: str
    category_id: str
    amount: Decimal
    start_date: date
    end_date: date
