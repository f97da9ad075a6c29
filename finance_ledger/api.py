"""FastAPI application exposing the finance_ledger service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

import pandas as pd
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import load_config
from .errors import ConstraintViolation, NotFoundError, ValidationError
from .models import TransactionDraft
from .schemas import AccountIn, BudgetIn, CategoryIn, RecurringIn, TransactionIn, TransactionPatch, UserIn
from .services import FinanceService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    service = FinanceService.from_config(config)
    service.initialise()

    app.state.config = config
    app.state.finance = service
    logger.info("finance_ledger API ready on %s", config.database_file)

    yield


app = FastAPI(lifespan=lifespan, title="finance_ledger backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency injection ------------------------------------------------------

def get_finance_service() -> FinanceService:
    service: FinanceService = app.state.finance
    return service


Finance = Annotated[FinanceService, Depends(get_finance_service)]


# Error mapping -------------------------------------------------------------

@app.exception_handler(ValidationError)
async def validation_error_handler(_: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(_: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConstraintViolation)
async def constraint_violation_handler(_: Request, exc: ConstraintViolation) -> JSONResponse:
    logger.info("Write rejected by storage constraint: %s", exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.post("/users", status_code=201)
def create_user(body: UserIn, finance: Finance) -> dict[str, object]:
    return to_payload(finance.create_user(body.email, body.first_name, body.last_name))


@app.get("/users/{user_id}")
def get_user(user_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.get_user(user_id))


@app.post("/categories", status_code=201)
def create_category(body: CategoryIn, finance: Finance) -> dict[str, object]:
    category = finance.create_category(body.name, body.category_type, body.parent_id, body.description)
    return to_payload(category)


@app.get("/categories")
def list_categories(finance: Finance) -> dict[str, object]:
    categories = [to_payload(category) for category in finance.list_categories()]
    return {"categories": categories, "count": len(categories)}


# Accounts ------------------------------------------------------------------

@app.post("/accounts", status_code=201)
def create_account(body: AccountIn, finance: Finance) -> dict[str, object]:
    account = finance.ledger.create_account(
        user_id=body.user_id,
        name=body.name,
        account_type=body.account_type,
        opening_balance=body.opening_balance,
        opened_on=body.opened_on,
        currency=body.currency,
        institution_name=body.institution_name,
        account_number_last4=body.account_number_last4,
    )
    return to_payload(account)


@app.get("/accounts/{account_id}")
def get_account(account_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.ledger.get_account(account_id))


@app.post("/accounts/{account_id}/deactivate")
def deactivate_account(account_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.ledger.deactivate_account(account_id))


@app.get("/accounts/{account_id}/transactions")
def list_account_transactions(
    account_id: str,
    finance: Finance,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> dict[str, object]:
    transactions = [to_payload(tx) for tx in finance.ledger.list_transactions(account_id, limit)]
    return {"transactions": transactions, "count": len(transactions)}


@app.get("/accounts/{account_id}/reconciliation")
def reconcile_account(account_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.ledger.reconcile(account_id))


# Transactions --------------------------------------------------------------

@app.post("/transactions", status_code=201)
def create_transaction(body: TransactionIn, finance: Finance) -> dict[str, object]:
    draft = TransactionDraft(**body.model_dump())
    return to_payload(finance.ledger.create_transaction(draft))


@app.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.ledger.get_transaction(transaction_id))


@app.patch("/transactions/{transaction_id}")
def update_transaction(transaction_id: str, body: TransactionPatch, finance: Finance) -> dict[str, object]:
    changes = body.model_dump(exclude_unset=True)
    return to_payload(finance.ledger.update_transaction(transaction_id, changes))


@app.delete("/transactions/{transaction_id}")
def delete_transaction(transaction_id: str, finance: Finance) -> dict[str, object]:
    deleted = finance.ledger.delete_transaction(transaction_id)
    return {"deleted": to_payload(deleted)}


# Recurring -----------------------------------------------------------------

@app.post("/recurring", status_code=201)
def create_recurring(body: RecurringIn, finance: Finance) -> dict[str, object]:
    recurring = finance.scheduler.create_recurring(**body.model_dump())
    return to_payload(recurring)


@app.post("/recurring/process")
def process_recurring(
    as_of: Annotated[date, Query(description="Business date to process, e.g. 2024-01-15")],
    finance: Finance,
) -> dict[str, object]:
    run = finance.scheduler.process_due(as_of)
    return {
        "as_of": run.as_of.isoformat(),
        "processed": run.processed,
        "failed": run.failed_count,
        "failures": [to_payload(failure) for failure in run.failures],
    }


@app.get("/recurring/last-run")
def last_recurring_run(finance: Finance) -> dict[str, object]:
    """Report the business date the scheduler last processed, if any."""

    last_run = finance.last_recurring_run()
    return {"last_run": last_run.isoformat() if last_run else None}


@app.get("/recurring/{recurring_id}")
def get_recurring(recurring_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.scheduler.get_recurring(recurring_id))


@app.post("/recurring/{recurring_id}/deactivate")
def deactivate_recurring(recurring_id: str, finance: Finance) -> dict[str, object]:
    return to_payload(finance.scheduler.deactivate_recurring(recurring_id))


# Budgets and audit ---------------------------------------------------------

@app.post("/budgets", status_code=201)
def create_budget(body: BudgetIn, finance: Finance) -> dict[str, object]:
    return to_payload(finance.create_budget(**body.model_dump()))


@app.get("/audit/reconciliation")
def audit_reconciliation(finance: Finance) -> dict[str, object]:
    return {"accounts": frame_to_records(finance.auditor.reconcile_all())}


@app.get("/audit/data-quality")
def audit_data_quality(
    as_of: Annotated[date, Query(description="Reference date for freshness checks")],
    finance: Finance,
) -> dict[str, object]:
    return {"as_of": as_of.isoformat(), "checks": frame_to_records(finance.auditor.data_quality_report(as_of))}


# Serialisation -------------------------------------------------------------

def to_payload(value: object) -> object:
    """Convert domain objects into JSON-friendly structures.

    Decimals become strings so amounts keep their exact cent precision.
    """

    if is_dataclass(value):
        return {key: to_payload(item) for key, item in asdict(value).items()}
    if isinstance(value, dict):
        return {key: to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "item"):
        return value.item()
    return value


def frame_to_records(frame: pd.DataFrame) -> list[dict[str, object]]:
    return [to_payload(record) for record in frame.to_dict(orient="records")]


