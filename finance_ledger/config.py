"""Application configuration utilities for the finance_ledger service.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load any variables defined in a local .env file. The call is idempotent, so
# running it at import time keeps the API ergonomic.
load_dotenv()


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the service works out of the box after cloning the repo.
        database_file: Absolute path to the SQLite database file holding the
            ledger.
        log_level: Name of the logging level used by ``main.py`` and the CLI.
        default_currency: ISO code stamped on new accounts. Informational
            only; balances are never converted.
        busy_timeout: Seconds a writer waits for the database write lock
            before giving up.
        seed_categories: Whether :meth:`FinanceService.initialise` should
            insert the default category tree.
    """

    project_root: Path
    database_file: Path
    log_level: str
    default_currency: str
    busy_timeout: float
    seed_categories: bool


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "FINANCE_LEDGER_DB_FILE",
            project_root / "finance_ledger.db",
        )
    )
    log_level = getenv_with_default("FINANCE_LEDGER_LOG_LEVEL", "INFO").upper()
    default_currency = getenv_with_default("FINANCE_LEDGER_CURRENCY", "GBP").upper()
    busy_timeout = float(getenv_with_default("FINANCE_LEDGER_BUSY_TIMEOUT", "30"))
    seed_categories = _to_bool(getenv_with_default("FINANCE_LEDGER_SEED_CATEGORIES", "1"))

    # Ensure the directory exists so sqlite3 can create the file.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        log_level=log_level,
        default_currency=default_currency,
        busy_timeout=busy_timeout,
        seed_categories=seed_categories,
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)


def _to_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on", "y"}
