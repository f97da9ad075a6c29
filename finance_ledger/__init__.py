"""Personal-finance ledger: balance maintenance, recurring transactions and audits."""
from __future__ import annotations

from .config import AppConfig, load_config
from .services import FinanceService

__all__ = ["AppConfig", "FinanceService", "load_config"]
