"""Entrypoint for running the finance_ledger FastAPI backend locally."""
from __future__ import annotations

import logging

import uvicorn

from finance_ledger import load_config


if __name__ == "__main__":
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "finance_ledger.api:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
