"""Ledger service layer - FastAPI application and HTTP interfaces."""

from .app import create_ledger_app
from .config import LedgerConfig, SessionToken

__all__ = ["create_ledger_app", "LedgerConfig", "SessionToken"]
