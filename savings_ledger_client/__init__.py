"""Client SDK for the Savings Ledger service.

Provides async and sync interfaces for reading the shared ledger and
submitting contributions, plus the per-session tracker.

Example:
    >>> from savings_ledger_client import LedgerClient, SavingsTracker
    >>> client = LedgerClient("http://localhost:4950", token="...")
    >>> tracker = SavingsTracker(client)
    >>> await tracker.load()
    >>> await tracker.add_saving("100", "gift")
    >>> tracker.total
"""

from .aggregation import parse_amount, total, total_for, totals_by_user
from .client import (
    Identity,
    LedgerAuthError,
    LedgerClient,
    LedgerClientConfig,
    LedgerClientError,
    LedgerClientSync,
    LedgerConnectionError,
    LedgerRejectedError,
    LedgerSnapshot,
    Profile,
    Saving,
)
from .tracker import SavingsTracker

__all__ = [
    "Identity",
    "LedgerAuthError",
    "LedgerClient",
    "LedgerClientConfig",
    "LedgerClientError",
    "LedgerClientSync",
    "LedgerConnectionError",
    "LedgerRejectedError",
    "LedgerSnapshot",
    "Profile",
    "Saving",
    "SavingsTracker",
    "parse_amount",
    "total",
    "total_for",
    "totals_by_user",
]
__version__ = "0.1.0"
