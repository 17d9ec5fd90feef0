"""Persistence layer - Ledger store and row-level policies."""

from .database import LedgerStore
from .errors import ConstraintViolation, PolicyDenied, StoreError
from .policies import Command, Identity, Policy, PolicyEngine

__all__ = [
    "LedgerStore",
    "StoreError",
    "PolicyDenied",
    "ConstraintViolation",
    "Command",
    "Identity",
    "Policy",
    "PolicyEngine",
]
