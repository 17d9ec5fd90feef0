"""Store-level errors.

Both error kinds mean the same thing to a caller: the statement did not
happen and nothing was written.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for rejected store statements."""

    def __init__(self, table: str, message: str):
        super().__init__(message)
        self.table = table


class PolicyDenied(StoreError):
    """A new row version failed its table's row-level policy."""

    def __init__(self, table: str, command: str):
        super().__init__(table, f'new row violates row-level security policy for table "{table}"')
        self.command = command


class ConstraintViolation(StoreError):
    """A row broke a schema constraint (CHECK, NOT NULL, foreign key)."""


__all__ = ["StoreError", "PolicyDenied", "ConstraintViolation"]
