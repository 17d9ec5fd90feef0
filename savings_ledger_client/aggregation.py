"""Ledger totals.

All arithmetic is ``Decimal``; no amount ever passes through a float.
Sums are order independent, and per-member subtotals partition the grand
total exactly: ``total(S) == sum(total_for(S, u) for u in user_ids(S))``.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import (
    MAX_EMAX,
    MAX_PREC,
    MIN_EMIN,
    Context,
    Decimal,
    Inexact,
    InvalidOperation,
    Rounded,
    localcontext,
)
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .client import Saving

ZERO = Decimal("0")

# Additions never round here; any rounding would raise instead
_EXACT = Context(
    prec=MAX_PREC,
    Emax=MAX_EMAX,
    Emin=MIN_EMIN,
    traps=[InvalidOperation, Inexact, Rounded],
)


def _exact_sum(amounts: Iterable[Decimal]) -> Decimal:
    with localcontext(_EXACT):
        return sum(amounts, ZERO)


def parse_amount(value: str | int | Decimal | None) -> Decimal | None:
    """Parse user input into a positive amount.

    Returns None for empty, malformed, non-finite, zero or negative input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def total(savings: Iterable[Saving]) -> Decimal:
    """Sum every visible saving."""
    return _exact_sum(s.amount for s in savings)


def total_for(savings: Iterable[Saving], user_id: str) -> Decimal:
    """Sum the savings contributed by one member."""
    return _exact_sum(s.amount for s in savings if s.user_id == user_id)


def user_ids(savings: Iterable[Saving]) -> list[str]:
    """Distinct contributors, in order of first appearance."""
    return list(dict.fromkeys(s.user_id for s in savings))


def totals_by_user(savings: Iterable[Saving]) -> dict[str, Decimal]:
    """Subtotal per contributor."""
    totals: dict[str, Decimal] = {}
    with localcontext(_EXACT):
        for saving in savings:
            totals[saving.user_id] = totals.get(saving.user_id, ZERO) + saving.amount
    return totals


__all__ = ["parse_amount", "total", "total_for", "totals_by_user", "user_ids"]
