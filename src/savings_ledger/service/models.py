"""Pydantic models backing the ledger API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class AuthUser(BaseModel):
    """The identity behind the presented bearer token."""

    id: str


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(BaseModel):
    """A ledger member, bound 1:1 to an identity."""

    id: str
    name: str
    created_at: datetime


class ProfileCreate(BaseModel):
    """Request to create the caller's profile.

    ``id`` defaults to the caller's identity; any other value is denied by
    the profile insert policy.
    """

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=200)


class ProfileUpdate(BaseModel):
    """Request to rename a profile. Only the name is mutable."""

    name: str = Field(..., min_length=1, max_length=200)


# ---------------------------------------------------------------------------
# Savings
# ---------------------------------------------------------------------------


class Saving(BaseModel):
    """A single contribution to the shared ledger."""

    id: str
    user_id: str
    amount: Decimal
    description: str = ""
    created_at: datetime


class SavingCreate(BaseModel):
    """Request to record a contribution.

    ``user_id`` defaults to the caller's identity; naming anyone else is
    denied by the savings insert policy. Positivity of ``amount`` is
    enforced by the store, not here.
    """

    amount: Decimal
    description: str = ""
    user_id: str | None = None


class DeleteResult(BaseModel):
    """Rows affected by a delete. Zero covers both missing and not-owned."""

    deleted: int


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Body returned for rejected statements."""

    detail: str
    code: str
