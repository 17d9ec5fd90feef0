"""Row-level access policies for the savings ledger.

Policies follow PostgreSQL row-level security semantics:
- ``using`` decides which existing rows a command can see or touch
- ``with_check`` decides whether a new or modified row may be written
- Permissive policies for the same table/command OR together
- A command with no policy is denied
- An UPDATE policy without ``with_check`` reuses ``using`` for new rows

Every predicate is a pure function of ``(identity, row)`` so the rules can be
tested without a database.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class Identity:
    """An authenticated caller, as vouched for by the auth provider."""

    user_id: str


class Command(str, Enum):
    """Statement kinds a policy can govern."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


Row = Mapping[str, Any]
RowPredicate = Callable[[Identity, Row], bool]


def everyone(identity: Identity, row: Row) -> bool:
    return True


def owns_profile(identity: Identity, row: Row) -> bool:
    return row.get("id") == identity.user_id


def owns_saving(identity: Identity, row: Row) -> bool:
    return row.get("user_id") == identity.user_id


@dataclass(frozen=True, slots=True)
class Policy:
    """A single permissive policy on one table and command."""

    name: str
    table: str
    command: Command
    using: RowPredicate | None = None
    with_check: RowPredicate | None = None


LEDGER_POLICIES: tuple[Policy, ...] = (
    Policy(
        "Users can view all profiles",
        "profiles",
        Command.SELECT,
        using=everyone,
    ),
    Policy(
        "Users can insert own profile",
        "profiles",
        Command.INSERT,
        with_check=owns_profile,
    ),
    Policy(
        "Users can update own profile",
        "profiles",
        Command.UPDATE,
        using=owns_profile,
        with_check=owns_profile,
    ),
    Policy(
        "Authenticated users can view all savings",
        "savings",
        Command.SELECT,
        using=everyone,
    ),
    Policy(
        "Users can insert own savings",
        "savings",
        Command.INSERT,
        with_check=owns_saving,
    ),
    Policy(
        "Users can update own savings",
        "savings",
        Command.UPDATE,
        using=owns_saving,
        with_check=owns_saving,
    ),
    Policy(
        "Users can delete own savings",
        "savings",
        Command.DELETE,
        using=owns_saving,
    ),
)


class PolicyEngine:
    """Evaluates row-level policies for a caller.

    Example:
        engine = PolicyEngine()
        engine.can_see(Identity("u1"), "savings", Command.DELETE, row)
        engine.can_write(Identity("u1"), "savings", Command.INSERT, new_row)
    """

    def __init__(self, policies: Iterable[Policy] = LEDGER_POLICIES) -> None:
        self._policies: dict[tuple[str, Command], list[Policy]] = {}
        for policy in policies:
            self._policies.setdefault((policy.table, policy.command), []).append(policy)

    def policies_for(self, table: str, command: Command) -> list[Policy]:
        """Return the policies registered for a table and command."""
        return list(self._policies.get((table, command), ()))

    def can_see(
        self,
        identity: Identity | None,
        table: str,
        command: Command,
        row: Row,
    ) -> bool:
        """Evaluate the ``using`` clauses against an existing row.

        INSERT has no existing row, so it never passes here.
        """
        if identity is None or command is Command.INSERT:
            return False
        return any(
            policy.using is not None and policy.using(identity, row)
            for policy in self.policies_for(table, command)
        )

    def can_write(
        self,
        identity: Identity | None,
        table: str,
        command: Command,
        row: Row,
    ) -> bool:
        """Evaluate the ``with_check`` clauses against a new row version."""
        if identity is None or command not in (Command.INSERT, Command.UPDATE):
            return False
        for policy in self.policies_for(table, command):
            check = policy.with_check
            if check is None and command is Command.UPDATE:
                check = policy.using
            if check is not None and check(identity, row):
                return True
        return False

    def filter_visible(
        self,
        identity: Identity | None,
        table: str,
        command: Command,
        rows: Iterable[Row],
    ) -> list[Row]:
        """Keep only the rows the caller may see for this command."""
        return [row for row in rows if self.can_see(identity, table, command, row)]


__all__ = [
    "Command",
    "Identity",
    "LEDGER_POLICIES",
    "Policy",
    "PolicyEngine",
    "RowPredicate",
    "everyone",
    "owns_profile",
    "owns_saving",
]
