"""Ledger Store - SQLite persistence with row-level policy enforcement.

Holds the auth provider's identities, the member profiles and the shared
savings. Every statement issued on behalf of a caller passes through the
policy engine inside the same transaction as the write it guards.
"""

from __future__ import annotations

import sqlite3
import threading
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from .errors import ConstraintViolation, PolicyDenied
from .policies import Command, Identity, PolicyEngine


# SQL schema for the ledger
SCHEMA_SQL = """
-- Identities issued by the auth provider
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);

-- One profile per identity
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Contributions; amount is canonical decimal text
CREATE TABLE IF NOT EXISTS savings (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    amount TEXT NOT NULL CHECK (CAST(amount AS REAL) > 0),
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_savings_user_id ON savings(user_id);
CREATE INDEX IF NOT EXISTS idx_savings_created_at ON savings(created_at DESC);
"""

PROFILES = "profiles"
SAVINGS = "savings"

# Columns no UPDATE may touch
_IMMUTABLE_COLUMNS = frozenset({"id", "created_at"})


def _to_amount(value: Any) -> str:
    """Convert an amount to canonical decimal text, rejecting non-numbers."""
    if isinstance(value, bool):
        raise ConstraintViolation(SAVINGS, "amount must be numeric")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ConstraintViolation(SAVINGS, "amount must be numeric") from exc
    if not amount.is_finite():
        raise ConstraintViolation(SAVINGS, "amount must be finite")
    if amount <= 0:
        raise ConstraintViolation(
            SAVINGS, 'new row for relation "savings" violates check constraint "savings_amount_check"'
        )
    return format(amount, "f")


def _encode(table: str, row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    if table == SAVINGS and "amount" in data:
        data["amount"] = _to_amount(data["amount"])
    return data


def _decode(table: str, row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    if table == SAVINGS and data.get("amount") is not None:
        data["amount"] = Decimal(data["amount"])
    return data


class LedgerStore:
    """Policy-enforcing repository for profiles and savings.

    Every public data method takes the caller's ``Identity`` (or ``None`` for
    an anonymous caller) explicitly. The connection is private; the only
    methods that skip the policy engine are the identity administration
    calls used by the auth provider.

    Example:
        with LedgerStore(":memory:") as store:
            store.register_identity("u1")
            me = Identity("u1")
            store.insert_profile(me, name="Alice")
            store.insert_saving(me, amount=Decimal("100"), description="gift")
            rows = store.select_savings(me)
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        policy_engine: PolicyEngine | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store and its schema.

        Args:
            db_path: SQLite database file, or ":memory:". Defaults to data/ledger.db
            policy_engine: Row-level policies to enforce (default: ledger policies)
            time_provider: Clock used for server-assigned timestamps
        """
        if db_path is None:
            db_path = Path.cwd() / "data" / "ledger.db"
        if str(db_path) != ":memory:":
            db_path = Path(db_path)
            # Ensure directory exists
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = str(db_path)
        self._engine = policy_engine or PolicyEngine()
        self._time_provider = time_provider or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._ensure_connection()
        self._ensure_schema()

    # -----------------------------------------------------------------------
    # Connection management
    # -----------------------------------------------------------------------

    def _ensure_connection(self) -> None:
        """Ensure database connection is established."""
        if self._conn is None:
            # Statements run on FastAPI worker threads; _lock serializes them
            self._conn = sqlite3.connect(
                self.db_path,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
                self._conn.execute("PRAGMA synchronous = NORMAL")
            # Wait up to 5 seconds if database is locked
            self._conn.execute("PRAGMA busy_timeout = 5000")

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        with self._lock:
            self._get_conn().executescript(SCHEMA_SQL)

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection, ensuring it's established."""
        self._ensure_connection()
        assert self._conn is not None
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a policy check and its write as one atomic unit."""
        with self._lock:
            conn = self._get_conn()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _now(self) -> str:
        return self._time_provider().isoformat(timespec="microseconds")

    def ping(self) -> None:
        """Run a trivial query to verify the connection."""
        with self._lock:
            self._get_conn().execute("SELECT 1")

    # -----------------------------------------------------------------------
    # Policy-governed statements
    # -----------------------------------------------------------------------

    def _select(
        self,
        identity: Identity | None,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        order_by: str,
    ) -> list[dict[str, Any]]:
        filters = {k: v for k, v in (filters or {}).items() if v is not None}
        where = ""
        if filters:
            where = " WHERE " + " AND ".join(f"{column} = ?" for column in filters)

        with self._lock:
            cursor = self._get_conn().execute(
                f"SELECT * FROM {table}{where} ORDER BY {order_by}",
                tuple(filters.values()),
            )
            rows = [_decode(table, row) for row in cursor.fetchall()]

        return self._engine.filter_visible(identity, table, Command.SELECT, rows)

    def _insert(
        self,
        identity: Identity | None,
        table: str,
        row: dict[str, Any],
    ) -> dict[str, Any]:
        with self._transaction() as conn:
            # Policies run before constraints, as WITH CHECK does
            if not self._engine.can_write(identity, table, Command.INSERT, row):
                raise PolicyDenied(table, Command.INSERT.value)

            row = _encode(table, row)
            columns = ", ".join(row)
            placeholders = ", ".join("?" * len(row))
            try:
                conn.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
            except sqlite3.IntegrityError as exc:
                raise ConstraintViolation(table, str(exc)) from exc

        return _decode(table, row)

    def _update(
        self,
        identity: Identity | None,
        table: str,
        row_id: str,
        changes: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        if _IMMUTABLE_COLUMNS & changes.keys():
            raise ConstraintViolation(table, "id and created_at are immutable")

        with self._transaction() as conn:
            current = conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row_id,)
            ).fetchone()
            # Invisible rows read as missing rows
            if current is None or not self._engine.can_see(
                identity, table, Command.UPDATE, _decode(table, current)
            ):
                return []

            if not self._engine.can_write(
                identity, table, Command.UPDATE, {**_decode(table, current), **changes}
            ):
                raise PolicyDenied(table, Command.UPDATE.value)

            changes = _encode(table, changes)
            updated = {**dict(current), **changes}

            if changes:
                assignments = ", ".join(f"{column} = ?" for column in changes)
                try:
                    conn.execute(
                        f"UPDATE {table} SET {assignments} WHERE id = ?",
                        (*changes.values(), row_id),
                    )
                except sqlite3.IntegrityError as exc:
                    raise ConstraintViolation(table, str(exc)) from exc

        return [_decode(table, updated)]

    def _delete(
        self,
        identity: Identity | None,
        table: str,
        row_id: str,
    ) -> int:
        with self._transaction() as conn:
            rows = [
                _decode(table, row)
                for row in conn.execute(
                    f"SELECT * FROM {table} WHERE id = ?", (row_id,)
                ).fetchall()
            ]
            doomed = self._engine.filter_visible(identity, table, Command.DELETE, rows)
            if not doomed:
                return 0

            placeholders = ",".join("?" * len(doomed))
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE id IN ({placeholders})",
                tuple(row["id"] for row in doomed),
            )
            return cursor.rowcount

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    def select_profiles(
        self,
        identity: Identity | None,
        *,
        profile_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List visible profiles, oldest first.

        Args:
            identity: Calling identity, or None when anonymous
            profile_id: Restrict to a single profile id

        Returns:
            Profile dicts with keys: id, name, created_at
        """
        return self._select(
            identity,
            PROFILES,
            filters={"id": profile_id},
            order_by="created_at ASC, rowid ASC",
        )

    def insert_profile(
        self,
        identity: Identity | None,
        *,
        name: str,
        profile_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a profile. ``profile_id`` defaults to the caller's id.

        Raises:
            PolicyDenied: If the profile id is not the caller's own
            ConstraintViolation: If the profile already exists or name is missing
        """
        if profile_id is None and identity is not None:
            profile_id = identity.user_id
        row = {"id": profile_id, "name": name, "created_at": self._now()}
        return self._insert(identity, PROFILES, row)

    def update_profile(
        self,
        identity: Identity | None,
        profile_id: str,
        *,
        name: str,
    ) -> list[dict[str, Any]]:
        """Rename a profile. Returns the updated rows (empty when none matched)."""
        return self._update(identity, PROFILES, profile_id, {"name": name})

    # -----------------------------------------------------------------------
    # Savings
    # -----------------------------------------------------------------------

    def select_savings(
        self,
        identity: Identity | None,
        *,
        user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List visible savings, newest first.

        Args:
            identity: Calling identity, or None when anonymous
            user_id: Restrict to one contributor

        Returns:
            Saving dicts with keys: id, user_id, amount (Decimal),
            description, created_at
        """
        return self._select(
            identity,
            SAVINGS,
            filters={"user_id": user_id},
            order_by="created_at DESC, rowid DESC",
        )

    def insert_saving(
        self,
        identity: Identity | None,
        *,
        amount: Decimal | int | str,
        description: str = "",
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Record a contribution owned by the caller.

        ``user_id`` defaults to the caller's id; naming anyone else is denied.

        Raises:
            PolicyDenied: If the row would not belong to the caller
            ConstraintViolation: If amount is not a positive number or the
                owner has no profile
        """
        if user_id is None and identity is not None:
            user_id = identity.user_id
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "amount": amount,
            "description": description if description is not None else "",
            "created_at": self._now(),
        }
        return self._insert(identity, SAVINGS, row)

    def update_saving(
        self,
        identity: Identity | None,
        saving_id: str,
        *,
        amount: Decimal | int | str | None = None,
        description: str | None = None,
        user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Modify one of the caller's savings. Returns the updated rows."""
        changes: dict[str, Any] = {}
        if amount is not None:
            changes["amount"] = amount
        if description is not None:
            changes["description"] = description
        if user_id is not None:
            changes["user_id"] = user_id
        return self._update(identity, SAVINGS, saving_id, changes)

    def delete_saving(self, identity: Identity | None, saving_id: str) -> int:
        """Delete one of the caller's savings.

        Returns:
            Number of rows deleted. Zero when the row is missing or is not
            the caller's; the two cases are indistinguishable.
        """
        return self._delete(identity, SAVINGS, saving_id)

    # -----------------------------------------------------------------------
    # Identity administration (auth provider side, not policy-governed)
    # -----------------------------------------------------------------------

    def register_identity(self, user_id: str) -> None:
        """Record an identity issued by the auth provider (idempotent)."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (id, created_at) VALUES (?, ?)",
                (user_id, self._now()),
            )

    def remove_identity(self, user_id: str) -> bool:
        """Remove an identity, cascading to its profile and savings."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> LedgerStore:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes connection."""
        self.close()


__all__ = ["LedgerStore", "SCHEMA_SQL"]
