"""Per-session savings tracker.

Holds what one signed-in member currently sees of the shared ledger and
drives the load/mutate/reload cycle. Every mutation is followed by a full
reload; nothing is patched locally.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from .aggregation import parse_amount, total, total_for
from .client import (
    Identity,
    LedgerClient,
    LedgerClientError,
    LedgerSnapshot,
    Profile,
    Saving,
)

logger = logging.getLogger(__name__)


class SavingsTracker:
    """Stateful view of the ledger for one session.

    Failures never escape a cycle: they are logged, kept in
    ``last_error``, and the previously loaded state stays in place.

    Example:
        tracker = SavingsTracker(client)
        await tracker.load()
        tracker.amount_input = "100"
        await tracker.add_saving()
        print(tracker.total, tracker.member_totals())
    """

    def __init__(self, client: LedgerClient) -> None:
        self._client = client
        self.identity: Identity | None = None
        self.current_user: Profile | None = None
        self.profiles: list[Profile] = []
        self.savings: list[Saving] = []
        # Draft form inputs, cleared after a successful submit
        self.amount_input: str = ""
        self.description_input: str = ""
        self.loading = True
        self.last_error: LedgerClientError | None = None

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    # -----------------------------------------------------------------------
    # Load cycle
    # -----------------------------------------------------------------------

    async def load(self) -> bool:
        """Re-resolve the identity and re-read the ledger.

        Returns:
            True if the state now reflects the store. On failure the
            previous state is retained and False is returned.
        """
        try:
            snapshot = await self._client.load_ledger()
        except LedgerClientError as exc:
            logger.error("Error loading ledger: %s", exc)
            self.last_error = exc
            return False
        finally:
            self.loading = False

        self._apply(snapshot)
        return True

    def _apply(self, snapshot: LedgerSnapshot) -> None:
        # A lost session leaves nothing of the previous member's view behind
        self.identity = snapshot.identity
        self.profiles = snapshot.profiles
        self.current_user = snapshot.current_profile
        self.savings = snapshot.savings
        self.last_error = None

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    async def add_saving(
        self,
        amount: str | Decimal | None = None,
        description: str | None = None,
    ) -> bool:
        """Record a contribution for the signed-in member.

        Uses the draft inputs when arguments are omitted. A missing identity
        or an amount that is not a positive number makes this a no-op.

        Returns:
            True if the store accepted the row.
        """
        if self.identity is None:
            logger.debug("add_saving skipped: not signed in")
            return False

        parsed = parse_amount(self.amount_input if amount is None else amount)
        if parsed is None:
            logger.debug("add_saving skipped: amount is not a positive number")
            return False

        text = self.description_input if description is None else description
        try:
            await self._client.insert_saving(
                parsed,
                (text or "").strip(),
                user_id=self.identity.user_id,
            )
        except LedgerClientError as exc:
            logger.error("Error adding saving: %s", exc)
            self.last_error = exc
            return False

        self.amount_input = ""
        self.description_input = ""
        await self.load()
        return True

    async def delete_saving(self, saving_id: str) -> bool:
        """Ask the store to delete a saving, then reload.

        The store decides ownership; deleting someone else's row completes
        with no effect.

        Returns:
            True if the request completed.
        """
        try:
            deleted = await self._client.delete_saving(saving_id)
        except LedgerClientError as exc:
            logger.error("Error deleting saving: %s", exc)
            self.last_error = exc
            return False

        logger.debug("delete_saving %s affected %d row(s)", saving_id, deleted)
        await self.load()
        return True

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------

    @property
    def total(self) -> Decimal:
        return total(self.savings)

    def total_for(self, user_id: str) -> Decimal:
        return total_for(self.savings, user_id)

    def member_totals(self) -> list[tuple[Profile, Decimal]]:
        """Each profile with its subtotal, in profile order."""
        return [(profile, self.total_for(profile.id)) for profile in self.profiles]

    def profile_for(self, user_id: str) -> Profile | None:
        return next((p for p in self.profiles if p.id == user_id), None)

    def can_delete(self, saving: Saving) -> bool:
        """Whether to offer a delete control. Display gating only."""
        return self.identity is not None and saving.user_id == self.identity.user_id
