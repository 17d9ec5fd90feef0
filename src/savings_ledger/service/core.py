"""Core ledger service - maps API requests onto the policy-enforcing store."""

from __future__ import annotations

from datetime import timedelta

from ..persistence.database import LedgerStore
from ..persistence.errors import StoreError
from ..persistence.policies import Identity
from .auth import IdentityTokenManager
from .config import LedgerConfig, SessionToken
from .logging import get_logger
from .models import (
    DeleteResult,
    Profile,
    ProfileCreate,
    ProfileUpdate,
    Saving,
    SavingCreate,
)

logger = get_logger(__name__)


def _caller(identity: Identity | None) -> str | None:
    return identity.user_id if identity else None


class LedgerService:
    """Ledger business operations.

    Every method takes the caller's identity and hands it to the store,
    which alone decides what the caller may see or change. Store errors
    propagate to the HTTP layer after being logged.

    The service also owns the session registry: any token it accepts,
    configured or registered later, names an identity the store knows.
    """

    def __init__(self, config: LedgerConfig, store: LedgerStore | None = None) -> None:
        self.config = config
        self._store = store or LedgerStore(config.db_path)
        self.token_manager = IdentityTokenManager(
            config, on_register=self._store.register_identity
        )

    @property
    def store(self) -> LedgerStore:
        return self._store

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def register_session(self, session: SessionToken) -> None:
        """Accept a session token issued after startup."""
        self.token_manager.register(session)
        logger.info("session_registered", user_id=session.user_id)

    def issue_session_token(
        self,
        token: str,
        user_id: str,
        lifetime: timedelta | None = None,
    ) -> SessionToken:
        """Issue a session token and make it usable immediately."""
        session = self.config.issue_session_token(token, user_id, lifetime)
        self.register_session(session)
        return session

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    def list_profiles(
        self,
        identity: Identity | None,
        profile_id: str | None = None,
    ) -> list[Profile]:
        rows = self._store.select_profiles(identity, profile_id=profile_id)
        return [Profile(**row) for row in rows]

    def create_profile(self, identity: Identity | None, request: ProfileCreate) -> Profile:
        try:
            row = self._store.insert_profile(
                identity, name=request.name, profile_id=request.id
            )
        except StoreError as exc:
            logger.warning(
                "profile_rejected",
                user_id=_caller(identity),
                reason=type(exc).__name__,
            )
            raise
        logger.info("profile_created", user_id=row["id"])
        return Profile(**row)

    def update_profile(
        self,
        identity: Identity | None,
        profile_id: str,
        request: ProfileUpdate,
    ) -> list[Profile]:
        rows = self._store.update_profile(identity, profile_id, name=request.name)
        logger.info(
            "profile_updated",
            user_id=_caller(identity),
            profile_id=profile_id,
            rows=len(rows),
        )
        return [Profile(**row) for row in rows]

    # -----------------------------------------------------------------------
    # Savings
    # -----------------------------------------------------------------------

    def list_savings(
        self,
        identity: Identity | None,
        user_id: str | None = None,
    ) -> list[Saving]:
        rows = self._store.select_savings(identity, user_id=user_id)
        return [Saving(**row) for row in rows]

    def create_saving(self, identity: Identity | None, request: SavingCreate) -> Saving:
        try:
            row = self._store.insert_saving(
                identity,
                amount=request.amount,
                description=request.description,
                user_id=request.user_id,
            )
        except StoreError as exc:
            logger.warning(
                "saving_rejected",
                user_id=_caller(identity),
                reason=type(exc).__name__,
            )
            raise
        logger.info("saving_created", user_id=row["user_id"], saving_id=row["id"])
        return Saving(**row)

    def delete_saving(self, identity: Identity | None, saving_id: str) -> DeleteResult:
        deleted = self._store.delete_saving(identity, saving_id)
        logger.info(
            "saving_deleted",
            user_id=_caller(identity),
            saving_id=saving_id,
            rows=deleted,
        )
        return DeleteResult(deleted=deleted)

    def close(self) -> None:
        self._store.close()
