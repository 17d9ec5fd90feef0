"""Bearer-token identity resolution for the ledger service."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..persistence.policies import Identity
from .config import LedgerConfig, SessionToken


class IdentityTokenManager:
    """In-memory session registry standing in for the auth provider.

    Maps opaque bearer tokens to stable identities and enforces expiry.
    Credential issuance itself happens elsewhere; tokens arrive through
    configuration or ``register``. Every registered identity is reported
    to ``on_register`` so the store knows it before its first request.
    """

    def __init__(
        self,
        config: LedgerConfig,
        on_register: Callable[[str], None] | None = None,
    ):
        self._tokens: dict[str, SessionToken] = {}
        self._on_register = on_register
        for token in config.tokens:
            self.register(token)

    def register(self, token: SessionToken) -> None:
        """Register a new session token."""
        if self._on_register is not None:
            self._on_register(token.user_id)
        self._tokens[token.token] = token

    def revoke(self, token: str) -> bool:
        """Revoke a token. Returns True if token existed."""
        return self._tokens.pop(token, None) is not None

    def resolve(self, token: str, now: datetime | None = None) -> Identity:
        """Resolve a bearer token to the identity it was issued for.

        Args:
            token: The bearer token
            now: Current time (for testing)

        Raises:
            HTTPException: 401 if the token is unknown or expired
        """
        now = now or datetime.now(timezone.utc)
        session = self._tokens.get(token)

        if session is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
            )

        if session.is_expired(now):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token expired",
            )

        return Identity(user_id=session.user_id)

    def user_ids(self) -> list[str]:
        """Identities with a registered session."""
        return list(dict.fromkeys(s.user_id for s in self._tokens.values()))


bearer_scheme = HTTPBearer(auto_error=False)


def get_token_manager(request: Request) -> IdentityTokenManager:
    """FastAPI dependency returning the token manager of the serving app."""
    manager: IdentityTokenManager | None = getattr(
        request.app.state, "token_manager", None
    )
    if manager is None:
        raise RuntimeError("Token manager not configured on this app")
    return manager


def current_identity(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    token_manager: Annotated[IdentityTokenManager, Depends(get_token_manager)],
) -> Identity | None:
    """FastAPI dependency yielding the caller's identity.

    A request without a bearer token is anonymous (``None``); the store's
    policies then deny it everything. A token that is present but unknown
    or expired is rejected with 401.
    """
    if credentials is None or not credentials.credentials:
        return None
    return token_manager.resolve(credentials.credentials)


def require_identity(
    identity: Annotated[Identity | None, Depends(current_identity)],
) -> Identity:
    """FastAPI dependency that insists on an authenticated caller."""
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    return identity


__all__ = [
    "IdentityTokenManager",
    "current_identity",
    "get_token_manager",
    "require_identity",
]
