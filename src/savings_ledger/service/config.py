"""Configuration primitives for the ledger service."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


@dataclass(slots=True)
class SessionToken:
    """A bearer token bound to one identity by the auth provider."""

    token: str
    user_id: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at


def parse_tokens(raw: str) -> list[SessionToken]:
    """Parse ``token=user_id`` pairs separated by commas.

    Raises:
        ValueError: If a pair has no ``=`` or an empty side
    """
    tokens: list[SessionToken] = []
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, sep, user_id = pair.partition("=")
        token, user_id = token.strip(), user_id.strip()
        if not sep or not token or not user_id:
            raise ValueError(f"Invalid token entry {pair!r}, expected token=user_id")
        tokens.append(SessionToken(token=token, user_id=user_id))
    return tokens


@dataclass(slots=True)
class LedgerConfig:
    """Runtime configuration for the ledger service.

    Configuration Sources (priority order):
    1. Direct constructor arguments
    2. Environment variables (LEDGER_*)
    3. Default values

    Attributes:
        db_path: SQLite database path (default: data/ledger.db)
        port: Service port (default: 4950)
        tokens: Session tokens and the identities they stand for
        cors_origins: Browser origins allowed to call the API
    """

    db_path: str = "data/ledger.db"
    port: int = 4950
    tokens: list[SessionToken] = field(default_factory=list)
    cors_origins: list[str] = field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Create configuration from environment variables.

        Optional:
            LEDGER_DB_PATH: SQLite database path
            LEDGER_PORT: Service port (default: 4950)
            LEDGER_TOKENS: Comma-separated token=user_id pairs
            LEDGER_CORS_ORIGINS: Comma-separated allowed origins
        """
        config = cls(
            db_path=os.environ.get("LEDGER_DB_PATH", "data/ledger.db"),
            port=int(os.environ.get("LEDGER_PORT", "4950")),
            tokens=parse_tokens(os.environ.get("LEDGER_TOKENS", "")),
        )

        origins = os.environ.get("LEDGER_CORS_ORIGINS", "")
        if origins:
            config.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]

        return config

    def with_tokens(self, tokens: Iterable[SessionToken]) -> LedgerConfig:
        """Replace the configured tokens."""
        self.tokens = list(tokens)
        return self

    def issue_session_token(
        self,
        token: str,
        user_id: str,
        lifetime: timedelta | None = None,
    ) -> SessionToken:
        """Record a session token with optional expiration.

        A running service only accepts the token once it is registered; use
        ``LedgerService.issue_session_token`` for that.
        """
        expires_at = None
        if lifetime is not None:
            expires_at = datetime.now(timezone.utc) + lifetime
        session = SessionToken(token=token, user_id=user_id, expires_at=expires_at)
        self.tokens.append(session)
        return session

    def user_ids(self) -> list[str]:
        """Distinct identities named by the configured tokens, in order."""
        return list(dict.fromkeys(token.user_id for token in self.tokens))
