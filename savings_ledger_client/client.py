"""Ledger client implementation with async/sync interfaces."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LedgerConnectionError(LedgerClientError):
    """The ledger service could not be reached or timed out."""
    pass


class LedgerAuthError(LedgerClientError):
    """The session token was missing, unknown or expired."""
    pass


class LedgerRejectedError(LedgerClientError):
    """The store rejected the statement; nothing was written.

    Covers policy denials and constraint violations alike.
    """
    pass


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class LedgerClientConfig:
    """Configuration for LedgerClient."""

    base_url: str = "http://localhost:4950"
    token: str | None = None
    timeout: float = 10.0
    connection_pool_size: int = 10

    @classmethod
    def from_env(cls) -> LedgerClientConfig:
        """Load configuration from environment variables."""
        return cls(
            base_url=os.environ.get("LEDGER_URL", "http://localhost:4950"),
            token=os.environ.get("LEDGER_TOKEN") or None,
            timeout=float(os.environ.get("LEDGER_TIMEOUT", "10.0")),
        )


# ---------------------------------------------------------------------------
# Response Models (mirrors server models)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Identity:
    """The authenticated caller."""

    user_id: str


@dataclass(slots=True)
class Profile:
    """A ledger member."""

    id: str
    name: str
    created_at: datetime


@dataclass(slots=True)
class Saving:
    """A single contribution."""

    id: str
    user_id: str
    amount: Decimal
    created_at: datetime
    description: str = ""


@dataclass(slots=True)
class LedgerSnapshot:
    """Result of one load cycle: everything the store let this caller see."""

    identity: Identity | None
    profiles: list[Profile] = field(default_factory=list)
    current_profile: Profile | None = None
    savings: list[Saving] = field(default_factory=list)

    @classmethod
    def empty(cls) -> LedgerSnapshot:
        """Snapshot for a caller with no session."""
        return cls(identity=None)

    @property
    def authenticated(self) -> bool:
        return self.identity is not None


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _profile(data: dict[str, Any]) -> Profile:
    return Profile(
        id=data["id"],
        name=data["name"],
        created_at=_parse_datetime(data["created_at"]),
    )


def _saving(data: dict[str, Any]) -> Saving:
    return Saving(
        id=data["id"],
        user_id=data["user_id"],
        amount=Decimal(str(data["amount"])),
        description=data.get("description") or "",
        created_at=_parse_datetime(data["created_at"]),
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text


# ---------------------------------------------------------------------------
# Async Client
# ---------------------------------------------------------------------------


class LedgerClient:
    """Async client for the savings ledger service.

    Every call is a single request with a bounded timeout; failures raise
    immediately and are never retried.

    Example:
        >>> async with LedgerClient("http://localhost:4950", token="...") as client:
        ...     snapshot = await client.load_ledger()
        ...     print(len(snapshot.savings))
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = LedgerClientConfig(
            base_url=base_url.rstrip("/"),
            token=token,
            timeout=timeout,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: LedgerClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> LedgerClient:
        return cls(
            config.base_url,
            token=config.token,
            timeout=config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> LedgerClient:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @property
    def token(self) -> str | None:
        return self._config.token

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout,
                limits=httpx.Limits(
                    max_connections=self._config.connection_pool_size,
                    max_keepalive_connections=5,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the client connection."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _build_headers(self, correlation_id: str | None = None) -> dict[str, str]:
        headers = {}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> Any:
        """Make a single request and map failures onto client errors."""
        client = await self._ensure_client()
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await client.request(
                method,
                path,
                json=json,
                params=params or None,
                headers=self._build_headers(correlation_id),
            )
        except httpx.TimeoutException as e:
            raise LedgerConnectionError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise LedgerConnectionError(f"Connection failed: {e}") from e

        if response.status_code == 401:
            raise LedgerAuthError(_error_detail(response), 401)
        if 400 <= response.status_code < 500:
            raise LedgerRejectedError(_error_detail(response), response.status_code)
        if response.status_code >= 500:
            raise LedgerClientError(
                f"HTTP {response.status_code}: {_error_detail(response)}",
                response.status_code,
            )
        return response.json()

    # -----------------------------------------------------------------------
    # Identity API
    # -----------------------------------------------------------------------

    async def resolve_identity(
        self,
        *,
        correlation_id: str | None = None,
    ) -> Identity | None:
        """Resolve the identity behind the session token.

        Returns:
            Identity, or None when there is no token or the service no
            longer accepts it.
        """
        if not self._config.token:
            return None
        try:
            data = await self._request("GET", "/auth/user", correlation_id=correlation_id)
        except LedgerAuthError:
            return None
        return Identity(user_id=data["id"])

    # -----------------------------------------------------------------------
    # Profiles API
    # -----------------------------------------------------------------------

    async def list_profiles(
        self,
        *,
        profile_id: str | None = None,
        correlation_id: str | None = None,
    ) -> list[Profile]:
        """List profiles, oldest first."""
        data = await self._request(
            "GET",
            "/profiles",
            params={"id": profile_id},
            correlation_id=correlation_id,
        )
        return [_profile(p) for p in data]

    async def get_profile(
        self,
        profile_id: str,
        *,
        correlation_id: str | None = None,
    ) -> Profile | None:
        """Fetch a single profile, or None when it is not visible."""
        profiles = await self.list_profiles(
            profile_id=profile_id, correlation_id=correlation_id
        )
        if len(profiles) > 1:
            raise LedgerClientError(f"Expected at most one profile, got {len(profiles)}")
        return profiles[0] if profiles else None

    async def create_profile(
        self,
        name: str,
        *,
        profile_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Profile:
        """Create the caller's profile."""
        payload: dict[str, Any] = {"name": name}
        if profile_id is not None:
            payload["id"] = profile_id
        data = await self._request(
            "POST", "/profiles", json=payload, correlation_id=correlation_id
        )
        return _profile(data)

    async def update_profile(
        self,
        profile_id: str,
        name: str,
        *,
        correlation_id: str | None = None,
    ) -> list[Profile]:
        """Rename a profile. Returns the updated rows (empty if none matched)."""
        data = await self._request(
            "PATCH",
            f"/profiles/{profile_id}",
            json={"name": name},
            correlation_id=correlation_id,
        )
        return [_profile(p) for p in data]

    # -----------------------------------------------------------------------
    # Savings API
    # -----------------------------------------------------------------------

    async def list_savings(
        self,
        *,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> list[Saving]:
        """List the shared savings, newest first."""
        data = await self._request(
            "GET",
            "/savings",
            params={"user_id": user_id},
            correlation_id=correlation_id,
        )
        return [_saving(s) for s in data]

    async def insert_saving(
        self,
        amount: Decimal,
        description: str = "",
        *,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Saving:
        """Record a contribution.

        Raises:
            LedgerRejectedError: If the store refused the row
        """
        payload: dict[str, Any] = {
            "amount": str(amount),
            "description": description,
        }
        if user_id is not None:
            payload["user_id"] = user_id
        data = await self._request(
            "POST", "/savings", json=payload, correlation_id=correlation_id
        )
        return _saving(data)

    async def delete_saving(
        self,
        saving_id: str,
        *,
        correlation_id: str | None = None,
    ) -> int:
        """Delete a saving. Returns rows affected (0 if missing or not owned)."""
        data = await self._request(
            "DELETE", f"/savings/{saving_id}", correlation_id=correlation_id
        )
        return int(data.get("deleted", 0))

    # -----------------------------------------------------------------------
    # Load cycle
    # -----------------------------------------------------------------------

    async def load_ledger(self) -> LedgerSnapshot:
        """Resolve the identity and read the whole visible ledger.

        Issues three independent reads: all profiles (oldest first), the
        caller's own profile, and all savings (newest first). Rows are
        returned exactly as the store's policies allow; nothing is
        filtered here.

        Returns:
            LedgerSnapshot; empty when no identity can be resolved.
        """
        correlation_id = str(uuid.uuid4())
        identity = await self.resolve_identity(correlation_id=correlation_id)
        if identity is None:
            return LedgerSnapshot.empty()

        profiles, current_profile, savings = await asyncio.gather(
            self.list_profiles(correlation_id=correlation_id),
            self.get_profile(identity.user_id, correlation_id=correlation_id),
            self.list_savings(correlation_id=correlation_id),
        )
        return LedgerSnapshot(
            identity=identity,
            profiles=profiles,
            current_profile=current_profile,
            savings=savings,
        )

    # -----------------------------------------------------------------------
    # Health API
    # -----------------------------------------------------------------------

    async def health(self) -> dict[str, Any]:
        """Get service health status."""
        return await self._request("GET", "/healthz")

    async def ready(self) -> bool:
        """Check if service is ready."""
        try:
            data = await self._request("GET", "/ready")
            return data.get("ready", False)
        except LedgerClientError:
            return False


# ---------------------------------------------------------------------------
# Sync Client Wrapper
# ---------------------------------------------------------------------------


class LedgerClientSync:
    """Synchronous wrapper for LedgerClient.

    Keeps one event loop for the wrapper's lifetime so the underlying
    connection pool stays usable between calls.

    Example:
        >>> with LedgerClientSync("http://localhost:4950", token="...") as client:
        ...     snapshot = client.load_ledger()
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._async_client = LedgerClient(
            base_url,
            token=token,
            timeout=timeout,
            transport=transport,
        )
        self._runner = asyncio.Runner()

    def __enter__(self) -> LedgerClientSync:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _run(self, coro):
        return self._runner.run(coro)

    def close(self) -> None:
        """Close the client and its event loop."""
        self._run(self._async_client.close())
        self._runner.close()

    def resolve_identity(self) -> Identity | None:
        return self._run(self._async_client.resolve_identity())

    def list_profiles(self, *, profile_id: str | None = None) -> list[Profile]:
        return self._run(self._async_client.list_profiles(profile_id=profile_id))

    def create_profile(self, name: str, *, profile_id: str | None = None) -> Profile:
        return self._run(self._async_client.create_profile(name, profile_id=profile_id))

    def update_profile(self, profile_id: str, name: str) -> list[Profile]:
        return self._run(self._async_client.update_profile(profile_id, name))

    def list_savings(self, *, user_id: str | None = None) -> list[Saving]:
        return self._run(self._async_client.list_savings(user_id=user_id))

    def insert_saving(
        self,
        amount: Decimal,
        description: str = "",
        *,
        user_id: str | None = None,
    ) -> Saving:
        return self._run(
            self._async_client.insert_saving(amount, description, user_id=user_id)
        )

    def delete_saving(self, saving_id: str) -> int:
        return self._run(self._async_client.delete_saving(saving_id))

    def load_ledger(self) -> LedgerSnapshot:
        return self._run(self._async_client.load_ledger())

    def health(self) -> dict[str, Any]:
        """Get service health status."""
        return self._run(self._async_client.health())

    def ready(self) -> bool:
        """Check if service is ready."""
        return self._run(self._async_client.ready())
