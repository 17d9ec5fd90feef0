"""FastAPI application factory for the ledger service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..persistence.database import LedgerStore
from ..persistence.errors import ConstraintViolation, PolicyDenied
from .config import LedgerConfig
from .core import LedgerService
from .logging import get_logger
from .middleware import CorrelationIdMiddleware
from .router import build_router

logger = get_logger(__name__)

# Store errors reach clients with a fixed detail; the raw text is logged
POLICY_DENIED_DETAIL = "Operation denied by row-level security policy"
CONSTRAINT_VIOLATION_DETAIL = "Row violates a data constraint"


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for startup/shutdown."""
    logger.info("ledger_starting", db_path=app.state.config.db_path)

    yield

    service: LedgerService | None = getattr(app.state, "ledger_service", None)
    if service is not None:
        service.close()
    logger.info("ledger_stopped")


async def _policy_denied_handler(request: Request, exc: PolicyDenied) -> JSONResponse:
    logger.warning(
        "policy_denied", table=exc.table, command=exc.command, error=str(exc)
    )
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": POLICY_DENIED_DETAIL, "code": "policy_denied"},
    )


async def _constraint_violation_handler(
    request: Request, exc: ConstraintViolation
) -> JSONResponse:
    logger.warning("constraint_violation", table=exc.table, error=str(exc))
    return JSONResponse(
        status_code=422,
        content={"detail": CONSTRAINT_VIOLATION_DETAIL, "code": "constraint_violation"},
    )


def create_ledger_app(
    config: LedgerConfig,
    *,
    store: LedgerStore | None = None,
) -> FastAPI:
    """Create and configure the ledger FastAPI application.

    Args:
        config: LedgerConfig instance
        store: Pre-built store (tests pass an in-memory one)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Savings Ledger",
        description="Shared two-person savings ledger with row-level ownership policies",
        version=__version__,
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.add_exception_handler(PolicyDenied, _policy_denied_handler)
    app.add_exception_handler(ConstraintViolation, _constraint_violation_handler)

    ledger_service = LedgerService(config, store=store)

    app.include_router(build_router(ledger_service))

    app.state.ledger_service = ledger_service
    app.state.token_manager = ledger_service.token_manager
    app.state.config = config

    # Health endpoint (no auth required) - checks the database
    @app.get("/healthz")
    def healthz() -> dict:
        """Health check endpoint with dependency verification."""
        checks = {}
        all_healthy = True

        try:
            ledger_service.store.ping()
            checks["database"] = {"status": "healthy"}
        except Exception as e:
            checks["database"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

        return {
            "status": "ok" if all_healthy else "degraded",
            "service": "savings-ledger",
            "version": __version__,
            "checks": checks,
        }

    # Ready endpoint (no auth required)
    @app.get("/ready")
    def ready() -> JSONResponse:
        """Readiness probe - 503 until the store answers queries."""
        try:
            ledger_service.store.ping()
            is_ready = True
        except Exception as e:
            logger.warning("ledger_not_ready", error=str(e))
            is_ready = False

        return JSONResponse(
            status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": is_ready, "service": "savings-ledger"},
        )

    return app


def create_app_from_env() -> FastAPI:
    """Create app using environment variable configuration."""
    return create_ledger_app(LedgerConfig.from_env())


__all__ = ["create_ledger_app", "create_app_from_env"]
