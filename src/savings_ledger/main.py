"""Savings ledger entry point."""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn

from savings_ledger.service.logging import configure_logging, get_logger


def main() -> int:
    """Main entry point for the ledger service."""
    parser = argparse.ArgumentParser(
        prog="savings-ledger",
        description="Savings Ledger - shared two-person savings ledger service",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("LEDGER_PORT", "4950")),
        help="Port to listen on (default: 4950)",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite database path (default: $LEDGER_DB_PATH or data/ledger.db)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Force JSON log output (default: auto-detect)",
    )

    args = parser.parse_args()

    # Configure structured logging before anything else
    configure_logging(
        level=args.log_level.upper(),
        json_output=args.json_logs if args.json_logs else None,
    )
    logger = get_logger("savings_ledger.main")

    if args.db_path:
        os.environ["LEDGER_DB_PATH"] = args.db_path
    os.environ["LEDGER_PORT"] = str(args.port)

    if not os.environ.get("LEDGER_TOKENS"):
        logger.warning("no_session_tokens", hint="set LEDGER_TOKENS=token=user_id,...")

    try:
        uvicorn.run(
            "savings_ledger.service.app:create_app_from_env",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=args.log_level,
            factory=True,
        )
        return 0
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except ValueError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
