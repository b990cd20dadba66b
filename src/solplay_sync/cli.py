"""
Command-line interface for SolPlay Sync.

Provides CLI commands for operating the mirror:
- init-db: Create the mirror store schema
- run: Start the HTTP API with the ingestion loop
- poll-once: Run a single poll cycle against the configured RPC and exit
- status: Print the effective configuration

Usage:
    solplay-sync init-db
    solplay-sync run [--host HOST] [--port PORT]
    solplay-sync poll-once [--limit N]
    solplay-sync status

Environment Variables:
    SOLPLAY_RPC_URL: JSON-RPC endpoint (default: devnet)
    SOLPLAY_PROGRAM_ID: SolPlay program address
    SOLPLAY_DB_PATH: SQLite file for the mirror store
    SOLPLAY_HOST / SOLPLAY_PORT: API bind address
    SOLPLAY_LOG_LEVEL: Root log level
"""

import argparse
import asyncio
import sys

from solplay_sync.config import config, print_config_summary
from solplay_sync.logging_setup import configure_logging


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create all mirror tables and indexes. Safe to run repeatedly."""
    from solplay_sync.db.errors import DatabaseError
    from solplay_sync.db.schema import init_database

    try:
        init_database()
    except DatabaseError as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1
    print(f"Database ready at {config.database.absolute_path}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """
    Serve the API with uvicorn.

    CLI arguments override the ``[server]`` section; the ingestion loop is
    started and stopped by the application lifespan.
    """
    import uvicorn

    from solplay_sync.api.server import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port

    try:
        uvicorn.run(create_app(config), host=host, port=port, log_config=None)
        return 0
    except KeyboardInterrupt:
        print("\nServer stopped.")
        return 0
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1


async def _poll_once(limit: int | None) -> int:
    from solplay_sync.db.schema import init_database
    from solplay_sync.runtime import SyncRuntime

    init_database()
    runtime = SyncRuntime.build(config)
    if limit is not None:
        runtime.loop.poll_limit = limit
    try:
        return await runtime.loop.poll_once()
    finally:
        await runtime.shutdown()


def cmd_poll_once(args: argparse.Namespace) -> int:
    """Process the program's most recent signatures once, then exit."""
    from solplay_sync.db.errors import DatabaseError
    from solplay_sync.ledger.errors import LedgerUnavailable

    try:
        handled = asyncio.run(_poll_once(args.limit))
    except LedgerUnavailable as e:
        print(f"Ledger unavailable: {e}", file=sys.stderr)
        return 1
    except DatabaseError as e:
        print(f"Database error: {e}", file=sys.stderr)
        return 1
    print(f"Processed {handled} transaction(s)")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    print_config_summary()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="solplay-sync",
        description="SolPlay Sync - off-chain mirror and settlement reconciliation",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser(
        "init-db",
        help="Initialize the database schema",
        description="Create the mirror store tables if they do not exist.",
    )
    init_parser.set_defaults(func=cmd_init_db)

    run_parser = subparsers.add_parser(
        "run",
        help="Run the API and ingestion loop",
        description="Serve the HTTP API; the ingestion loop runs alongside it.",
    )
    run_parser.add_argument(
        "--port",
        "-p",
        type=int,
        help="API server port (default: [server] port, or SOLPLAY_PORT env var)",
    )
    run_parser.add_argument(
        "--host",
        type=str,
        help="Host to bind to (default: [server] host, or SOLPLAY_HOST env var)",
    )
    run_parser.set_defaults(func=cmd_run)

    poll_parser = subparsers.add_parser(
        "poll-once",
        help="Run one poll cycle and exit",
        description="Fetch and mirror the program's most recent transactions once.",
    )
    poll_parser.add_argument(
        "--limit",
        type=int,
        help="Signatures to request (default: [ledger] poll_limit)",
    )
    poll_parser.set_defaults(func=cmd_poll_once)

    status_parser = subparsers.add_parser(
        "status",
        help="Show the effective configuration",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(config.logging)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
