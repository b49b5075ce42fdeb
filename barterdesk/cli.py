"""
CLI entry point for the barter service.

Usage:
    # Serve the API (deadline sweeper runs inside the app)
    python -m barterdesk.cli serve --port 8000

    # Enforce elapsed deadlines once, e.g. from cron
    python -m barterdesk.cli sweep

    # Create the SQL schema for the configured database
    python -m barterdesk.cli init-db
"""

import argparse
import logging
import sys

from barterdesk.core.config import settings

logger = logging.getLogger(__name__)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the full FastAPI application under uvicorn."""
    import uvicorn

    logger.info("Starting BarterDesk at http://%s:%d", args.host, args.port)
    uvicorn.run("barterdesk.main:app", host=args.host, port=args.port, reload=False)


def cmd_sweep(args: argparse.Namespace) -> None:
    """Run one deadline sweep against the configured store and ledger."""
    from barterdesk.application.barter.sweep_deadlines import SweepDeadlinesUseCase
    from barterdesk.interfaces.barter.dependencies import build_barter_runtime

    if not settings.database_url:
        logger.error("No DATABASE_URL configured; an in-memory store has nothing to sweep.")
        sys.exit(1)

    runtime = build_barter_runtime(settings)
    try:
        result = SweepDeadlinesUseCase(runtime.context).execute()
    finally:
        runtime.close()

    logger.info(
        "Sweep done: delivery_confirmed=%d completed=%d disputes_closed=%d "
        "disputes_escalated=%d failed=%d",
        len(result.delivery_confirmed),
        len(result.completed),
        len(result.disputes_closed),
        len(result.disputes_escalated),
        len(result.failed),
    )
    if result.failed:
        sys.exit(2)


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the barter tables if they do not exist."""
    from sqlalchemy import create_engine

    from barterdesk.infrastructure.barter.sql_store import create_schema

    if not settings.database_url:
        logger.error("No DATABASE_URL configured.")
        sys.exit(1)

    engine = create_engine(settings.database_url)
    try:
        create_schema(engine)
    finally:
        engine.dispose()
    logger.info("Schema ready on %s", engine.url.get_backend_name())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BarterDesk service CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=cmd_serve)

    sweep_parser = subparsers.add_parser("sweep", help="Enforce elapsed deadlines once")
    sweep_parser.set_defaults(func=cmd_sweep)

    init_parser = subparsers.add_parser("init-db", help="Create the SQL schema")
    init_parser.set_defaults(func=cmd_init_db)
    return parser


def main(argv=None) -> None:
    from barterdesk.shared.logging import configure_logging

    configure_logging(level=settings.log_level)
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
