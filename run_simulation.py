#!/usr/bin/env python3
"""CLI entrypoint for the trading arena.

Usage::

    python run_simulation.py serve --config config/example.yaml --port 8000
    python run_simulation.py tick --config config/example.yaml --force

``serve`` runs the HTTP API (the scheduler then calls the tick endpoint).
``tick`` fires one tick in-process with the configured cron secret and
prints the JSON outcome; ``--force`` bypasses the calendar and idempotence
guards.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from models.config import AppSettings
from models.tick import TickRequest


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the multi-agent trading arena.",
    )
    parser.add_argument(
        "--config",
        default=None,
        type=str,
        help="Path to the YAML configuration file (defaults plus environment when omitted).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", default=8000, type=int)

    tick = sub.add_parser("tick", help="Advance the running simulation by one tick.")
    tick.add_argument(
        "--force",
        action="store_true",
        help="Bypass the weekend/holiday/already-processed guards.",
    )
    return parser.parse_args(argv)


def _setup_logging(level: str) -> None:
    """Configure root logger with a clean format."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _load_settings(path: str | None) -> AppSettings:
    return AppSettings.from_yaml(path) if path else AppSettings.from_env()


async def _tick(settings: AppSettings, force: bool) -> int:
    from server.dependencies import ServiceContainer

    services = ServiceContainer.from_settings(settings)
    try:
        outcome = await services.orchestrator.run(
            TickRequest(header_key=settings.cron_secret, force=force)
        )
    finally:
        await services.aclose()

    print(json.dumps(outcome.to_response(), indent=2, ensure_ascii=False))
    return 0 if outcome.http_status() < 400 else 1


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _setup_logging(args.log_level)

    logger = logging.getLogger(__name__)
    if args.config:
        logger.info("Loading config from '%s'...", args.config)
    settings = _load_settings(args.config)
    logger.info("Database: %s", settings.database_path)

    if args.command == "serve":
        import uvicorn

        from server.app import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    return asyncio.run(_tick(settings, args.force))


if __name__ == "__main__":
    sys.exit(main())
