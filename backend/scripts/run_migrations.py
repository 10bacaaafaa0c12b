"""Bring the users/progress/achievements schema up to date before the API starts.

Deploys call this ahead of uvicorn. It waits for the database to answer a
probe, then upgrades to the requested Alembic revision. ``--sql`` renders the
migration script instead of touching the database.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from safetylearn.config import Settings
from safetylearn.logging_config import configure_logging
from safetylearn.telemetry import emit_event

LOGGER = logging.getLogger("safetylearn.migrations")
DEFAULT_TIMEOUT = int(os.getenv("SAFETYLEARN_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("SAFETYLEARN_DB_MIGRATION_POLL_INTERVAL", "3"))
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_ROOT = SCRIPT_DIR.parent
URL_PLACEHOLDER = "%(SAFETYLEARN_DATABASE_URL)s"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the SafetyLearn database schema.")
    parser.add_argument(
        "--revision",
        default=os.getenv("SAFETYLEARN_DB_MIGRATION_REVISION", "head"),
        help="Alembic revision to upgrade to (default: head).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the database to accept connections (default: {DEFAULT_TIMEOUT}).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between readiness probes (default: {DEFAULT_POLL_INTERVAL}).",
    )
    parser.add_argument(
        "--config",
        default=str(BACKEND_ROOT / "alembic.ini"),
        help="Path to alembic.ini.",
    )
    parser.add_argument(
        "--sql",
        action="store_true",
        help="Print the upgrade SQL instead of applying it.",
    )
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    """Return the target URL, falling back to ``SAFETYLEARN_DATABASE_URL``."""
    url = config.get_main_option("sqlalchemy.url")
    if url and url != URL_PLACEHOLDER:
        return url
    resolved = os.getenv("SAFETYLEARN_DATABASE_URL")
    if not resolved:
        resolved = Settings().database_url  # type: ignore[call-arg]
    if not resolved:
        raise RuntimeError("SAFETYLEARN_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", resolved.replace("%", "%%"))
    return resolved


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    """Probe with ``SELECT 1`` until it succeeds or ``timeout`` elapses."""
    deadline = time.time() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None
    attempts = 0

    try:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
        while True:
            attempts += 1
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database reachable after %s probe(s).", attempts)
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            if time.time() >= deadline:
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError(f"Database did not become ready within {timeout}s.") from last_error


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
    sql_only: bool = False,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    if sql_only:
        LOGGER.info("Rendering upgrade SQL up to %s", revision)
        command.upgrade(config, revision, sql=True)
        return

    LOGGER.info(
        "Upgrading schema to %s (timeout=%ss poll=%ss)",
        revision,
        timeout,
        poll_interval,
    )
    started = time.perf_counter()
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    emit_event(
        "schema_migrated",
        revision=revision,
        dialect=database_url.split(":", 1)[0],
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    LOGGER.info("Schema is at %s.", revision)


def main(argv: Optional[list[str]] = None) -> int:
    os.environ.setdefault("SAFETYLEARN_LOG_LEVEL", os.getenv("SAFETYLEARN_DB_MIGRATION_LOG_LEVEL", "INFO"))
    configure_logging()
    args = parse_args(argv)
    try:
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=get_alembic_config(args.config),
            sql_only=args.sql,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
