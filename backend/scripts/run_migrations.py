"""Apply the progress schema with Alembic once the database accepts connections.

Deploys run this before the API starts so the progress tables always match the
models. ``--sql`` renders the migration instead of applying it.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("lingo.migrations")
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_ROOT = SCRIPT_DIR.parent
URL_PLACEHOLDER = "%(LINGO_DATABASE_URL)s"


@dataclass(frozen=True)
class MigrationOptions:
    revision: str = "head"
    timeout: int = 60
    poll_interval: float = 3.0
    config_path: str = str(BACKEND_ROOT / "alembic.ini")
    sql: bool = False

    @classmethod
    def from_env(cls) -> "MigrationOptions":
        return cls(
            revision=os.getenv("LINGO_DB_MIGRATION_REVISION", "head"),
            timeout=int(os.getenv("LINGO_DB_MIGRATION_TIMEOUT", "60")),
            poll_interval=float(os.getenv("LINGO_DB_MIGRATION_POLL_INTERVAL", "3")),
        )


def parse_args(argv: Optional[List[str]] = None) -> MigrationOptions:
    defaults = MigrationOptions.from_env()
    parser = argparse.ArgumentParser(description="Upgrade the progress database schema.")
    parser.add_argument("--revision", default=defaults.revision, help="Target revision (default: head).")
    parser.add_argument(
        "--timeout",
        type=int,
        default=defaults.timeout,
        help=f"Seconds to wait for the database (default: {defaults.timeout}).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=defaults.poll_interval,
        help=f"Seconds between readiness probes (default: {defaults.poll_interval}).",
    )
    parser.add_argument("--config", default=defaults.config_path, help="Path to alembic.ini.")
    parser.add_argument("--sql", action="store_true", help="Print the migration SQL instead of running it.")
    args = parser.parse_args(argv)
    return MigrationOptions(
        revision=args.revision,
        timeout=args.timeout,
        poll_interval=args.poll_interval,
        config_path=args.config,
        sql=args.sql,
    )


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url and url != URL_PLACEHOLDER:
        return url
    env_url = os.getenv("LINGO_DATABASE_URL")
    if not env_url:
        raise RuntimeError("LINGO_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def head_revisions(config: Config) -> List[str]:
    return list(ScriptDirectory.from_config(config).get_heads())


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> int:
    """Probe with ``SELECT 1`` until it succeeds; returns the number of attempts."""
    deadline = time.time() + timeout
    attempts = 0
    last_error: Optional[Exception] = None
    engine: Optional[Engine] = None
    try:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
        while True:
            attempts += 1
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database reachable after %d attempt(s).", attempts)
                return attempts
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready (attempt %d): %s", attempts, exc)
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
    sql: bool = False,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    if sql:
        command.upgrade(config, revision, sql=True)
        return
    LOGGER.info("Upgrading progress schema to %s (timeout=%ss poll=%ss)", revision, timeout, poll_interval)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    LOGGER.info("Progress schema is at %s.", revision)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("LINGO_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    options = parse_args(argv)
    try:
        run_migrations(
            options.revision,
            timeout=options.timeout,
            poll_interval=options.poll_interval,
            config=get_alembic_config(options.config_path),
            sql=options.sql,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
