"""Database migration helpers."""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.db.tables import metadata

logger = logging.getLogger(__name__)


def run_migrations(engine: Engine) -> list[str]:
    """Create any missing tables and indexes; returns the names created."""
    existing = set(inspect(engine).get_table_names())
    metadata.create_all(engine, checkfirst=True)
    created = [name for name in metadata.tables if name not in existing]
    if created:
        logger.info("Created tables: %s", ", ".join(created))
    return created


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    try:
        engine = create_engine_from_env()
    except KeyError as exc:  # pragma: no cover - env failure is user error
        print(f"Missing environment variable: {exc}", file=sys.stderr)
        sys.exit(1)
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
