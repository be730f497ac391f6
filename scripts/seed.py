"""Seed database with the default catalog categories."""

from __future__ import annotations

import logging

from dotenv import load_dotenv

from catalog_sync.db.migrate import run_migrations
from catalog_sync.db.session import create_engine_from_env
from catalog_sync.mapping import load_categories
from catalog_sync.mapping.categories import CategoryDirectory


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    run_migrations(engine)
    ids = CategoryDirectory(engine).ensure(load_categories())
    print(f"Seed complete: {len(ids)} categories")


if __name__ == "__main__":
    main()
