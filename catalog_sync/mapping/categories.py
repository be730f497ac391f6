"""Internal category directory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from catalog_sync.db.tables import categories


@dataclass(slots=True)
class Category:
    name: str
    is_preorder: bool = False
    sort_order: int = 0
    is_active: bool = True
    id: int | None = None


class CategoryDirectory:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def exists(self, category_id: int, *, conn: Connection | None = None) -> bool:
        query = select(categories.c.id).where(categories.c.id == category_id)
        if conn is not None:
            return conn.execute(query).scalar_one_or_none() is not None
        with self.engine.connect() as own:
            return own.execute(query).scalar_one_or_none() is not None

    def all(self, *, active_only: bool = False) -> list[Category]:
        query = select(categories).order_by(categories.c.is_preorder, categories.c.sort_order, categories.c.id)
        if active_only:
            query = query.where(categories.c.is_active.is_(True))
        with self.engine.connect() as conn:
            return [Category(**row) for row in conn.execute(query).mappings()]

    def ensure(self, items: Iterable[Category]) -> list[int]:
        """Insert categories not yet present by (name, is_preorder); returns all ids."""
        ids: list[int] = []
        with self.engine.begin() as conn:
            for item in items:
                existing = conn.execute(
                    select(categories.c.id).where(
                        categories.c.name == item.name,
                        categories.c.is_preorder == item.is_preorder,
                    )
                ).scalar_one_or_none()
                if existing:
                    ids.append(existing)
                    continue
                result = conn.execute(
                    categories.insert().values(
                        name=item.name,
                        is_preorder=item.is_preorder,
                        sort_order=item.sort_order,
                        is_active=item.is_active,
                    )
                )
                ids.append(int(result.inserted_primary_key[0]))
        return ids
