"""Raw collection value -> internal category mapping workflow.

Every raw collection string a sync sees gets a row here. Operators map it to a
category, defer it with a note, or leave it unmapped; only mapped values reach
the canonical catalog.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import case, func, select, update
from sqlalchemy.engine import Connection, Engine

from catalog_sync.db.tables import value_mappings
from catalog_sync.db.upsert import upsert_statement
from catalog_sync.errors import MappingNotFoundError, ValidationError
from catalog_sync.mapping.categories import CategoryDirectory
from catalog_sync.utils.dates import utcnow

logger = logging.getLogger(__name__)

DEFAULT_DEFER_NOTE = "Deferred for later review"


class MappingStatus(str, Enum):
    MAPPED = "mapped"
    UNMAPPED = "unmapped"
    DEFERRED = "deferred"


@dataclass(slots=True)
class ValueMapping:
    id: int
    raw_value: str
    category_id: int | None
    status: MappingStatus
    note: str | None
    sku_count: int
    first_seen_at: datetime
    last_seen_at: datetime

    @property
    def is_mapped(self) -> bool:
        return self.status is MappingStatus.MAPPED


@dataclass(slots=True)
class MappingStats:
    total: int
    mapped: int
    unmapped: int
    deferred: int
    unmapped_sku_count: int


def coerce_status(value: str | MappingStatus) -> MappingStatus:
    try:
        return MappingStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown mapping status: {value!r}") from exc


def check_mapping_invariant(status: MappingStatus, category_id: int | None) -> None:
    if (status is MappingStatus.MAPPED) != (category_id is not None):
        raise ValidationError(f"Mapping status {status.value} is inconsistent with category {category_id!r}")


def _to_mapping(row: Mapping) -> ValueMapping:
    data = dict(row)
    data["status"] = MappingStatus(data["status"])
    return ValueMapping(**data)


class ValueMappingResolver:
    def __init__(
        self,
        engine: Engine,
        categories: CategoryDirectory | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.categories = categories or CategoryDirectory(engine)
        self._clock = clock

    def observe(self, raw_value: str, sku_count: int) -> ValueMapping:
        """Record a sighting; creates an unmapped row or refreshes the count only."""
        with self.engine.begin() as conn:
            self._observe(conn, {raw_value: sku_count})
            return self._fetch(conn, value_mappings.c.raw_value == raw_value)

    def observe_many(self, counts: Mapping[str, int]) -> list[str]:
        """Observe several values in one transaction; returns the newly seen ones."""
        if not counts:
            return []
        with self.engine.begin() as conn:
            return self._observe(conn, counts)

    def resolve(self, raw_value: str, category_id: int) -> ValueMapping:
        with self.engine.begin() as conn:
            if not self.categories.exists(category_id, conn=conn):
                raise ValidationError(f"Category {category_id} does not exist")
            mapping = self._transition(conn, raw_value, MappingStatus.MAPPED, category_id, None)
        logger.info("Mapped %r to category %s", raw_value, category_id)
        return mapping

    def bulk_resolve(self, raw_values: Iterable[str], category_id: int) -> list[ValueMapping]:
        values = list(dict.fromkeys(raw_values))
        with self.engine.begin() as conn:
            if not self.categories.exists(category_id, conn=conn):
                raise ValidationError(f"Category {category_id} does not exist")
            mappings = [
                self._transition(conn, value, MappingStatus.MAPPED, category_id, None) for value in values
            ]
        logger.info("Mapped %s values to category %s", len(mappings), category_id)
        return mappings

    def defer(self, raw_value: str, note: str | None = None) -> ValueMapping:
        with self.engine.begin() as conn:
            mapping = self._transition(conn, raw_value, MappingStatus.DEFERRED, None, note or DEFAULT_DEFER_NOTE)
        logger.info("Deferred %r: %s", raw_value, mapping.note)
        return mapping

    def unmap(self, raw_value: str) -> ValueMapping:
        with self.engine.begin() as conn:
            existing = self._fetch(conn, value_mappings.c.raw_value == raw_value)
            mapping = self._transition(conn, raw_value, MappingStatus.UNMAPPED, None, existing.note)
        logger.info("Unmapped %r", raw_value)
        return mapping

    def get(self, raw_value: str) -> ValueMapping:
        with self.engine.connect() as conn:
            return self._fetch(conn, value_mappings.c.raw_value == raw_value)

    def get_by_id(self, mapping_id: int) -> ValueMapping:
        with self.engine.connect() as conn:
            return self._fetch(conn, value_mappings.c.id == mapping_id)

    def list_by_status(self, status: str | MappingStatus | None = None) -> list[ValueMapping]:
        """Mappings ordered by impact: most SKUs first."""
        query = select(value_mappings).order_by(value_mappings.c.sku_count.desc(), value_mappings.c.raw_value)
        if status is not None:
            query = query.where(value_mappings.c.status == coerce_status(status).value)
        with self.engine.connect() as conn:
            return [_to_mapping(row) for row in conn.execute(query).mappings()]

    def mapped_targets(self) -> dict[str, int]:
        """raw value -> category id for every mapped value."""
        query = select(value_mappings.c.raw_value, value_mappings.c.category_id).where(
            value_mappings.c.status == MappingStatus.MAPPED.value
        )
        with self.engine.connect() as conn:
            return {row.raw_value: row.category_id for row in conn.execute(query)}

    def stats(self) -> MappingStats:
        status = value_mappings.c.status
        query = select(
            func.count(),
            func.sum(case((status == "mapped", 1), else_=0)),
            func.sum(case((status == "unmapped", 1), else_=0)),
            func.sum(case((status == "deferred", 1), else_=0)),
            func.sum(case((status == "unmapped", value_mappings.c.sku_count), else_=0)),
        )
        with self.engine.connect() as conn:
            total, mapped, unmapped, deferred, unmapped_skus = conn.execute(query).one()
        return MappingStats(
            total=total or 0,
            mapped=mapped or 0,
            unmapped=unmapped or 0,
            deferred=deferred or 0,
            unmapped_sku_count=unmapped_skus or 0,
        )

    def _observe(self, conn: Connection, counts: Mapping[str, int]) -> list[str]:
        now = self._clock()
        known = set(
            conn.execute(
                select(value_mappings.c.raw_value).where(value_mappings.c.raw_value.in_(list(counts)))
            ).scalars()
        )
        rows = [
            {
                "raw_value": value,
                "category_id": None,
                "status": MappingStatus.UNMAPPED.value,
                "note": None,
                "sku_count": count,
                "first_seen_at": now,
                "last_seen_at": now,
            }
            for value, count in counts.items()
        ]
        conn.execute(
            upsert_statement(conn, value_mappings, "raw_value", update_columns=("sku_count", "last_seen_at")),
            rows,
        )
        new_values = [value for value in counts if value not in known]
        for value in new_values:
            logger.info("New unmapped collection value %r (%s SKUs)", value, counts[value])
        return new_values

    def _transition(
        self,
        conn: Connection,
        raw_value: str,
        status: MappingStatus,
        category_id: int | None,
        note: str | None,
    ) -> ValueMapping:
        check_mapping_invariant(status, category_id)
        result = conn.execute(
            update(value_mappings)
            .where(value_mappings.c.raw_value == raw_value)
            .values(status=status.value, category_id=category_id, note=note)
        )
        if result.rowcount == 0:
            raise MappingNotFoundError(f"No mapping for raw value {raw_value!r}")
        return self._fetch(conn, value_mappings.c.raw_value == raw_value)

    @staticmethod
    def _fetch(conn: Connection, condition) -> ValueMapping:
        row = conn.execute(select(value_mappings).where(condition)).mappings().first()
        if row is None:
            raise MappingNotFoundError("Mapping not found")
        return _to_mapping(row)
