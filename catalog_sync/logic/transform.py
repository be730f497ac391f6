"""Project staged raw variants into the canonical ``skus`` table.

Only rows whose raw collection value is mapped are written. The projection is
an upsert keyed on the upper-cased SKU and carries no timestamps, so running
it twice over the same raw data and mapping state leaves ``skus`` unchanged.
Rows that no longer project (value unmapped or deferred, variant gone from
``raw_skus``) are deleted after the upserts.
``display_priority`` is owned by merchandisers and never overwritten here.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.db.tables import raw_skus, skus
from catalog_sync.db.upsert import upsert_statement
from catalog_sync.ingest.bulk import parse_gid
from catalog_sync.logic.sku import flatten_color, is_preorder_collection, parse_sku, price_display
from catalog_sync.mapping.resolver import ValueMappingResolver
from catalog_sync.utils.dates import backup_suffix

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 50
BACKUP_PREFIX = "skus_backup_"
DEFAULT_BACKUP_RETENTION = 5
DELETE_CHUNK_SIZE = 500
PROJECTED_COLUMNS = tuple(
    column.name for column in skus.columns if column.name not in {"sku", "display_priority"}
)


@dataclass(slots=True)
class TransformResult:
    processed: int = 0
    skipped: int = 0
    unmapped_values: list[str] = field(default_factory=list)
    failed: int = 0
    size_mismatches: list[str] = field(default_factory=list)
    removed: int = 0
    backup_table: str | None = None
    errors: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(message)


def _variant_order(variant_id: str) -> tuple[int, str]:
    return parse_gid(variant_id) or 0, variant_id


class CatalogTransformer:
    def __init__(
        self,
        engine: Engine,
        resolver: ValueMappingResolver | None = None,
        *,
        on_progress: Callable[[int, int], Any] | None = None,
        backup_retention: int = DEFAULT_BACKUP_RETENTION,
    ) -> None:
        self.engine = engine
        self.resolver = resolver or ValueMappingResolver(engine)
        self.on_progress = on_progress
        self.backup_retention = backup_retention

    def transform(self, skip_backup: bool = False) -> TransformResult:
        result = TransformResult()
        if not skip_backup:
            result.backup_table = self.backup()
            self.prune_backups(self.backup_retention)

        rows = self._load_raw()
        counts = Counter(row["collection_raw"] for row in rows if row["collection_raw"])
        self.resolver.observe_many(dict(counts))
        targets = self.resolver.mapped_targets()

        unmapped: set[str] = set()
        groups: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for row in self._dedupe(rows, result):
            collection = row["collection_raw"]
            if not collection:
                result.skipped += 1
                continue
            category_id = targets.get(collection)
            if category_id is None:
                result.skipped += 1
                unmapped.add(collection)
                continue
            projected = self._project(row, category_id, result)
            groups[projected["base_sku"]].append(projected)
        result.unmapped_values = sorted(unmapped)

        total = len(groups)
        for index, (base_sku, group) in enumerate(sorted(groups.items()), start=1):
            try:
                with self.engine.begin() as conn:
                    dropped = conn.execute(
                        delete(skus).where(
                            skus.c.base_sku == base_sku,
                            skus.c.sku.not_in([item["sku"] for item in group]),
                        )
                    ).rowcount
                    conn.execute(upsert_statement(conn, skus, "sku", update_columns=PROJECTED_COLUMNS), group)
            except SQLAlchemyError as exc:
                result.failed += len(group)
                result.add_error(f"Product group {base_sku} rolled back: {exc}")
                logger.warning("Failed to write product group %s: %s", base_sku, exc)
            else:
                result.processed += len(group)
                result.removed += dropped
            if self.on_progress:
                self.on_progress(index, total)

        projected = {item["sku"] for group in groups.values() for item in group}
        result.removed += self._remove_stale(projected)

        logger.info(
            "Transform complete: %s processed, %s skipped, %s failed, %s removed, %s unmapped values",
            result.processed,
            result.skipped,
            result.failed,
            result.removed,
            len(result.unmapped_values),
        )
        return result

    def backup(self) -> str:
        """Copy ``skus`` into a timestamped table and return its name."""
        base = f"{BACKUP_PREFIX}{backup_suffix()}"
        name = base
        existing = set(inspect(self.engine).get_table_names())
        attempt = 1
        while name in existing:
            attempt += 1
            name = f"{base}_{attempt}"
        with self.engine.begin() as conn:
            conn.execute(text(f"CREATE TABLE {name} AS SELECT * FROM skus"))
            count = conn.execute(text(f"SELECT COUNT(*) FROM {name}")).scalar_one()
        logger.info("Backed up %s SKUs to %s", count, name)
        return name

    def prune_backups(self, keep: int) -> list[str]:
        """Drop all but the ``keep`` newest backup tables; returns the dropped names."""
        names = sorted(
            name for name in inspect(self.engine).get_table_names() if name.startswith(BACKUP_PREFIX)
        )
        stale = names[: max(len(names) - max(keep, 0), 0)]
        if not stale:
            return []
        with self.engine.begin() as conn:
            for name in stale:
                conn.execute(text(f"DROP TABLE {name}"))
        logger.info("Dropped %s old SKU backups", len(stale))
        return stale

    def _remove_stale(self, projected: set[str]) -> int:
        """Delete canonical rows that no longer project from a mapped raw row."""
        with self.engine.connect() as conn:
            existing = conn.execute(select(skus.c.sku)).scalars().all()
        stale = sorted(sku for sku in existing if sku not in projected)
        for start in range(0, len(stale), DELETE_CHUNK_SIZE):
            chunk = stale[start : start + DELETE_CHUNK_SIZE]
            with self.engine.begin() as conn:
                conn.execute(delete(skus).where(skus.c.sku.in_(chunk)))
        if stale:
            logger.info("Removed %s SKUs no longer backed by a mapped variant", len(stale))
        return len(stale)

    def _load_raw(self) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(select(raw_skus).order_by(raw_skus.c.variant_id)).mappings()]

    @staticmethod
    def _dedupe(rows: list[dict[str, Any]], result: TransformResult) -> list[dict[str, Any]]:
        """Keep one raw row per SKU; the greatest variant id wins."""
        winners: dict[str, dict[str, Any]] = {}
        for row in rows:
            key = row["sku"].strip().upper()
            current = winners.get(key)
            if current is None:
                winners[key] = row
                continue
            keep, drop = sorted((current, row), key=lambda item: _variant_order(item["variant_id"]), reverse=True)
            winners[key] = keep
            result.skipped += 1
            result.add_error(f"Duplicate SKU {key}: kept {keep['variant_id']}, skipped {drop['variant_id']}")
            logger.warning("Duplicate SKU %s on %s and %s", key, keep["variant_id"], drop["variant_id"])
        return list(winners.values())

    @staticmethod
    def _project(row: dict[str, Any], category_id: int, result: TransformResult) -> dict[str, Any]:
        parts = parse_sku(row["sku"], row["size"])
        if parts.disagrees:
            result.size_mismatches.append(parts.sku)
            logger.warning(
                "Size mismatch for %s: size option %r, SKU suffix %r",
                parts.sku,
                parts.size,
                parts.heuristic_size,
            )
        return {
            "sku": parts.sku,
            "base_sku": parts.base_sku,
            "size": parts.size,
            "size_source": parts.source,
            "category_id": category_id,
            "raw_collection": row["collection_raw"],
            "description": row["display_name"] or row["product_title"],
            "order_entry_description": row["order_entry_description"],
            "price": price_display(row["price_cad"], row["price_usd"]),
            "price_cad": row["price_cad"],
            "price_usd": row["price_usd"],
            "msrp_cad": row["msrp_cad"],
            "msrp_us": row["msrp_us"],
            "quantity": row["quantity"] or 0,
            "on_route": row["incoming"] or 0,
            "image_url": row["image_url"],
            "fabric": row["fabric"],
            "color": flatten_color(row["color"]),
            "show_in_preorder": is_preorder_collection(row["collection_raw"]),
            "shopify_variant_id": row["variant_id"],
            "shopify_product_id": row["product_id"],
        }
