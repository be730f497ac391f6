"""Staging table for the raw Shopify snapshot."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.engine import Engine

from catalog_sync.db.tables import raw_skus
from catalog_sync.db.upsert import upsert_statement
from catalog_sync.errors import ValidationError
from catalog_sync.ingest.models import IngestResult, RawRecord
from catalog_sync.utils.dates import utcnow

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 50
DEFAULT_BATCH_SIZE = 500
_RECORD_ONLY_FIELDS = {"inventory_item_id"}


class RawIngestionStore:
    def __init__(self, engine: Engine, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.engine = engine
        self.batch_size = batch_size

    def ingest(self, records: Iterable[RawRecord], *, sync_run_id: int | None = None) -> IngestResult:
        """Upsert records keyed on variant id.

        Rows missing from ``records`` are left alone; see ``prune_stale``.
        """
        result = IngestResult()
        synced_at = utcnow()
        latest: dict[str, dict[str, Any]] = {}
        for record in records:
            try:
                self._validate(record)
            except ValidationError as exc:
                result.skipped += 1
                if len(result.errors) < MAX_REPORTED_ERRORS:
                    result.errors.append(str(exc))
                logger.warning("%s", exc)
                continue
            latest[record.variant_id] = self._row(record, sync_run_id, synced_at)

        rows = list(latest.values())
        for start in range(0, len(rows), self.batch_size):
            batch = rows[start : start + self.batch_size]
            with self.engine.begin() as conn:
                conn.execute(upsert_statement(conn, raw_skus, "variant_id"), batch)
            result.upserted += len(batch)
        logger.info("Upserted %s raw variants (%s skipped)", result.upserted, result.skipped)
        return result

    def prune_stale(self, keep_run_id: int) -> list[str]:
        """Delete rows that the given run did not refresh; returns their variant ids."""
        stale = or_(raw_skus.c.sync_run_id.is_(None), raw_skus.c.sync_run_id != keep_run_id)
        with self.engine.begin() as conn:
            variant_ids = list(conn.execute(select(raw_skus.c.variant_id).where(stale)).scalars())
            if variant_ids:
                conn.execute(delete(raw_skus).where(stale))
        if variant_ids:
            logger.warning("Pruned %s stale raw variants not seen by run %s", len(variant_ids), keep_run_id)
        return variant_ids

    def records_for_value(self, raw_value: str) -> list[dict[str, Any]]:
        query = (
            select(
                raw_skus.c.variant_id,
                raw_skus.c.sku,
                raw_skus.c.product_title,
                raw_skus.c.size,
                raw_skus.c.quantity,
            )
            .where(raw_skus.c.collection_raw == raw_value)
            .order_by(raw_skus.c.sku)
        )
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query).mappings()]

    def duplicate_skus(self) -> list[dict[str, Any]]:
        """SKU strings carried by more than one variant."""
        normalized = func.upper(raw_skus.c.sku)
        query = (
            select(normalized.label("sku"), func.count().label("count"))
            .group_by(normalized)
            .having(func.count() > 1)
            .order_by(normalized)
        )
        with self.engine.connect() as conn:
            groups = [dict(row) for row in conn.execute(query).mappings()]
            for group in groups:
                group["variant_ids"] = list(
                    conn.execute(
                        select(raw_skus.c.variant_id)
                        .where(func.upper(raw_skus.c.sku) == group["sku"])
                        .order_by(raw_skus.c.variant_id)
                    ).scalars()
                )
        return groups

    @staticmethod
    def _validate(record: RawRecord) -> None:
        if not record.variant_id:
            raise ValidationError(f"Skipped record without variant id (sku={record.sku!r})")
        if not record.sku:
            raise ValidationError(f"Skipped variant {record.variant_id} without sku")

    @staticmethod
    def _row(record: RawRecord, sync_run_id: int | None, synced_at) -> dict[str, Any]:
        row = {key: value for key, value in asdict(record).items() if key not in _RECORD_ONLY_FIELDS}
        row["sync_run_id"] = sync_run_id
        row["synced_at"] = synced_at
        return row
