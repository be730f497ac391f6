"""Full catalog sync: bulk export, staging, transform."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.errors import (
    BulkOperationError,
    ConfigurationError,
    StateError,
    SyncTimeoutError,
    TransientError,
)
from catalog_sync.ingest.bulk import collect_bulk_records
from catalog_sync.ingest.models import BulkOperation, BulkStatus, IngestResult, ParseReport, RawRecord
from catalog_sync.ingest.raw_store import RawIngestionStore
from catalog_sync.ingest.shopify import ShopifyBulkClient, ShopifyConfig
from catalog_sync.jobs.tracker import SyncRunTracker
from catalog_sync.logic.transform import CatalogTransformer, TransformResult
from catalog_sync.mapping.resolver import ValueMappingResolver
from catalog_sync.utils.retry import retry_async
from catalog_sync.utils.settings import SyncSettings

logger = logging.getLogger(__name__)

SYNC_TYPE = "shopify_bulk"
RUN_FAILURES = (SyncTimeoutError, ConfigurationError, BulkOperationError, TransientError)


@dataclass(slots=True)
class SyncOutcome:
    run_id: int
    status: str = "started"
    operation_id: str | None = None
    reused_operation: bool = False
    parse: ParseReport | None = None
    ingest: IngestResult | None = None
    transform: TransformResult | None = None
    pruned: int = 0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        data: dict[str, Any] = {"operation_id": self.operation_id, "reused_operation": self.reused_operation}
        if self.parse is not None:
            data["parse"] = {
                "variants": self.parse.variants,
                "inventory_levels": self.parse.inventory_levels,
                "malformed": self.parse.malformed,
            }
        if self.ingest is not None:
            data["ingest"] = {"upserted": self.ingest.upserted, "skipped": self.ingest.skipped}
        if self.transform is not None:
            transform = asdict(self.transform)
            transform.pop("errors")
            data["transform"] = transform
        data["pruned"] = self.pruned
        return data


class CatalogSync:
    def __init__(
        self,
        engine: Engine,
        client: ShopifyBulkClient | None = None,
        *,
        settings: SyncSettings | None = None,
        sync_type: str = SYNC_TYPE,
        backup: bool = True,
    ) -> None:
        self.engine = engine
        self.client = client
        self.settings = settings or SyncSettings.from_env()
        self._owns_client = client is None
        self.sync_type = sync_type
        self.backup = backup
        self.tracker = SyncRunTracker(engine, heartbeat_threshold=self.settings.heartbeat_threshold)
        self.store = RawIngestionStore(engine, batch_size=self.settings.ingest_batch_size)
        self.resolver = ValueMappingResolver(engine)

    async def run(self) -> SyncOutcome:
        """Run one sync. ConflictError propagates when another run is active."""
        await self._db(self.tracker.cleanup_orphaned)
        run_id = await self._db(self.tracker.begin, self.sync_type)
        outcome = SyncOutcome(run_id=run_id)
        try:
            if self.client is None:
                self.client = ShopifyBulkClient(ShopifyConfig.from_env(), settings=self.settings)
            await self._execute(outcome)
        except StateError as exc:
            logger.error("Sync run %s aborted: %s", run_id, exc)
            outcome.status = "aborted"
            outcome.errors.append(str(exc))
            return outcome
        except RUN_FAILURES as exc:
            logger.error("Sync run %s failed: %s", run_id, exc)
            await self._fail(outcome, str(exc))
            return outcome
        except Exception as exc:
            logger.exception("Sync run %s crashed", run_id)
            await self._fail(outcome, f"Unexpected error: {exc}")
            raise
        finally:
            await self._close_client()
        await self._db(self.tracker.prune_history, self.settings.history_limit)
        return outcome

    async def _execute(self, outcome: SyncOutcome) -> None:
        run_id = outcome.run_id
        operation = await self._acquire_operation(outcome)
        outcome.operation_id = operation.id
        await self._db(self.tracker.attach_operation, run_id, operation.id)

        if operation.status is BulkStatus.RUNNING:
            operation = await self.client.wait_for_completion(
                operation.id,
                on_tick=lambda _op: self._db(self.tracker.heartbeat, run_id),
            )
        if operation.status is BulkStatus.FAILED:
            raise BulkOperationError(
                f"Bulk operation {operation.id} ended {operation.remote_status} ({operation.error_code or 'no error code'})"
            )

        records, outcome.parse = await self._download(operation, run_id)
        await self._db(self.tracker.heartbeat, run_id)
        outcome.ingest = await self._db(functools.partial(self.store.ingest, records, sync_run_id=run_id))
        await self._db(self.tracker.heartbeat, run_id)

        transformer = CatalogTransformer(
            self.engine,
            self.resolver,
            on_progress=lambda _done, _total: self.tracker.heartbeat(run_id),
            backup_retention=self.settings.backup_retention,
        )
        outcome.transform = await self._db(transformer.transform, not self.backup)

        clean = not outcome.parse.malformed and not outcome.ingest.skipped
        if self.settings.prune_stale_raw and clean:
            outcome.pruned = len(await self._db(self.store.prune_stale, run_id))

        outcome.errors = outcome.parse.errors + outcome.ingest.errors + outcome.transform.errors
        await self._db(
            functools.partial(
                self.tracker.complete,
                run_id,
                outcome.ingest.upserted,
                errors=outcome.errors,
                summary=outcome.summary(),
            )
        )
        outcome.status = "completed"

    async def _acquire_operation(self, outcome: SyncOutcome) -> BulkOperation:
        """Pick up the bulk job a previous run gave up on, or start a new one.

        Shopify runs one bulk query per shop at a time, so starting a fresh
        export while the old one is still going would be refused.
        """
        previous_id = await self._db(self.tracker.latest_unfinished_operation, self.sync_type)
        if previous_id:
            try:
                previous = await self.client.poll_bulk_export(previous_id)
            except BulkOperationError as exc:
                logger.info("Previous bulk operation %s is gone: %s", previous_id, exc)
            else:
                reusable = previous.status is BulkStatus.RUNNING or (
                    previous.status is BulkStatus.COMPLETED and previous.url
                )
                if reusable:
                    logger.info("Reusing bulk operation %s (%s)", previous.id, previous.remote_status)
                    outcome.reused_operation = True
                    return previous
        return await self.client.start_bulk_export()

    async def _download(self, operation: BulkOperation, run_id: int) -> tuple[list[RawRecord], ParseReport]:
        if not operation.url:
            logger.warning("Bulk operation %s produced no result file", operation.id)
            return [], ParseReport()

        async def fetch() -> tuple[list[RawRecord], ParseReport]:
            return await collect_bulk_records(
                self.client.download_bulk_result(operation.url),
                on_progress=lambda _count: self._db(self.tracker.heartbeat, run_id),
            )

        download = retry_async(
            fetch,
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
        )
        records, report = await download()
        logger.info(
            "Parsed %s variants and %s inventory levels (%s malformed lines)",
            report.variants,
            report.inventory_levels,
            report.malformed,
        )
        return records, report

    async def _fail(self, outcome: SyncOutcome, message: str) -> None:
        outcome.status = "failed"
        outcome.errors.append(message)
        summary = outcome.summary()
        try:
            await self._db(functools.partial(self.tracker.fail, outcome.run_id, outcome.errors, summary=summary))
        except StateError as exc:
            logger.warning("Could not mark sync run %s failed: %s", outcome.run_id, exc)

    async def _close_client(self) -> None:
        if self._owns_client and self.client is not None:
            await self.client.close()
            self.client = None

    async def _db(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)


async def run_sync(backup: bool = True) -> SyncOutcome:
    load_dotenv()
    engine = create_engine_from_env()
    settings = SyncSettings.from_env()
    return await CatalogSync(engine, settings=settings, backup=backup).run()


async def run_cleanup() -> int:
    load_dotenv()
    engine = create_engine_from_env()
    settings = SyncSettings.from_env()
    tracker = SyncRunTracker(engine, heartbeat_threshold=settings.heartbeat_threshold)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, tracker.cleanup_orphaned)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_sync())
