"""FastAPI application for mapping reconciliation and sync monitoring."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.errors import ConflictError, MappingNotFoundError, ValidationError
from catalog_sync.ingest.raw_store import RawIngestionStore
from catalog_sync.jobs.celery_app import run_sync_task
from catalog_sync.jobs.tracker import SyncRun, SyncRunTracker
from catalog_sync.logic.catalog import buyer_visible_skus, group_by_product
from catalog_sync.mapping.resolver import ValueMapping, ValueMappingResolver, coerce_status
from catalog_sync.utils.dates import format_timestamp
from catalog_sync.utils.settings import SyncSettings

logger = logging.getLogger(__name__)

app = FastAPI(title="Catalog Sync API")


class MappingResponse(BaseModel):
    id: int
    raw_value: str
    category_id: int | None
    status: str
    note: str | None
    sku_count: int
    first_seen_at: datetime
    last_seen_at: datetime


class MappingStatsResponse(BaseModel):
    total: int
    mapped: int
    unmapped: int
    deferred: int
    unmapped_sku_count: int


class ResolveRequest(BaseModel):
    category_id: int


class BulkResolveRequest(BaseModel):
    raw_values: list[str]
    category_id: int


class DeferRequest(BaseModel):
    note: str | None = None


class SyncRunResponse(BaseModel):
    id: int
    sync_type: str
    status: str
    operation_id: str | None
    started_at: str | None
    completed_at: str | None
    duration_seconds: float | None
    item_count: int | None
    errors: list[str]
    summary: dict[str, Any]


def get_engine() -> Engine:
    return create_engine_from_env()


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=422)


@app.exception_handler(MappingNotFoundError)
async def not_found_handler(request: Request, exc: MappingNotFoundError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=409)


def _mapping(mapping: ValueMapping) -> MappingResponse:
    return MappingResponse(
        id=mapping.id,
        raw_value=mapping.raw_value,
        category_id=mapping.category_id,
        status=mapping.status.value,
        note=mapping.note,
        sku_count=mapping.sku_count,
        first_seen_at=mapping.first_seen_at,
        last_seen_at=mapping.last_seen_at,
    )


def _run(run: SyncRun) -> SyncRunResponse:
    return SyncRunResponse(
        id=run.id,
        sync_type=run.sync_type,
        status=run.status,
        operation_id=run.operation_id,
        started_at=format_timestamp(run.started_at),
        completed_at=format_timestamp(run.completed_at),
        duration_seconds=run.duration_seconds,
        item_count=run.item_count,
        errors=run.errors,
        summary=run.summary,
    )


@app.get("/mappings", response_model=list[MappingResponse])
async def list_mappings(status: str | None = None, engine: Engine = Depends(get_engine)) -> list[MappingResponse]:
    resolver = ValueMappingResolver(engine)
    return [_mapping(item) for item in resolver.list_by_status(coerce_status(status) if status else None)]


@app.get("/mappings/stats", response_model=MappingStatsResponse)
async def mapping_stats(engine: Engine = Depends(get_engine)) -> MappingStatsResponse:
    stats = ValueMappingResolver(engine).stats()
    return MappingStatsResponse(
        total=stats.total,
        mapped=stats.mapped,
        unmapped=stats.unmapped,
        deferred=stats.deferred,
        unmapped_sku_count=stats.unmapped_sku_count,
    )


@app.get("/mappings/{mapping_id}/skus")
async def mapping_skus(mapping_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    mapping = ValueMappingResolver(engine).get_by_id(mapping_id)
    records = RawIngestionStore(engine).records_for_value(mapping.raw_value)
    return JSONResponse({"raw_value": mapping.raw_value, "skus": records})


@app.post("/mappings/bulk-resolve", response_model=list[MappingResponse])
async def bulk_resolve_mappings(
    payload: BulkResolveRequest, engine: Engine = Depends(get_engine)
) -> list[MappingResponse]:
    resolver = ValueMappingResolver(engine)
    return [_mapping(item) for item in resolver.bulk_resolve(payload.raw_values, payload.category_id)]


@app.post("/mappings/{mapping_id}/resolve", response_model=MappingResponse)
async def resolve_mapping(
    mapping_id: int, payload: ResolveRequest, engine: Engine = Depends(get_engine)
) -> MappingResponse:
    resolver = ValueMappingResolver(engine)
    mapping = resolver.get_by_id(mapping_id)
    return _mapping(resolver.resolve(mapping.raw_value, payload.category_id))


@app.post("/mappings/{mapping_id}/defer", response_model=MappingResponse)
async def defer_mapping(
    mapping_id: int, payload: DeferRequest | None = None, engine: Engine = Depends(get_engine)
) -> MappingResponse:
    resolver = ValueMappingResolver(engine)
    mapping = resolver.get_by_id(mapping_id)
    return _mapping(resolver.defer(mapping.raw_value, payload.note if payload else None))


@app.post("/mappings/{mapping_id}/unmap", response_model=MappingResponse)
async def unmap_mapping(mapping_id: int, engine: Engine = Depends(get_engine)) -> MappingResponse:
    resolver = ValueMappingResolver(engine)
    mapping = resolver.get_by_id(mapping_id)
    return _mapping(resolver.unmap(mapping.raw_value))


@app.get("/sync/runs", response_model=list[SyncRunResponse])
async def sync_runs(
    limit: int = Query(20, ge=1, le=200),
    sync_type: str | None = None,
    engine: Engine = Depends(get_engine),
) -> list[SyncRunResponse]:
    return [_run(run) for run in SyncRunTracker(engine).recent(limit=limit, sync_type=sync_type)]


@app.get("/sync/runs/{run_id}", response_model=SyncRunResponse)
async def sync_run(run_id: int, engine: Engine = Depends(get_engine)) -> SyncRunResponse:
    run = SyncRunTracker(engine).get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Sync run not found")
    return _run(run)


@app.post("/sync/cleanup")
async def cleanup_runs(
    authorization: str | None = Header(default=None),
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    secret = os.environ.get("CRON_SECRET")
    if secret and authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
    settings = SyncSettings.from_env()
    tracker = SyncRunTracker(engine, heartbeat_threshold=settings.heartbeat_threshold)
    cleaned = tracker.cleanup_orphaned()
    return JSONResponse({"cleaned_up": cleaned})


@app.post("/sync/trigger", status_code=202)
async def trigger_sync() -> JSONResponse:
    task = run_sync_task.delay()
    logger.info("Queued catalog sync task %s", task.id)
    return JSONResponse({"task_id": task.id}, status_code=202)


@app.get("/catalog/skus")
async def catalog_skus(
    category_id: int | None = None,
    grouped: bool = False,
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    rows = buyer_visible_skus(engine, category_id)
    if grouped:
        return JSONResponse({"products": group_by_product(rows)})
    return JSONResponse({"skus": rows})


@app.get("/catalog/duplicates")
async def catalog_duplicates(engine: Engine = Depends(get_engine)) -> JSONResponse:
    return JSONResponse({"duplicates": RawIngestionStore(engine).duplicate_skus()})
