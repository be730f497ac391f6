"""Persistent sync run bookkeeping.

The database is the only coordination point between workers: a partial unique
index allows one ``started`` row per sync type, heartbeats mark liveness, and
``cleanup_orphaned`` retires runs whose process died without finishing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from catalog_sync.db.tables import sync_runs
from catalog_sync.errors import ConflictError, StateError
from catalog_sync.utils.dates import utcnow

logger = logging.getLogger(__name__)

MAX_STORED_ERRORS = 50
DEFAULT_HEARTBEAT_THRESHOLD = 300.0
TERMINAL_STATUSES = ("completed", "failed", "timeout")


@dataclass(slots=True)
class SyncRun:
    id: int
    sync_type: str
    status: str
    started_at: datetime
    operation_id: str | None = None
    heartbeat_at: datetime | None = None
    completed_at: datetime | None = None
    item_count: int | None = None
    errors: list[str] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


def _truncate(errors: Iterable[Any]) -> list[str]:
    return [str(error) for error in list(errors)[:MAX_STORED_ERRORS]]


def _to_run(row) -> SyncRun:
    data = dict(row)
    data["errors"] = data.get("errors") or []
    data["summary"] = data.get("summary") or {}
    return SyncRun(**data)


class SyncRunTracker:
    def __init__(
        self,
        engine: Engine,
        *,
        clock: Callable[[], datetime] = utcnow,
        heartbeat_threshold: float = DEFAULT_HEARTBEAT_THRESHOLD,
    ) -> None:
        self.engine = engine
        self._clock = clock
        self.heartbeat_threshold = heartbeat_threshold

    def begin(self, sync_type: str, operation_id: str | None = None) -> int:
        now = self._clock()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    sync_runs.insert().values(
                        sync_type=sync_type,
                        status="started",
                        operation_id=operation_id,
                        started_at=now,
                        heartbeat_at=now,
                        errors=[],
                    )
                )
                run_id = int(result.inserted_primary_key[0])
        except IntegrityError as exc:
            raise ConflictError(f"A {sync_type} sync is already running") from exc
        logger.info("Started %s sync run %s", sync_type, run_id)
        return run_id

    def heartbeat(self, run_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id, sync_runs.c.status == "started")
                .values(heartbeat_at=self._clock())
            )
        if result.rowcount == 0:
            raise StateError(f"Sync run {run_id} is no longer running")

    def attach_operation(self, run_id: int, operation_id: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id, sync_runs.c.status == "started")
                .values(operation_id=operation_id, heartbeat_at=self._clock())
            )
        if result.rowcount == 0:
            raise StateError(f"Sync run {run_id} is no longer running")

    def complete(
        self,
        run_id: int,
        item_count: int,
        errors: Iterable[Any] = (),
        summary: dict[str, Any] | None = None,
    ) -> None:
        values = {"item_count": item_count, "errors": _truncate(errors)}
        if summary is not None:
            values["summary"] = summary
        self._finish(run_id, "completed", values)

    def fail(self, run_id: int, errors: Iterable[Any], summary: dict[str, Any] | None = None) -> None:
        values: dict[str, Any] = {"errors": _truncate(errors)}
        if summary is not None:
            values["summary"] = summary
        self._finish(run_id, "failed", values)

    def cleanup_orphaned(self, threshold: float | None = None) -> int:
        """Move stale started runs to timeout; returns how many were moved."""
        limit = self.heartbeat_threshold if threshold is None else threshold
        now = self._clock()
        cutoff = now - timedelta(seconds=limit)
        last_alive = func.coalesce(sync_runs.c.heartbeat_at, sync_runs.c.started_at)
        with self.engine.begin() as conn:
            result = conn.execute(
                update(sync_runs)
                .where(sync_runs.c.status == "started", last_alive < cutoff)
                .values(
                    status="timeout",
                    completed_at=now,
                    errors=[f"No heartbeat for more than {limit:.0f}s; marked as timed out"],
                )
            )
        cleaned = result.rowcount or 0
        if cleaned:
            logger.warning("Marked %s orphaned sync runs as timed out", cleaned)
        return cleaned

    def get(self, run_id: int) -> SyncRun | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(sync_runs).where(sync_runs.c.id == run_id)).mappings().first()
        return _to_run(row) if row else None

    def recent(self, limit: int = 20, sync_type: str | None = None) -> list[SyncRun]:
        query = select(sync_runs).order_by(sync_runs.c.started_at.desc(), sync_runs.c.id.desc()).limit(limit)
        if sync_type:
            query = query.where(sync_runs.c.sync_type == sync_type)
        with self.engine.connect() as conn:
            return [_to_run(row) for row in conn.execute(query).mappings()]

    def latest_unfinished_operation(self, sync_type: str) -> str | None:
        """Bulk operation id of the newest failed or timed-out run, if it had one."""
        query = (
            select(sync_runs.c.operation_id, sync_runs.c.status)
            .where(sync_runs.c.sync_type == sync_type, sync_runs.c.status != "started")
            .order_by(sync_runs.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        if row is None or row.status == "completed":
            return None
        return row.operation_id

    def prune_history(self, keep: int = 1000) -> int:
        """Delete finished runs beyond the newest ``keep``."""
        newest = select(sync_runs.c.id).order_by(sync_runs.c.id.desc()).limit(keep).scalar_subquery()
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(sync_runs).where(sync_runs.c.status != "started", sync_runs.c.id.not_in(newest))
            )
        removed = result.rowcount or 0
        if removed:
            logger.info("Pruned %s old sync runs", removed)
        return removed

    def _finish(self, run_id: int, status: str, values: dict[str, Any]) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id, sync_runs.c.status == "started")
                .values(status=status, completed_at=self._clock(), **values)
            )
            if result.rowcount:
                logger.info("Sync run %s %s", run_id, status)
                return
            current = conn.execute(select(sync_runs.c.status).where(sync_runs.c.id == run_id)).scalar_one_or_none()
        if current is None:
            raise StateError(f"Sync run {run_id} does not exist")
        if current == status:
            logger.warning("Sync run %s already %s; ignoring repeat", run_id, status)
            return
        raise StateError(f"Sync run {run_id} is {current}, cannot mark it {status}")
