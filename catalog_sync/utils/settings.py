"""Runtime settings for the sync pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class SyncSettings:
    poll_interval: float = 5.0
    max_wait: float = 1800.0
    heartbeat_threshold: float = 300.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    history_limit: int = 1000
    prune_stale_raw: bool = False
    ingest_batch_size: int = 500
    backup_retention: int = 5

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            poll_interval=float(os.environ.get("SHOPIFY_BULK_POLL_INTERVAL", 5)),
            max_wait=float(os.environ.get("SHOPIFY_BULK_MAX_WAIT", 1800)),
            heartbeat_threshold=float(os.environ.get("SYNC_HEARTBEAT_THRESHOLD", 300)),
            retry_attempts=int(os.environ.get("SYNC_RETRY_ATTEMPTS", 3)),
            retry_base_delay=float(os.environ.get("SYNC_RETRY_BASE_DELAY", 1.0)),
            history_limit=int(os.environ.get("SYNC_HISTORY_LIMIT", 1000)),
            prune_stale_raw=_env_bool("SYNC_PRUNE_STALE_RAW", False),
            ingest_batch_size=int(os.environ.get("SYNC_INGEST_BATCH_SIZE", 500)),
            backup_retention=int(os.environ.get("SYNC_BACKUP_RETENTION", 5)),
        )
