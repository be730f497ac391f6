"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping


class BulkStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


SHOPIFY_STATUS_MAP = {
    "CREATED": BulkStatus.RUNNING,
    "RUNNING": BulkStatus.RUNNING,
    "CANCELING": BulkStatus.RUNNING,
    "COMPLETED": BulkStatus.COMPLETED,
    "FAILED": BulkStatus.FAILED,
    "CANCELED": BulkStatus.FAILED,
    "EXPIRED": BulkStatus.FAILED,
}


@dataclass(slots=True)
class BulkOperation:
    id: str
    status: BulkStatus
    url: str | None = None
    error_code: str | None = None
    object_count: int = 0
    remote_status: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BulkOperation":
        remote = (payload.get("status") or "").upper()
        return cls(
            id=payload["id"],
            status=SHOPIFY_STATUS_MAP.get(remote, BulkStatus.RUNNING),
            url=payload.get("url"),
            error_code=payload.get("errorCode"),
            object_count=int(payload.get("objectCount") or 0),
            remote_status=remote or None,
        )


@dataclass(slots=True)
class RawRecord:
    variant_id: str | None
    sku: str | None
    product_id: str | None = None
    product_title: str | None = None
    display_name: str | None = None
    variant_title: str | None = None
    size: str | None = None
    selected_options: dict[str, str] = field(default_factory=dict)
    price: Decimal | None = None
    image_url: str | None = None
    product_status: str | None = None
    quantity: int = 0
    incoming: int = 0
    committed: int = 0
    collection_raw: str | None = None
    product_type: str | None = None
    order_entry_description: str | None = None
    fabric: str | None = None
    color: str | None = None
    price_cad: str | None = None
    price_usd: str | None = None
    msrp_cad: str | None = None
    msrp_us: str | None = None
    weight: Decimal | None = None
    weight_unit: str | None = None
    inventory_item_id: str | None = None


@dataclass(slots=True)
class ParseReport:
    variants: int = 0
    inventory_levels: int = 0
    malformed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class IngestResult:
    upserted: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
