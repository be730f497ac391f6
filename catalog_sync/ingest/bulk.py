"""Bulk-operation JSONL parsing.

Shopify writes one JSON object per line. Variants arrive as full objects with
their product and inventory item inlined; each inventory level is a separate
line carrying ``__parentId``. Lines may repeat, so everything is keyed by GID
and the last line seen for an id wins.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from collections import defaultdict
from collections.abc import AsyncIterable, Callable, Iterable
from decimal import Decimal, InvalidOperation
from typing import Any

from catalog_sync.ingest.models import ParseReport, RawRecord

logger = logging.getLogger(__name__)

GID_RE = re.compile(r"^gid://shopify/(\w+)/(\d+)")
SIZE_OPTION_NAMES = {"size", "taille"}
MAX_REPORTED_ERRORS = 50
PROGRESS_EVERY_LINES = 5000


def gid_resource_type(gid: str | None) -> str | None:
    if not gid:
        return None
    match = GID_RE.match(gid)
    return match.group(1) if match else None


def parse_gid(gid: str | None) -> int | None:
    if not gid:
        return None
    match = GID_RE.match(gid)
    return int(match.group(2)) if match else None


def _metafield(product: dict[str, Any], alias: str) -> str | None:
    value = (product.get(alias) or {}).get("value")
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def _decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _size_option(options: list[dict[str, Any]]) -> str | None:
    for option in options:
        if str(option.get("name", "")).strip().lower() in SIZE_OPTION_NAMES:
            value = option.get("value")
            return str(value) if value else None
    return None


def variant_record(item: dict[str, Any]) -> RawRecord:
    product = item.get("product") or {}
    inventory_item = item.get("inventoryItem") or {}
    weight = (inventory_item.get("measurement") or {}).get("weight") or {}
    options = item.get("selectedOptions") or []
    featured = (((product.get("featuredMedia") or {}).get("preview") or {}).get("image") or {}).get("url")
    variant_image = (item.get("image") or {}).get("url")
    return RawRecord(
        variant_id=item.get("id"),
        sku=(item.get("sku") or "").strip() or None,
        product_id=product.get("id"),
        product_title=product.get("title"),
        display_name=item.get("displayName"),
        variant_title=item.get("title"),
        size=_size_option(options),
        selected_options={str(opt.get("name")): str(opt.get("value")) for opt in options if opt.get("name")},
        price=_decimal(item.get("price")),
        image_url=variant_image or featured,
        product_status=product.get("status"),
        quantity=int(item.get("inventoryQuantity") or 0),
        collection_raw=_metafield(product, "mfOrderEntryCollection"),
        product_type=product.get("productType") or None,
        order_entry_description=_metafield(product, "mfOrderEntryDescription"),
        fabric=_metafield(product, "mfFabric"),
        color=_metafield(product, "mfColor"),
        price_cad=_metafield(product, "mfCADWSPrice"),
        price_usd=_metafield(product, "mfUSDWSPrice"),
        msrp_cad=_metafield(product, "mfMSRPCAD"),
        msrp_us=_metafield(product, "mfMSRPUSD"),
        weight=_decimal(weight.get("value")),
        weight_unit=weight.get("unit"),
        inventory_item_id=inventory_item.get("id"),
    )


class BulkRecordAssembler:
    """Accumulates JSONL lines and folds inventory levels into their variants."""

    def __init__(self) -> None:
        self.report = ParseReport()
        self._records: dict[str, RawRecord] = {}
        self._variant_by_item: dict[str, str] = {}
        self._levels: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)

    def feed(self, line: str) -> None:
        try:
            item = json.loads(line)
        except json.JSONDecodeError as exc:
            self._malformed(f"Unparseable JSONL line: {exc}")
            return
        if not isinstance(item, dict):
            self._malformed("JSONL line is not an object")
            return
        gid = item.get("id")
        resource = gid_resource_type(gid)
        if resource == "ProductVariant":
            record = variant_record(item)
            self._records[gid] = record
            if record.inventory_item_id:
                self._variant_by_item[record.inventory_item_id] = gid
            self.report.variants += 1
        elif resource == "InventoryLevel":
            parent = item.get("__parentId")
            if not parent:
                self._malformed(f"Inventory level {gid} has no parent")
                return
            self._levels[parent][gid] = item
            self.report.inventory_levels += 1
        else:
            logger.debug("Ignoring bulk line of type %s", resource)

    def finish(self) -> list[RawRecord]:
        for parent, levels in self._levels.items():
            variant_gid = parent if parent in self._records else self._variant_by_item.get(parent)
            if variant_gid is None:
                self._malformed(f"Inventory levels for unknown parent {parent}")
                continue
            totals: dict[str, int] = defaultdict(int)
            for level in levels.values():
                for quantity in level.get("quantities") or []:
                    totals[quantity.get("name")] += int(quantity.get("quantity") or 0)
            record = self._records[variant_gid]
            if "on_hand" in totals:
                record.quantity = totals["on_hand"]
            record.incoming = totals.get("incoming", 0)
            record.committed = totals.get("committed", 0)
        return list(self._records.values())

    def _malformed(self, message: str) -> None:
        self.report.malformed += 1
        if len(self.report.errors) < MAX_REPORTED_ERRORS:
            self.report.errors.append(message)
        logger.warning(message)


def parse_bulk_lines(lines: Iterable[str]) -> tuple[list[RawRecord], ParseReport]:
    assembler = BulkRecordAssembler()
    for line in lines:
        if line.strip():
            assembler.feed(line)
    return assembler.finish(), assembler.report


async def collect_bulk_records(
    lines: AsyncIterable[str],
    *,
    on_progress: Callable[[int], Any] | None = None,
    every: int = PROGRESS_EVERY_LINES,
) -> tuple[list[RawRecord], ParseReport]:
    """Assemble records from streamed lines, calling ``on_progress(count)`` every ``every`` lines."""
    assembler = BulkRecordAssembler()
    count = 0
    async for line in lines:
        assembler.feed(line)
        count += 1
        if on_progress and count % every == 0:
            result = on_progress(count)
            if inspect.isawaitable(result):
                await result
    return assembler.finish(), assembler.report
