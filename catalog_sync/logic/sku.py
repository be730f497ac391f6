"""SKU string parsing and derived display fields."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

SIZE_SEPARATOR = "-"
PREORDER_RE = re.compile(r"pre[\s-]?order", re.IGNORECASE)


@dataclass(slots=True)
class SkuParts:
    sku: str
    base_sku: str
    size: str | None
    source: str
    heuristic_size: str | None = None
    disagrees: bool = False


def split_last_separator(sku: str) -> tuple[str, str | None]:
    """Naive split on the final separator.

    Breaks on sizes that contain the separator themselves, e.g. ``M/L(7-16)``.
    Only used when the variant carries no size option.
    """
    if SIZE_SEPARATOR not in sku:
        return sku, None
    base, size = sku.rsplit(SIZE_SEPARATOR, 1)
    if not base or not size:
        return sku, None
    return base, size


def parse_sku(sku: str, size_field: str | None = None) -> SkuParts:
    normalized = sku.strip().upper()
    heuristic_base, heuristic_size = split_last_separator(normalized)
    size = (size_field or "").strip()
    if not size:
        return SkuParts(
            sku=normalized,
            base_sku=heuristic_base,
            size=heuristic_size,
            source="sku",
            heuristic_size=heuristic_size,
        )

    suffix = f"{SIZE_SEPARATOR}{size.upper()}"
    if normalized.endswith(suffix) and len(normalized) > len(suffix):
        base = normalized[: -len(suffix)]
    else:
        base = heuristic_base
    disagrees = heuristic_size is not None and heuristic_size != size.upper()
    return SkuParts(
        sku=normalized,
        base_sku=base,
        size=size,
        source="field",
        heuristic_size=heuristic_size,
        disagrees=disagrees,
    )


def flatten_color(value: str | None) -> str | None:
    """Color metafields are JSON lists; render them as ``"a, b"``."""
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        cleaned = re.sub(r'[\[\]"]', "", value).strip()
        return cleaned or None
    if isinstance(parsed, list):
        joined = ", ".join(str(item).strip() for item in parsed if str(item).strip())
        return joined or None
    return str(parsed).strip() or None


def price_display(price_cad: str | None, price_usd: str | None) -> str | None:
    if price_cad and price_usd:
        return f"CAD: {price_cad} / USD: {price_usd}"
    return None


def is_preorder_collection(raw_collection: str | None) -> bool:
    return bool(raw_collection and PREORDER_RE.search(raw_collection))
