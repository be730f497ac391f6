"""Buyer-facing catalog queries."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine

from catalog_sync.db.tables import categories, skus, value_mappings


def buyer_visible_skus(engine: Engine, category_id: int | None = None) -> list[dict[str, Any]]:
    """SKUs whose raw collection is currently mapped to their category.

    A value unmapped after the last transform drops out here immediately,
    before the next transform rewrites ``skus``.
    """
    query = (
        select(skus, categories.c.name.label("category_name"))
        .join(
            value_mappings,
            and_(
                value_mappings.c.raw_value == skus.c.raw_collection,
                value_mappings.c.status == "mapped",
                value_mappings.c.category_id == skus.c.category_id,
            ),
        )
        .join(categories, categories.c.id == skus.c.category_id)
        .where(categories.c.is_active.is_(True))
        .order_by(skus.c.display_priority, skus.c.base_sku, skus.c.sku)
    )
    if category_id is not None:
        query = query.where(skus.c.category_id == category_id)
    with engine.connect() as conn:
        return [dict(row) for row in conn.execute(query).mappings()]


def group_by_product(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    products: OrderedDict[str, dict[str, Any]] = OrderedDict()
    for row in rows:
        product = products.setdefault(
            row["base_sku"],
            {
                "base_sku": row["base_sku"],
                "description": row["description"],
                "category_id": row["category_id"],
                "image_url": row["image_url"],
                "variants": [],
            },
        )
        product["variants"].append({"sku": row["sku"], "size": row["size"], "quantity": row["quantity"]})
    return list(products.values())
