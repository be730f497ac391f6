"""Table definitions for the catalog mirror and sync bookkeeping."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    text,
)

metadata = MetaData()

MAPPING_STATUSES = ("mapped", "unmapped", "deferred")
RUN_STATUSES = ("started", "completed", "failed", "timeout")

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("is_preorder", Boolean, nullable=False, default=False),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
)

raw_skus = Table(
    "raw_skus",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("variant_id", Text, nullable=False, unique=True),
    Column("product_id", Text),
    Column("sku", Text, nullable=False),
    Column("product_title", Text),
    Column("display_name", Text),
    Column("variant_title", Text),
    Column("size", Text),
    Column("selected_options", JSON),
    Column("price", Numeric(12, 2)),
    Column("image_url", Text),
    Column("product_status", Text),
    Column("quantity", Integer, nullable=False, default=0),
    Column("incoming", Integer, nullable=False, default=0),
    Column("committed", Integer, nullable=False, default=0),
    Column("collection_raw", Text),
    Column("product_type", Text),
    Column("order_entry_description", Text),
    Column("fabric", Text),
    Column("color", Text),
    Column("price_cad", Text),
    Column("price_usd", Text),
    Column("msrp_cad", Text),
    Column("msrp_us", Text),
    Column("weight", Numeric(10, 3)),
    Column("weight_unit", Text),
    Column("sync_run_id", Integer),
    Column("synced_at", DateTime, nullable=False),
    Index("ix_raw_skus_collection_raw", "collection_raw"),
    Index("ix_raw_skus_sku", "sku"),
)

value_mappings = Table(
    "value_mappings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("raw_value", Text, nullable=False, unique=True),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("status", Text, nullable=False, default="unmapped"),
    Column("note", Text),
    Column("sku_count", Integer, nullable=False, default=0),
    Column("first_seen_at", DateTime, nullable=False),
    Column("last_seen_at", DateTime, nullable=False),
    CheckConstraint("status IN ('mapped', 'unmapped', 'deferred')", name="ck_value_mappings_status"),
    CheckConstraint(
        "(status = 'mapped' AND category_id IS NOT NULL) OR (status <> 'mapped' AND category_id IS NULL)",
        name="ck_value_mappings_target",
    ),
    Index("ix_value_mappings_status", "status"),
)

skus = Table(
    "skus",
    metadata,
    Column("sku", Text, primary_key=True),
    Column("base_sku", Text, nullable=False),
    Column("size", Text),
    Column("size_source", Text),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("raw_collection", Text, nullable=False),
    Column("description", Text),
    Column("order_entry_description", Text),
    Column("price", Text),
    Column("price_cad", Text),
    Column("price_usd", Text),
    Column("msrp_cad", Text),
    Column("msrp_us", Text),
    Column("quantity", Integer, nullable=False, default=0),
    Column("on_route", Integer, nullable=False, default=0),
    Column("image_url", Text),
    Column("fabric", Text),
    Column("color", Text),
    Column("show_in_preorder", Boolean, nullable=False, default=False),
    Column("display_priority", Integer, nullable=False, default=10000),
    Column("shopify_variant_id", Text),
    Column("shopify_product_id", Text),
    Index("ix_skus_base_sku", "base_sku"),
    Index("ix_skus_category_id", "category_id"),
)

sync_runs = Table(
    "sync_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sync_type", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("operation_id", Text),
    Column("started_at", DateTime, nullable=False),
    Column("heartbeat_at", DateTime),
    Column("completed_at", DateTime),
    Column("item_count", Integer),
    Column("errors", JSON),
    Column("summary", JSON),
    CheckConstraint("status IN ('started', 'completed', 'failed', 'timeout')", name="ck_sync_runs_status"),
    Index(
        "ux_sync_runs_one_active",
        "sync_type",
        unique=True,
        sqlite_where=text("status = 'started'"),
        postgresql_where=text("status = 'started'"),
    ),
    Index("ix_sync_runs_started_at", "started_at"),
)
