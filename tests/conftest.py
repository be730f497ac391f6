import json
from datetime import datetime, timedelta

import pytest

from catalog_sync.db.migrate import run_migrations
from catalog_sync.db.session import create_engine_from_env
from catalog_sync.ingest.models import RawRecord
from catalog_sync.mapping.categories import Category, CategoryDirectory


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def engine(tmp_path):
    # File-backed so executor threads see the same database.
    engine = create_engine_from_env(f"sqlite:///{tmp_path / 'catalog.db'}")
    run_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def category_ids(engine):
    return CategoryDirectory(engine).ensure(
        [
            Category(name="Core Collection", sort_order=1),
            Category(name="Spring 25", sort_order=2),
            Category(name="Spring 25", is_preorder=True, sort_order=3),
        ]
    )


def make_record(sku, variant_number, collection="Spring25", **overrides):
    values = {
        "variant_id": f"gid://shopify/ProductVariant/{variant_number}",
        "sku": sku,
        "product_id": "gid://shopify/Product/1",
        "product_title": "Classic Tee",
        "display_name": f"Classic Tee - {sku}",
        "collection_raw": collection,
        "quantity": 5,
        "price_cad": "20.00",
        "price_usd": "15.00",
    }
    values.update(overrides)
    return RawRecord(**values)


@pytest.fixture()
def record_factory():
    return make_record


def variant_line(number, sku, *, collection="Spring25", size=None, inventory_item=None, quantity=3):
    options = [{"name": "Size", "value": size}] if size else []
    return json.dumps(
        {
            "id": f"gid://shopify/ProductVariant/{number}",
            "sku": sku,
            "price": "25.00",
            "inventoryQuantity": quantity,
            "displayName": f"Classic Tee - {sku}",
            "title": size or "Default Title",
            "selectedOptions": options,
            "image": None,
            "product": {
                "id": "gid://shopify/Product/10",
                "title": "Classic Tee",
                "status": "ACTIVE",
                "productType": "Tops",
                "featuredMedia": {"preview": {"image": {"url": "https://cdn.example.com/tee.jpg"}}},
                "mfOrderEntryCollection": {"value": collection} if collection else None,
                "mfColor": {"value": '["Black", "White"]'},
                "mfCADWSPrice": {"value": "20.00"},
                "mfUSDWSPrice": {"value": "15.00"},
            },
            "inventoryItem": {
                "id": inventory_item or f"gid://shopify/InventoryItem/{number}",
                "measurement": {"weight": {"unit": "GRAMS", "value": 180}},
            },
        }
    )


def level_line(number, parent, *, on_hand=0, incoming=0, committed=0):
    return json.dumps(
        {
            "id": f"gid://shopify/InventoryLevel/{number}",
            "quantities": [
                {"name": "on_hand", "quantity": on_hand},
                {"name": "incoming", "quantity": incoming},
                {"name": "committed", "quantity": committed},
            ],
            "__parentId": parent,
        }
    )
