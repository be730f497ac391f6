from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from catalog_sync.api import main
from catalog_sync.ingest.raw_store import RawIngestionStore
from catalog_sync.jobs.tracker import SyncRunTracker
from catalog_sync.logic.transform import CatalogTransformer
from catalog_sync.mapping.resolver import ValueMappingResolver


@pytest.fixture()
def client(engine):
    main.app.dependency_overrides[main.get_engine] = lambda: engine
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture()
def observed(engine, category_ids, record_factory):
    RawIngestionStore(engine).ingest(
        [record_factory("ABC-1-S", 1), record_factory("ABC-1-M", 2), record_factory("XYZ-1", 3, collection="Core")]
    )
    resolver = ValueMappingResolver(engine)
    resolver.observe_many({"Spring25": 2, "Core": 1})
    return {item.raw_value: item.id for item in resolver.list_by_status()}


def test_list_and_stats(client, observed):
    response = client.get("/mappings", params={"status": "unmapped"})
    assert response.status_code == 200
    assert [item["raw_value"] for item in response.json()] == ["Spring25", "Core"]

    stats = client.get("/mappings/stats").json()
    assert stats["unmapped"] == 2
    assert stats["unmapped_sku_count"] == 3

    assert client.get("/mappings", params={"status": "bogus"}).status_code == 422


def test_impact_preview(client, observed):
    response = client.get(f"/mappings/{observed['Spring25']}/skus")
    assert response.status_code == 200
    assert [item["sku"] for item in response.json()["skus"]] == ["ABC-1-M", "ABC-1-S"]


def test_resolve_defer_unmap(client, observed, category_ids):
    mapping_id = observed["Spring25"]
    resolved = client.post(f"/mappings/{mapping_id}/resolve", json={"category_id": category_ids[0]})
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "mapped"
    assert resolved.json()["category_id"] == category_ids[0]

    deferred = client.post(f"/mappings/{mapping_id}/defer", json={"note": "waiting on pricing"})
    assert deferred.json()["status"] == "deferred"
    assert deferred.json()["note"] == "waiting on pricing"

    unmapped = client.post(f"/mappings/{mapping_id}/unmap")
    assert unmapped.json()["status"] == "unmapped"
    assert unmapped.json()["category_id"] is None


def test_resolve_errors(client, observed):
    assert client.post(f"/mappings/{observed['Core']}/resolve", json={"category_id": 999}).status_code == 422
    assert client.post("/mappings/9999/resolve", json={"category_id": 1}).status_code == 404


def test_bulk_resolve(client, observed, category_ids):
    response = client.post(
        "/mappings/bulk-resolve", json={"raw_values": ["Spring25", "Core"], "category_id": category_ids[1]}
    )
    assert response.status_code == 200
    assert {item["status"] for item in response.json()} == {"mapped"}


def test_sync_runs(client, engine):
    tracker = SyncRunTracker(engine)
    run_id = tracker.begin("shopify_bulk")
    tracker.fail(run_id, ["bulk operation failed"])

    runs = client.get("/sync/runs", params={"limit": 5}).json()
    assert runs[0]["id"] == run_id
    assert runs[0]["status"] == "failed"
    assert runs[0]["errors"] == ["bulk operation failed"]
    assert client.get(f"/sync/runs/{run_id}").json()["id"] == run_id
    assert client.get("/sync/runs/9999").status_code == 404


def test_cleanup_requires_cron_secret(client, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    assert client.post("/sync/cleanup").status_code == 401
    response = client.post("/sync/cleanup", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    assert response.json() == {"cleaned_up": 0}


def test_trigger_enqueues_task(client, monkeypatch):
    queued = []

    def delay():
        queued.append(True)
        return SimpleNamespace(id="task-1")

    monkeypatch.setattr(main, "run_sync_task", SimpleNamespace(delay=delay))
    response = client.post("/sync/trigger")
    assert response.status_code == 202
    assert response.json() == {"task_id": "task-1"}
    assert queued


def test_catalog_endpoints(client, engine, observed, category_ids):
    ValueMappingResolver(engine).resolve("Spring25", category_ids[0])
    CatalogTransformer(engine).transform(skip_backup=True)

    skus = client.get("/catalog/skus").json()["skus"]
    assert {item["sku"] for item in skus} == {"ABC-1-S", "ABC-1-M"}
    products = client.get("/catalog/skus", params={"grouped": True}).json()["products"]
    assert products[0]["base_sku"] == "ABC-1"
    assert client.get("/catalog/duplicates").json() == {"duplicates": []}
