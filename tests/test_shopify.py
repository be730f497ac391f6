import json

import httpx
import pytest
import respx

from catalog_sync.errors import BulkOperationError, ConfigurationError, SyncTimeoutError, TransientError
from catalog_sync.ingest.models import BulkStatus
from catalog_sync.ingest.shopify import ShopifyBulkClient, ShopifyConfig
from catalog_sync.utils.settings import SyncSettings

GRAPHQL_URL = "https://shop.example.com/admin/api/2024-01/graphql.json"
RESULT_URL = "https://storage.example.com/bulk/result.jsonl"
OPERATION_ID = "gid://shopify/BulkOperation/1"

SETTINGS = SyncSettings(poll_interval=0, max_wait=60, retry_attempts=3, retry_base_delay=0)


def make_client(session):
    config = ShopifyConfig(store_domain="shop.example.com", access_token="shpat_test")
    return ShopifyBulkClient(config, session=session, settings=SETTINGS)


def node(status, url=None, error_code=None, count=0):
    return {
        "data": {
            "node": {"id": OPERATION_ID, "status": status, "url": url, "errorCode": error_code, "objectCount": str(count)}
        }
    }


@pytest.mark.asyncio
async def test_start_bulk_export_posts_mutation():
    payload = {
        "data": {
            "bulkOperationRunQuery": {
                "bulkOperation": {"id": OPERATION_ID, "status": "CREATED"},
                "userErrors": [],
            }
        }
    }
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(GRAPHQL_URL).mock(return_value=httpx.Response(200, json=payload))
        async with httpx.AsyncClient() as session:
            operation = await make_client(session).start_bulk_export()
    assert operation.id == OPERATION_ID
    assert operation.status is BulkStatus.RUNNING
    request = route.calls.last.request
    assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
    body = json.loads(request.content)
    assert "bulkOperationRunQuery" in body["query"]
    assert "productVariants" in body["variables"]["query"]


@pytest.mark.asyncio
async def test_user_errors_raise_bulk_operation_error():
    payload = {
        "data": {
            "bulkOperationRunQuery": {
                "bulkOperation": None,
                "userErrors": [{"field": None, "message": "A bulk query operation for this app and shop is already in progress"}],
            }
        }
    }
    async with respx.mock() as router:
        route = router.post(GRAPHQL_URL).mock(return_value=httpx.Response(200, json=payload))
        async with httpx.AsyncClient() as session:
            with pytest.raises(BulkOperationError, match="already in progress"):
                await make_client(session).start_bulk_export()
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_unauthorized_is_configuration_error():
    async with respx.mock() as router:
        route = router.post(GRAPHQL_URL).mock(return_value=httpx.Response(401, json={"errors": "Invalid API key"}))
        async with httpx.AsyncClient() as session:
            with pytest.raises(ConfigurationError):
                await make_client(session).poll_bulk_export(OPERATION_ID)
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    async with respx.mock() as router:
        route = router.post(GRAPHQL_URL).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json=node("COMPLETED", url=RESULT_URL, count=4))]
        )
        async with httpx.AsyncClient() as session:
            operation = await make_client(session).poll_bulk_export(OPERATION_ID)
    assert route.call_count == 2
    assert operation.status is BulkStatus.COMPLETED
    assert operation.url == RESULT_URL
    assert operation.object_count == 4


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_attempts():
    async with respx.mock() as router:
        route = router.post(GRAPHQL_URL).mock(return_value=httpx.Response(429))
        async with httpx.AsyncClient() as session:
            with pytest.raises(TransientError):
                await make_client(session).poll_bulk_export(OPERATION_ID)
    assert route.call_count == SETTINGS.retry_attempts


@pytest.mark.asyncio
async def test_throttled_graphql_error_is_transient():
    throttled = {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}
    async with respx.mock() as router:
        router.post(GRAPHQL_URL).mock(
            side_effect=[httpx.Response(200, json=throttled), httpx.Response(200, json=node("RUNNING"))]
        )
        async with httpx.AsyncClient() as session:
            operation = await make_client(session).poll_bulk_export(OPERATION_ID)
    assert operation.status is BulkStatus.RUNNING


@pytest.mark.asyncio
@pytest.mark.parametrize("remote", ["FAILED", "CANCELED", "EXPIRED"])
async def test_terminal_failure_statuses(remote):
    async with respx.mock() as router:
        router.post(GRAPHQL_URL).mock(return_value=httpx.Response(200, json=node(remote, error_code="INTERNAL_SERVER_ERROR")))
        async with httpx.AsyncClient() as session:
            operation = await make_client(session).poll_bulk_export(OPERATION_ID)
    assert operation.status is BulkStatus.FAILED
    assert operation.remote_status == remote


@pytest.mark.asyncio
async def test_wait_for_completion_ticks_while_running():
    ticks = []
    async with respx.mock() as router:
        router.post(GRAPHQL_URL).mock(
            side_effect=[
                httpx.Response(200, json=node("CREATED")),
                httpx.Response(200, json=node("RUNNING")),
                httpx.Response(200, json=node("COMPLETED", url=RESULT_URL)),
            ]
        )
        async with httpx.AsyncClient() as session:
            operation = await make_client(session).wait_for_completion(OPERATION_ID, on_tick=ticks.append)
    assert operation.status is BulkStatus.COMPLETED
    assert len(ticks) == 2


@pytest.mark.asyncio
async def test_wait_for_completion_awaits_async_tick():
    ticks = []

    async def on_tick(operation):
        ticks.append(operation.id)

    async with respx.mock() as router:
        router.post(GRAPHQL_URL).mock(
            side_effect=[httpx.Response(200, json=node("RUNNING")), httpx.Response(200, json=node("COMPLETED", url=RESULT_URL))]
        )
        async with httpx.AsyncClient() as session:
            await make_client(session).wait_for_completion(OPERATION_ID, on_tick=on_tick)
    assert ticks == [OPERATION_ID]


@pytest.mark.asyncio
async def test_wait_for_completion_times_out():
    async with respx.mock() as router:
        router.post(GRAPHQL_URL).mock(return_value=httpx.Response(200, json=node("RUNNING")))
        async with httpx.AsyncClient() as session:
            with pytest.raises(SyncTimeoutError) as excinfo:
                await make_client(session).wait_for_completion(OPERATION_ID, max_wait=0)
    assert excinfo.value.operation_id == OPERATION_ID
    assert isinstance(excinfo.value, TimeoutError)


@pytest.mark.asyncio
async def test_download_streams_non_blank_lines():
    body = '{"id": "a"}\n\n{"id": "b"}\n'
    async with respx.mock() as router:
        router.get(RESULT_URL).mock(return_value=httpx.Response(200, text=body))
        async with httpx.AsyncClient() as session:
            lines = [line async for line in make_client(session).download_bulk_result(RESULT_URL)]
    assert lines == ['{"id": "a"}', '{"id": "b"}']


@pytest.mark.asyncio
async def test_download_failure_is_transient():
    async with respx.mock() as router:
        router.get(RESULT_URL).mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as session:
            with pytest.raises(TransientError):
                async for _ in make_client(session).download_bulk_result(RESULT_URL):
                    pass


def test_config_requires_credentials(monkeypatch):
    monkeypatch.setenv("SHOPIFY_STORE_DOMAIN", "shop.example.com")
    monkeypatch.delenv("SHOPIFY_ACCESS_TOKEN", raising=False)
    with pytest.raises(ConfigurationError):
        ShopifyConfig.from_env()
