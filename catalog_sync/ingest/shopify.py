"""Shopify Admin GraphQL bulk-operation connector."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from catalog_sync.errors import BulkOperationError, ConfigurationError, SyncTimeoutError, TransientError
from catalog_sync.ingest.models import BulkOperation, BulkStatus
from catalog_sync.utils.retry import retry_async
from catalog_sync.utils.settings import SyncSettings

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-01"

BULK_VARIANTS_QUERY = """
{
  productVariants {
    edges {
      node {
        id
        sku
        price
        inventoryQuantity
        displayName
        title
        selectedOptions { name value }
        image { url }
        product {
          id
          title
          status
          productType
          featuredMedia { preview { image { url } } }
          mfOrderEntryCollection: metafield(namespace: "custom", key: "order_entry_collection") { value }
          mfOrderEntryDescription: metafield(namespace: "custom", key: "label_title") { value }
          mfFabric: metafield(namespace: "custom", key: "fabric") { value }
          mfColor: metafield(namespace: "custom", key: "color") { value }
          mfCADWSPrice: metafield(namespace: "custom", key: "cad_ws_price") { value }
          mfUSDWSPrice: metafield(namespace: "custom", key: "us_ws_price") { value }
          mfMSRPCAD: metafield(namespace: "custom", key: "msrp_cad") { value }
          mfMSRPUSD: metafield(namespace: "custom", key: "msrp_us") { value }
        }
        inventoryItem {
          id
          measurement { weight { unit value } }
          inventoryLevels(first: 10) {
            edges {
              node {
                id
                quantities(names: ["on_hand", "incoming", "committed"]) { name quantity }
              }
            }
          }
        }
      }
    }
  }
}
"""

RUN_BULK_QUERY_MUTATION = """
mutation($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

BULK_OPERATION_STATUS_QUERY = """
query($id: ID!) {
  node(id: $id) {
    ... on BulkOperation { id status errorCode objectCount url }
  }
}
"""

CURRENT_BULK_OPERATION_QUERY = """
query {
  currentBulkOperation(type: QUERY) { id status errorCode objectCount url }
}
"""


@dataclass(slots=True)
class ShopifyConfig:
    store_domain: str
    access_token: str
    api_version: str = DEFAULT_API_VERSION

    @classmethod
    def from_env(cls) -> "ShopifyConfig":
        store_domain = os.environ.get("SHOPIFY_STORE_DOMAIN")
        access_token = os.environ.get("SHOPIFY_ACCESS_TOKEN")
        if not store_domain:
            raise ConfigurationError("SHOPIFY_STORE_DOMAIN environment variable is not set")
        if not access_token:
            raise ConfigurationError("SHOPIFY_ACCESS_TOKEN environment variable is not set")
        return cls(
            store_domain=store_domain,
            access_token=access_token,
            api_version=os.environ.get("SHOPIFY_API_VERSION", DEFAULT_API_VERSION),
        )

    @property
    def graphql_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"


class ShopifyBulkClient:
    def __init__(
        self,
        config: ShopifyConfig,
        *,
        session: httpx.AsyncClient | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or SyncSettings.from_env()
        self._session = session or httpx.AsyncClient(timeout=30.0, headers={"User-Agent": "CatalogSync/1.0"})

    async def close(self) -> None:
        await self._session.aclose()

    async def start_bulk_export(self, query: str = BULK_VARIANTS_QUERY) -> BulkOperation:
        data = await self._graphql(RUN_BULK_QUERY_MUTATION, {"query": query})
        result = data.get("bulkOperationRunQuery") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = "; ".join(err.get("message", "unknown error") for err in user_errors)
            raise BulkOperationError(f"Shopify rejected bulk query: {messages}")
        payload = result.get("bulkOperation")
        if not payload or not payload.get("id"):
            raise BulkOperationError("No bulk operation id returned from Shopify")
        operation = BulkOperation.from_payload(payload)
        logger.info("Started bulk operation %s (%s)", operation.id, operation.remote_status)
        return operation

    async def poll_bulk_export(self, operation_id: str) -> BulkOperation:
        data = await self._graphql(BULK_OPERATION_STATUS_QUERY, {"id": operation_id})
        payload = data.get("node")
        if not payload:
            raise BulkOperationError(f"Bulk operation not found: {operation_id}")
        return BulkOperation.from_payload(payload)

    async def current_bulk_operation(self) -> BulkOperation | None:
        data = await self._graphql(CURRENT_BULK_OPERATION_QUERY)
        payload = data.get("currentBulkOperation")
        return BulkOperation.from_payload(payload) if payload else None

    async def wait_for_completion(
        self,
        operation_id: str,
        *,
        poll_interval: float | None = None,
        max_wait: float | None = None,
        on_tick: Callable[[BulkOperation], Any] | None = None,
    ) -> BulkOperation:
        """Poll until the operation leaves the running state.

        Raises SyncTimeoutError once ``max_wait`` elapses. The remote job keeps
        running; a later poll of the same id can still pick up its result.
        """
        interval = self.settings.poll_interval if poll_interval is None else poll_interval
        limit = self.settings.max_wait if max_wait is None else max_wait
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit
        while True:
            operation = await self.poll_bulk_export(operation_id)
            if operation.status is not BulkStatus.RUNNING:
                logger.info(
                    "Bulk operation %s finished: %s (%s objects)",
                    operation_id,
                    operation.remote_status,
                    operation.object_count,
                )
                return operation
            if on_tick:
                result = on_tick(operation)
                if inspect.isawaitable(result):
                    await result
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SyncTimeoutError(operation_id, limit)
            await asyncio.sleep(min(interval, remaining))

    async def download_bulk_result(self, url: str) -> AsyncIterator[str]:
        """Stream the JSONL result file line by line."""
        try:
            async with self._session.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise TransientError(f"Failed to download bulk results: HTTP {response.status_code}")
                async for line in response.aiter_lines():
                    if line.strip():
                        yield line
        except httpx.TransportError as exc:
            raise TransientError(f"Bulk result download failed: {exc}") from exc

    async def _graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        send = retry_async(
            self._post_graphql,
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
        )
        return await send(query, variables)

    async def _post_graphql(self, query: str, variables: dict[str, Any] | None) -> dict[str, Any]:
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables
        headers = {"X-Shopify-Access-Token": self.config.access_token, "Content-Type": "application/json"}
        try:
            response = await self._session.post(self.config.graphql_url, json=body, headers=headers)
        except httpx.TransportError as exc:
            raise TransientError(f"Shopify request failed: {exc}") from exc
        if response.status_code in {401, 403}:
            raise ConfigurationError(f"Shopify rejected the access token (HTTP {response.status_code})")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(f"Shopify returned HTTP {response.status_code}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ConfigurationError(f"Shopify request rejected: {exc}") from exc
        payload = response.json()
        errors = payload.get("errors")
        if errors:
            if isinstance(errors, list) and any(
                (err.get("extensions") or {}).get("code") == "THROTTLED" for err in errors
            ):
                raise TransientError("Shopify throttled the request")
            message = errors[0].get("message", "GraphQL error") if isinstance(errors, list) else str(errors)
            raise BulkOperationError(message)
        return payload.get("data") or {}
