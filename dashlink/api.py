"""
Dashboard backend resources.

Thin wrappers that give every read a stable cache key and drop the affected
cache entries after every write. Payloads are returned as decoded JSON.
"""

import asyncio
from typing import Any

from loguru import logger

from dashlink.services.client import RequestClient
from dashlink.services.errors import BackendError

# Per-family TTL overrides in seconds; everything else uses the client default
STABLE_TTL = 600.0  # products, customers
VOLATILE_TTL = 300.0  # inventory, analytics


class DashboardApi:
    """
    Invoices, customers, products, inventory and analytics endpoints.

    Usage:
        api = DashboardApi(client)
        invoices = await api.get_invoices()
        await api.update_invoice(42, {"status": "paid"})  # drops invoice caches
    """

    def __init__(self, client: RequestClient):
        self.client = client

    # ── Health ───────────────────────────────────────────────────────────────

    async def check_health(self) -> bool:
        """Single uncached health call, no monitor state involved."""
        monitor = self.client.monitor
        path = monitor.config.health_path if monitor else "/health"
        try:
            await self.client.request(path, notify_monitor=False)
            return True
        except BackendError as e:
            logger.warning(f"Backend health check failed: {e}")
            return False

    # ── Invoices ─────────────────────────────────────────────────────────────

    async def get_invoices(self) -> Any:
        return await self.client.request("/api/invoices", cache_key="invoices:all")

    async def get_invoice(self, invoice_id: int | str) -> Any:
        return await self.client.request(
            f"/api/invoices/{invoice_id}", cache_key=f"invoice:{invoice_id}"
        )

    async def create_invoice(self, data: dict[str, Any]) -> Any:
        result = await self.client.request("/api/invoices", method="POST", json_data=data)
        await self.client.invalidate("invoices")
        return result

    async def update_invoice(self, invoice_id: int | str, data: dict[str, Any]) -> Any:
        result = await self.client.request(
            f"/api/invoices/{invoice_id}", method="PUT", json_data=data
        )
        await self._invalidate_item("invoices", f"invoice:{invoice_id}")
        return result

    async def delete_invoice(self, invoice_id: int | str) -> Any:
        result = await self.client.request(
            f"/api/invoices/{invoice_id}", method="DELETE"
        )
        await self._invalidate_item("invoices", f"invoice:{invoice_id}")
        return result

    # ── Customers ────────────────────────────────────────────────────────────

    async def get_customers(self) -> Any:
        return await self.client.request(
            "/api/customers", cache_key="customers:all", cache_ttl=STABLE_TTL
        )

    async def get_customer(self, customer_id: int | str) -> Any:
        return await self.client.request(
            f"/api/customers/{customer_id}",
            cache_key=f"customer:{customer_id}",
            cache_ttl=STABLE_TTL,
        )

    async def create_customer(self, data: dict[str, Any]) -> Any:
        result = await self.client.request(
            "/api/customers", method="POST", json_data=data
        )
        await self.client.invalidate("customers")
        return result

    async def update_customer(self, customer_id: int | str, data: dict[str, Any]) -> Any:
        result = await self.client.request(
            f"/api/customers/{customer_id}", method="PUT", json_data=data
        )
        await self._invalidate_item("customers", f"customer:{customer_id}")
        return result

    # ── Products ─────────────────────────────────────────────────────────────

    async def get_products(self) -> Any:
        return await self.client.request(
            "/api/products", cache_key="products:all", cache_ttl=STABLE_TTL
        )

    async def get_product(self, product_id: int | str) -> Any:
        return await self.client.request(
            f"/api/products/{product_id}",
            cache_key=f"product:{product_id}",
            cache_ttl=STABLE_TTL,
        )

    async def create_product(self, data: dict[str, Any]) -> Any:
        result = await self.client.request("/api/products", method="POST", json_data=data)
        await self.client.invalidate("products")
        return result

    async def update_product(self, product_id: int | str, data: dict[str, Any]) -> Any:
        result = await self.client.request(
            f"/api/products/{product_id}", method="PUT", json_data=data
        )
        await self._invalidate_item("products", f"product:{product_id}")
        return result

    # ── Inventory ────────────────────────────────────────────────────────────

    async def get_inventory(self) -> Any:
        return await self.client.request(
            "/api/inventory", cache_key="inventory:all", cache_ttl=VOLATILE_TTL
        )

    async def get_inventory_report(self) -> Any:
        return await self.client.request(
            "/api/inventory/report", cache_key="inventory:report", cache_ttl=VOLATILE_TTL
        )

    async def get_inventory_analytics(self) -> Any:
        return await self.client.request("/api/inventory/analytics")

    async def get_low_stock_alerts(self) -> Any:
        return await self.client.request("/api/inventory/low-stock")

    async def get_stock_movements(self) -> Any:
        return await self.client.request("/api/inventory/movements")

    async def update_inventory(self, item_id: int | str, data: dict[str, Any]) -> Any:
        result = await self.client.request(
            f"/api/inventory/{item_id}", method="PUT", json_data=data
        )
        await self.client.invalidate("inventory")
        return result

    async def adjust_stock(self, item_id: int | str, quantity: int, reason: str) -> Any:
        result = await self.client.request(
            f"/api/inventory/{item_id}/adjust",
            method="POST",
            json_data={"quantity": quantity, "reason": reason},
        )
        await self.client.invalidate("inventory")
        return result

    # ── Analytics ────────────────────────────────────────────────────────────

    async def get_analytics(self, params: dict[str, Any] | None = None) -> Any:
        params = params or {}
        query = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        return await self.client.request(
            "/api/analytics",
            params=params,
            cache_key=f"analytics:{query}",
            cache_ttl=VOLATILE_TTL,
        )

    # ── Utility ──────────────────────────────────────────────────────────────

    async def prefetch_common_data(self) -> None:
        """Warm the caches the dashboard opens with. Failures are only logged."""
        results = await asyncio.gather(
            self.get_products(), self.get_customers(), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BackendError):
                logger.debug(f"Prefetch failed: {result}")
            elif isinstance(result, BaseException):
                raise result

    async def _invalidate_item(self, family: str, item_key: str) -> None:
        await self.client.invalidate(family)
        await self.client.invalidate(item_key)
