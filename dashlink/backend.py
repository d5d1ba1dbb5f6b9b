"""
Composition root: one monitor, one client and the resource API, shared by the
whole process.
"""

from typing import Any

from loguru import logger

from dashlink.api import DashboardApi
from dashlink.services.availability import AvailabilityMonitor, MonitorConfig
from dashlink.services.client import ClientConfig, RequestClient
from dashlink.settings import Settings, global_settings


class Backend:
    """Wires the availability monitor into the request client."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or global_settings
        self.monitor = AvailabilityMonitor(MonitorConfig.from_settings(self.settings))
        self.client = RequestClient(
            ClientConfig.from_settings(self.settings),
            monitor=self.monitor,
            debug=self.settings.debug,
        )
        self.api = DashboardApi(self.client)

    def get_health_status(self) -> dict[str, Any]:
        """Availability plus client statistics, for status displays."""
        return {
            "availability": self.monitor.get_status(),
            **self.client.get_stats(),
        }

    async def close(self) -> None:
        await self.monitor.close()
        await self.client.close()
        logger.debug("Backend closed")


# Global backend instance
_global_backend: Backend | None = None


def get_backend() -> Backend:
    """Get the global backend instance."""
    global _global_backend
    if _global_backend is None:
        _global_backend = Backend()
    return _global_backend


async def close_backend() -> None:
    """Close the global backend."""
    global _global_backend
    if _global_backend:
        await _global_backend.close()
        _global_backend = None
