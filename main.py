"""
dashlink entry point.
Probes the dashboard backend, warms the common caches and keeps the
availability watchdog running.
"""

import asyncio

from loguru import logger

from dashlink.backend import close_backend, get_backend
from dashlink.services.availability import AvailabilityState


def log_transition(old: AvailabilityState, new: AvailabilityState) -> None:
    if new.is_warming_up:
        logger.info(f"Backend warming up ({new})")
    elif new.is_unavailable:
        logger.error("Backend is down. Restart with a manual probe once it is back.")
    elif new.is_available:
        logger.info(f"Backend reachable (was {old})")


async def main() -> None:
    logger.info("Starting dashlink...")
    backend = get_backend()
    backend.monitor.on_transition(log_transition)

    try:
        logger.info(f"Probing {backend.monitor.config.health_url}...")
        await backend.monitor.probe()
        state = await backend.monitor.wait_until_settled()

        if state.is_available:
            logger.info("Prefetching common data...")
            await backend.api.prefetch_common_data()

        backend.monitor.start()

        logger.info("dashlink is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)
            logger.debug(f"Status: {backend.get_health_status()}")

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        await close_backend()
        logger.info("dashlink stopped")


if __name__ == "__main__":
    asyncio.run(main())
