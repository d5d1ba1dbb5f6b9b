"""
AvailabilityMonitor - Tracks whether the backend is reachable.

A sleeping backend needs time to wake up, so a failed health check is not
treated as an outage straight away.

States:
- UNKNOWN: Nothing checked yet
- PROBING: A health check is running
- COLD_STARTING: Checks are failing, backend may still be waking up
- AVAILABLE: Last check succeeded
- UNAVAILABLE: Cold-start budget exhausted, waiting for a manual probe

Transitions:
- UNKNOWN → PROBING: On probe()
- PROBING → AVAILABLE: Check succeeded
- PROBING → COLD_STARTING(1): Check failed
- COLD_STARTING(k) → COLD_STARTING(k+1): Scheduled check failed
- COLD_STARTING(k) → UNAVAILABLE: max_attempts consecutive failures
- COLD_STARTING → AVAILABLE: Any scheduled check succeeded
- AVAILABLE → PROBING: Watchdog check failed (a fresh sequence starts)
- UNAVAILABLE → PROBING: Only on an explicit probe()
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

if TYPE_CHECKING:
    from dashlink.settings import Settings


class AvailabilityStatus(str, Enum):
    """Backend availability states."""

    UNKNOWN = "unknown"
    PROBING = "probing"
    COLD_STARTING = "cold_starting"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AvailabilityState:
    """Snapshot of the monitor's state machine."""

    status: AvailabilityStatus
    attempt: int = 0
    max_attempts: int = 0
    last_success_at: datetime | None = None
    failed_attempts: int = 0

    @classmethod
    def unknown(cls) -> "AvailabilityState":
        return cls(AvailabilityStatus.UNKNOWN)

    @classmethod
    def probing(cls) -> "AvailabilityState":
        return cls(AvailabilityStatus.PROBING)

    @classmethod
    def cold_starting(cls, attempt: int, max_attempts: int) -> "AvailabilityState":
        return cls(
            AvailabilityStatus.COLD_STARTING,
            attempt=attempt,
            max_attempts=max_attempts,
        )

    @classmethod
    def available(cls, last_success_at: datetime) -> "AvailabilityState":
        return cls(AvailabilityStatus.AVAILABLE, last_success_at=last_success_at)

    @classmethod
    def unavailable(cls, failed_attempts: int) -> "AvailabilityState":
        return cls(AvailabilityStatus.UNAVAILABLE, failed_attempts=failed_attempts)

    @property
    def is_available(self) -> bool:
        return self.status == AvailabilityStatus.AVAILABLE

    @property
    def is_unavailable(self) -> bool:
        return self.status == AvailabilityStatus.UNAVAILABLE

    @property
    def is_warming_up(self) -> bool:
        """True while a stalled backend may still come up."""
        return self.status in (
            AvailabilityStatus.PROBING,
            AvailabilityStatus.COLD_STARTING,
        )

    @property
    def is_settled(self) -> bool:
        return self.is_available or self.is_unavailable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "last_success_at": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "failed_attempts": self.failed_attempts,
        }

    def __str__(self) -> str:
        if self.status == AvailabilityStatus.COLD_STARTING:
            return f"cold_starting({self.attempt}/{self.max_attempts})"
        if self.status == AvailabilityStatus.UNAVAILABLE:
            return f"unavailable({self.failed_attempts})"
        return self.status.value


TransitionHandler = Callable[[AvailabilityState, AvailabilityState], None]


@dataclass
class MonitorConfig:
    """Configuration for the availability monitor."""

    base_url: str = "http://localhost:5000"
    health_path: str = "/health"
    probe_timeout: float = 10.0
    cold_start_max_attempts: int = 3  # Consecutive failures before UNAVAILABLE
    cold_start_interval: float = 5.0  # Seconds between cold-start checks
    healthy_poll_interval: float = 60.0  # Watchdog period once AVAILABLE

    @property
    def health_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.health_path.lstrip('/')}"

    @classmethod
    def from_settings(cls, settings: "Settings") -> "MonitorConfig":
        max_attempts, interval = settings.resolve_cold_start()
        return cls(
            base_url=settings.api_base_url,
            health_path=settings.health_path,
            probe_timeout=settings.probe_timeout_seconds,
            cold_start_max_attempts=max_attempts,
            cold_start_interval=interval,
            healthy_poll_interval=settings.healthy_poll_interval_seconds,
        )


class AvailabilityMonitor:
    """
    Health state machine for a single backend.

    Usage:
        monitor = AvailabilityMonitor(MonitorConfig(base_url="https://api.example.com"))
        monitor.on_transition(lambda old, new: print(old, "->", new))

        state = await monitor.probe()
        if state.is_warming_up:
            state = await monitor.wait_until_settled(timeout=120)

        monitor.start()  # background watchdog
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        check: Callable[[], Awaitable[bool]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or MonitorConfig()
        self._check_fn = check
        self._transport = transport
        self._sleep = sleep
        self._now = now

        self._state = AvailabilityState.unknown()
        self._handlers: list[TransitionHandler] = []
        self._lock = asyncio.Lock()
        self._settled = asyncio.Event()
        self._sequence_task: asyncio.Task[None] | None = None
        self._reprobe_task: asyncio.Task[Any] | None = None
        self._http_client: httpx.AsyncClient | None = None

        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    # ── State access ─────────────────────────────────────────────────────────

    def current_state(self) -> AvailabilityState:
        """Latest known state, without waiting on any check."""
        return self._state

    def on_transition(self, handler: TransitionHandler) -> Callable[[], None]:
        """
        Register handler(old, new) for every state change.

        Returns a callable that removes the handler.
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    # ── Probing ──────────────────────────────────────────────────────────────

    async def probe(self) -> AvailabilityState:
        """
        Check the backend now, restarting any cold-start sequence.

        Returns the state after the first check. Further cold-start checks
        continue in the background.
        """
        return await self._begin_sequence()

    async def wait_until_settled(self, timeout: float | None = None) -> AvailabilityState:
        """Wait until the current sequence ends in AVAILABLE or UNAVAILABLE."""
        if self._state.status == AvailabilityStatus.UNKNOWN:
            await self.probe()
        if self._state.is_settled:
            return self._state
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Availability still {self._state} after {timeout}s")
        return self._state

    async def poll(self) -> AvailabilityState:
        """
        One watchdog tick.

        Probes when nothing is known yet, re-checks when AVAILABLE and leaves
        running sequences and UNAVAILABLE alone.
        """
        status = self._state.status
        if status == AvailabilityStatus.UNKNOWN:
            return await self.probe()
        if status != AvailabilityStatus.AVAILABLE:
            return self._state

        async with self._lock:
            if not self._state.is_available:
                return self._state
            if await self._check():
                self._set_state(AvailabilityState.available(self._now()))
                return self._state

        logger.warning("Backend health check failed while available, re-probing")
        return await self._begin_sequence()

    def notify_failure(self) -> None:
        """
        Hint from a caller that a request failed in a way that suggests an outage.

        Starts a probe sequence in the background unless one is already
        running or the backend is already known to be down.
        """
        if self._state.status not in (
            AvailabilityStatus.UNKNOWN,
            AvailabilityStatus.AVAILABLE,
        ):
            return
        if self._reprobe_task is not None and not self._reprobe_task.done():
            return

        logger.info("Request failure reported, re-probing backend")
        self._reprobe_task = asyncio.create_task(self._begin_sequence())

    async def _begin_sequence(self) -> AvailabilityState:
        async with self._lock:
            self._cancel_sequence()
            self._settled.clear()
            self._set_state(AvailabilityState.probing())

            state = self._record_result(await self._check())
            if state.status == AvailabilityStatus.COLD_STARTING:
                self._sequence_task = asyncio.create_task(self._run_cold_start())
            return state

    async def _run_cold_start(self) -> None:
        """Keep checking at cold_start_interval until the state settles."""
        while True:
            await self._sleep(self.config.cold_start_interval)
            async with self._lock:
                state = self._record_result(await self._check())
            if state.is_settled:
                return

    def _record_result(self, healthy: bool) -> AvailabilityState:
        """Apply one check outcome to the state machine."""
        if healthy:
            self._set_state(AvailabilityState.available(self._now()))
            return self._state

        current = self._state
        attempt = (
            current.attempt + 1
            if current.status == AvailabilityStatus.COLD_STARTING
            else 1
        )
        max_attempts = self.config.cold_start_max_attempts

        if attempt >= max_attempts:
            self._set_state(AvailabilityState.unavailable(attempt))
        else:
            self._set_state(AvailabilityState.cold_starting(attempt, max_attempts))
        return self._state

    def _set_state(self, new: AvailabilityState) -> None:
        old = self._state
        self._state = new
        if new.is_settled:
            self._settled.set()

        # Refreshing last_success_at is not a transition
        if old.status == new.status and old.attempt == new.attempt:
            return

        if new.is_unavailable:
            logger.error(
                f"Backend unavailable after {new.failed_attempts} failed health checks"
            )
        elif new.status == AvailabilityStatus.COLD_STARTING:
            logger.warning(
                f"Backend not responding, waiting for wake-up "
                f"(attempt {new.attempt}/{new.max_attempts})"
            )
        else:
            logger.info(f"Backend availability: {old} -> {new}")

        for handler in list(self._handlers):
            try:
                handler(old, new)
            except Exception:
                logger.exception(f"Availability transition handler {handler!r} failed")

    def _cancel_sequence(self) -> None:
        task = self._sequence_task
        if task is not None and not task.done():
            task.cancel()
        self._sequence_task = None

    # ── Health check ─────────────────────────────────────────────────────────

    async def _check(self) -> bool:
        """Run one bounded health check. Never raises."""
        try:
            return await asyncio.wait_for(self._check_once(), self.config.probe_timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Health check timed out after {self.config.probe_timeout}s")
            return False
        except Exception as e:
            logger.debug(f"Health check failed: {type(e).__name__}: {e}")
            return False

    async def _check_once(self) -> bool:
        if self._check_fn is not None:
            return bool(await self._check_fn())

        client = await self._get_http_client()
        response = await client.get(
            self.config.health_url,
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
        )
        return response.is_success

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.probe_timeout),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._http_client

    # ── Watchdog lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background watchdog. Checks at once if nothing is known yet."""
        if self._is_running:
            logger.warning("AvailabilityMonitor is already running")
            return

        job_kwargs: dict[str, Any] = {}
        if self._state.status == AvailabilityStatus.UNKNOWN:
            job_kwargs["next_run_time"] = datetime.now()

        self.scheduler.add_job(
            self.poll,
            trigger="interval",
            seconds=self.config.healthy_poll_interval,
            id="availability_watchdog",
            name="Backend Availability Watchdog",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Availability watchdog: every {self.config.healthy_poll_interval}s "
            f"against {self.config.health_url}"
        )

    def stop(self) -> None:
        """
        Stop the watchdog and any running cold-start sequence.

        An interrupted sequence leaves the state UNKNOWN, so the next poll or
        probe starts over. Callers blocked in wait_until_settled() get that
        UNKNOWN state back.
        """
        self._cancel_sequence()
        if self._reprobe_task is not None and not self._reprobe_task.done():
            self._reprobe_task.cancel()
        if self._state.is_warming_up:
            self._set_state(AvailabilityState.unknown())
            self._settled.set()
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Availability watchdog stopped")

    async def close(self) -> None:
        """Stop the watchdog and release the HTTP client."""
        self.stop()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "health_url": self.config.health_url,
            "watchdog_running": self._is_running,
            "sequence_running": (
                self._sequence_task is not None and not self._sequence_task.done()
            ),
            **self._state.to_dict(),
        }
