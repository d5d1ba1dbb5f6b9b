"""Tests for the AvailabilityMonitor state machine."""

import asyncio

import httpx
import pytest

from dashlink.services.availability import (
    AvailabilityMonitor,
    AvailabilityState,
    AvailabilityStatus,
    MonitorConfig,
)


class ScriptedCheck:
    """Health check returning scripted outcomes, then a fixed default."""

    def __init__(self, outcomes: list[bool], default: bool = False):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        if self.outcomes:
            return self.outcomes.pop(0)
        return self.default


class TransitionLog:
    """Records (time, old, new) for every transition."""

    def __init__(self, clock):
        self.clock = clock
        self.entries: list[tuple[float, AvailabilityState, AvailabilityState]] = []

    def __call__(self, old: AvailabilityState, new: AvailabilityState) -> None:
        self.entries.append((self.clock.now, old, new))

    @property
    def statuses(self) -> list[AvailabilityStatus]:
        return [new.status for _, _, new in self.entries]


def make_monitor(check, clock, sleep, **config) -> AvailabilityMonitor:
    return AvailabilityMonitor(
        MonitorConfig(**config),
        check=check,
        sleep=sleep,
        now=clock.as_datetime,
    )


class TestInitialState:
    def test_starts_unknown(self, clock, fake_sleep):
        monitor = make_monitor(ScriptedCheck([]), clock, fake_sleep)

        state = monitor.current_state()

        assert state.status == AvailabilityStatus.UNKNOWN
        assert not state.is_available
        assert not state.is_warming_up

    @pytest.mark.asyncio
    async def test_successful_probe_becomes_available(self, clock, fake_sleep):
        monitor = make_monitor(ScriptedCheck([True]), clock, fake_sleep)
        log = TransitionLog(clock)
        monitor.on_transition(log)

        state = await monitor.probe()

        assert state.is_available
        assert state.last_success_at == clock.as_datetime()
        assert log.statuses == [AvailabilityStatus.PROBING, AvailabilityStatus.AVAILABLE]


class TestColdStart:
    """Progression through cold_starting to available or unavailable."""

    @pytest.mark.asyncio
    async def test_failures_reach_unavailable_on_schedule(self, clock, fake_sleep):
        monitor = make_monitor(
            ScriptedCheck([], default=False),
            clock,
            fake_sleep,
            cold_start_max_attempts=3,
            cold_start_interval=5.0,
        )
        log = TransitionLog(clock)
        monitor.on_transition(log)

        first = await monitor.probe()
        final = await monitor.wait_until_settled()

        assert first == AvailabilityState.cold_starting(1, 3)
        assert final == AvailabilityState.unavailable(3)
        assert [(t, str(new)) for t, _, new in log.entries] == [
            (0.0, "probing"),
            (0.0, "cold_starting(1/3)"),
            (5.0, "cold_starting(2/3)"),
            (10.0, "unavailable(3)"),
        ]

    @pytest.mark.asyncio
    async def test_stays_cold_starting_below_budget(self, clock):
        blocked = asyncio.Event()
        steps = 0

        async def step_sleep(delay):
            nonlocal steps
            steps += 1
            if steps >= 4:
                await blocked.wait()

        check = ScriptedCheck([], default=False)
        monitor = AvailabilityMonitor(
            MonitorConfig(cold_start_max_attempts=5),
            check=check,
            sleep=step_sleep,
        )

        await monitor.probe()
        await asyncio.sleep(0.01)
        state = monitor.current_state()

        assert check.calls == 4
        assert state == AvailabilityState.cold_starting(4, 5)
        assert state.is_warming_up
        monitor.stop()

    @pytest.mark.asyncio
    async def test_success_mid_sequence_becomes_available(self, clock, fake_sleep):
        monitor = make_monitor(
            ScriptedCheck([False, False, True]),
            clock,
            fake_sleep,
            cold_start_max_attempts=3,
        )
        log = TransitionLog(clock)
        monitor.on_transition(log)

        await monitor.probe()
        final = await monitor.wait_until_settled()

        assert final.is_available
        assert log.statuses == [
            AvailabilityStatus.PROBING,
            AvailabilityStatus.COLD_STARTING,
            AvailabilityStatus.COLD_STARTING,
            AvailabilityStatus.AVAILABLE,
        ]

    @pytest.mark.asyncio
    async def test_single_attempt_budget_goes_straight_to_unavailable(
        self, clock, fake_sleep
    ):
        monitor = make_monitor(
            ScriptedCheck([False]), clock, fake_sleep, cold_start_max_attempts=1
        )

        state = await monitor.probe()

        assert state == AvailabilityState.unavailable(1)

    @pytest.mark.asyncio
    async def test_extended_budget(self, clock, fake_sleep):
        check = ScriptedCheck([], default=False)
        monitor = make_monitor(
            check, clock, fake_sleep, cold_start_max_attempts=18, cold_start_interval=5.0
        )

        await monitor.probe()
        final = await monitor.wait_until_settled()

        assert final == AvailabilityState.unavailable(18)
        assert check.calls == 18
        assert clock.now == 85.0

    @pytest.mark.asyncio
    async def test_probe_restarts_sequence_from_first_attempt(self, clock):
        never = asyncio.Event()

        async def parked_sleep(delay):
            await never.wait()

        monitor = AvailabilityMonitor(
            MonitorConfig(cold_start_max_attempts=5),
            check=ScriptedCheck([], default=False),
            sleep=parked_sleep,
        )
        log = TransitionLog(clock)
        monitor.on_transition(log)

        await monitor.probe()
        first_sequence = monitor._sequence_task
        state = await monitor.probe()
        await asyncio.sleep(0.01)

        assert state == AvailabilityState.cold_starting(1, 5)
        assert first_sequence.cancelled()
        assert [str(new) for _, _, new in log.entries] == [
            "probing",
            "cold_starting(1/5)",
            "probing",
            "cold_starting(1/5)",
        ]
        monitor.stop()

    @pytest.mark.asyncio
    async def test_wait_until_settled_times_out_without_raising(self, clock):
        never = asyncio.Event()

        async def parked_sleep(delay):
            await never.wait()

        monitor = AvailabilityMonitor(
            check=ScriptedCheck([], default=False), sleep=parked_sleep
        )

        await monitor.probe()
        state = await monitor.wait_until_settled(timeout=0.05)

        assert state.status == AvailabilityStatus.COLD_STARTING
        monitor.stop()


class TestUnavailable:
    @pytest.mark.asyncio
    async def test_no_autonomous_retry_once_unavailable(self, clock, fake_sleep):
        check = ScriptedCheck([False], default=True)
        monitor = make_monitor(check, clock, fake_sleep, cold_start_max_attempts=1)
        await monitor.probe()

        state = await monitor.poll()
        monitor.notify_failure()
        await asyncio.sleep(0)

        assert state.is_unavailable
        assert check.calls == 1

    @pytest.mark.asyncio
    async def test_manual_probe_recovers(self, clock, fake_sleep):
        check = ScriptedCheck([False, True])
        monitor = make_monitor(check, clock, fake_sleep, cold_start_max_attempts=1)
        await monitor.probe()

        state = await monitor.probe()

        assert state.is_available


class TestWatchdog:
    """Background polling once available."""

    @pytest.mark.asyncio
    async def test_poll_from_unknown_probes(self, clock, fake_sleep):
        monitor = make_monitor(ScriptedCheck([True]), clock, fake_sleep)

        state = await monitor.poll()

        assert state.is_available

    @pytest.mark.asyncio
    async def test_successful_poll_refreshes_without_transition(self, clock, fake_sleep):
        monitor = make_monitor(ScriptedCheck([True, True]), clock, fake_sleep)
        await monitor.probe()
        log = TransitionLog(clock)
        monitor.on_transition(log)

        clock.advance(60)
        state = await monitor.poll()

        assert state.is_available
        assert state.last_success_at == clock.as_datetime()
        assert log.entries == []

    @pytest.mark.asyncio
    async def test_single_failure_from_available_is_a_blip(self, clock, fake_sleep):
        monitor = make_monitor(
            ScriptedCheck([True, False, True]),
            clock,
            fake_sleep,
            cold_start_max_attempts=1,
        )
        await monitor.probe()
        log = TransitionLog(clock)
        monitor.on_transition(log)

        state = await monitor.poll()

        assert state.is_available
        assert log.statuses == [AvailabilityStatus.PROBING, AvailabilityStatus.AVAILABLE]

    @pytest.mark.asyncio
    async def test_failure_from_available_restarts_cold_start(self, clock, fake_sleep):
        monitor = make_monitor(
            ScriptedCheck([True, False, False, True]),
            clock,
            fake_sleep,
            cold_start_max_attempts=3,
        )
        await monitor.probe()
        log = TransitionLog(clock)
        monitor.on_transition(log)

        state = await monitor.poll()
        final = await monitor.wait_until_settled()

        assert state == AvailabilityState.cold_starting(1, 3)
        assert final.is_available
        assert AvailabilityStatus.UNAVAILABLE not in log.statuses

    @pytest.mark.asyncio
    async def test_poll_ignores_running_sequence(self, clock):
        never = asyncio.Event()

        async def parked_sleep(delay):
            await never.wait()

        check = ScriptedCheck([], default=False)
        monitor = AvailabilityMonitor(check=check, sleep=parked_sleep)
        await monitor.probe()

        state = await monitor.poll()

        assert state.status == AvailabilityStatus.COLD_STARTING
        assert check.calls == 1
        monitor.stop()

    @pytest.mark.asyncio
    async def test_start_registers_watchdog_job(self, clock, fake_sleep):
        monitor = make_monitor(
            ScriptedCheck([True]), clock, fake_sleep, healthy_poll_interval=30
        )

        monitor.start()
        job = monitor.scheduler.get_job("availability_watchdog")
        status = monitor.get_status()
        monitor.stop()

        assert job is not None
        assert status["watchdog_running"] is True
        assert monitor.get_status()["watchdog_running"] is False

    @pytest.mark.asyncio
    async def test_start_checks_immediately_when_unknown(self, clock, fake_sleep):
        """The first watchdog tick does not wait a full healthy interval."""
        check = ScriptedCheck([True])
        monitor = make_monitor(check, clock, fake_sleep, healthy_poll_interval=60)

        monitor.start()
        await asyncio.sleep(0.2)
        state = monitor.current_state()
        monitor.stop()

        assert check.calls == 1
        assert state.is_available

    @pytest.mark.asyncio
    async def test_stop_during_cold_start_resets_to_unknown(self, clock):
        never = asyncio.Event()

        async def parked_sleep(delay):
            await never.wait()

        check = ScriptedCheck([], default=False)
        monitor = AvailabilityMonitor(check=check, sleep=parked_sleep)
        await monitor.probe()
        waiter = asyncio.create_task(monitor.wait_until_settled())
        await asyncio.sleep(0.01)

        monitor.stop()
        released = await asyncio.wait_for(waiter, 1)

        assert released.status == AvailabilityStatus.UNKNOWN
        assert monitor.current_state().status == AvailabilityStatus.UNKNOWN

        # Polling works again instead of treating the old sequence as running
        state = await monitor.poll()
        assert check.calls == 2
        assert state.status == AvailabilityStatus.COLD_STARTING
        monitor.stop()


class TestObservers:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, clock, fake_sleep):
        monitor = make_monitor(ScriptedCheck([True]), clock, fake_sleep)
        seen = []

        def broken(old, new):
            raise RuntimeError("boom")

        monitor.on_transition(broken)
        monitor.on_transition(lambda old, new: seen.append((old.status, new.status)))

        state = await monitor.probe()

        assert state.is_available
        assert seen == [
            (AvailabilityStatus.UNKNOWN, AvailabilityStatus.PROBING),
            (AvailabilityStatus.PROBING, AvailabilityStatus.AVAILABLE),
        ]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, clock, fake_sleep):
        monitor = make_monitor(ScriptedCheck([True]), clock, fake_sleep)
        seen = []
        unsubscribe = monitor.on_transition(lambda old, new: seen.append(new))

        unsubscribe()
        await monitor.probe()

        assert seen == []


class TestHealthCheck:
    """The built-in HTTP health check."""

    @pytest.mark.asyncio
    async def test_http_check_success(self, backend):
        backend.json("GET", "/health", {"status": "ok"})
        monitor = AvailabilityMonitor(
            MonitorConfig(base_url="http://backend.test/"),
            transport=backend.transport,
        )

        state = await monitor.probe()

        assert state.is_available
        assert str(backend.requests[0].url) == "http://backend.test/health"
        assert backend.requests[0].headers["Cache-Control"] == "no-cache"
        await monitor.close()

    @pytest.mark.asyncio
    async def test_http_error_status_counts_as_failure(self, backend):
        backend.add("GET", "/health", lambda request: httpx.Response(503))
        monitor = AvailabilityMonitor(
            MonitorConfig(base_url="http://backend.test", cold_start_max_attempts=1),
            transport=backend.transport,
        )

        state = await monitor.probe()

        assert state.is_unavailable
        await monitor.close()

    @pytest.mark.asyncio
    async def test_transport_error_counts_as_failure(self, backend):
        def refuse(request):
            raise httpx.ConnectError("refused")

        backend.add("GET", "/health", refuse)
        monitor = AvailabilityMonitor(
            MonitorConfig(base_url="http://backend.test", cold_start_max_attempts=1),
            transport=backend.transport,
        )

        state = await monitor.probe()

        assert state.is_unavailable
        await monitor.close()

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        async def hang():
            await asyncio.sleep(10)
            return True

        monitor = AvailabilityMonitor(
            MonitorConfig(probe_timeout=0.05, cold_start_max_attempts=1), check=hang
        )

        state = await monitor.probe()

        assert state.is_unavailable
