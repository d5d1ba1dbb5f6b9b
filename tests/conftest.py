"""Shared fixtures: a controllable clock, a recording sleep and a mock backend."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx
import pytest


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def as_datetime(self) -> datetime:
        return datetime(2024, 1, 1) + timedelta(seconds=self.now)


class FakeSleep:
    """Records requested delays and advances the clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.clock.advance(delay)
        await asyncio.sleep(0)


class MockBackend:
    """
    Route table for httpx.MockTransport.

    Each route maps "METHOD /path" to a handler returning an httpx.Response
    (sync or async). Every received request is recorded.
    """

    def __init__(self):
        self.routes: dict[str, Callable[[httpx.Request], Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.routes[f"{method.upper()} {path}"] = handler

    def json(self, method: str, path: str, payload: Any, status_code: int = 200) -> None:
        self.add(method, path, lambda request: httpx.Response(status_code, json=payload))

    def calls(self, method: str | None = None, path: str | None = None) -> int:
        return sum(
            1
            for r in self.requests
            if (method is None or r.method == method.upper())
            and (path is None or r.url.path == path)
        )

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(f"{request.method} {request.url.path}")
        if handler is None:
            return httpx.Response(404, json={"error": "no route"})
        result = handler(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()
