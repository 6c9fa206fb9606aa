from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from store import StateStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeConnection:
    """Stands in for a Starlette WebSocket."""

    def __init__(self, fail_send: bool = False, fail_accept: bool = False) -> None:
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.accepted = False
        self.closed = False
        self.fail_send = fail_send
        self.fail_accept = fail_accept

    async def accept(self) -> None:
        if self.fail_accept:
            raise RuntimeError("handshake rejected")
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(data))

    async def receive_text(self) -> str:
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> StateStore:
    return StateStore(clock=clock)
