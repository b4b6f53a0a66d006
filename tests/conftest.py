"""Global test configuration and fixtures."""
import asyncio
import json
from collections import deque
from types import SimpleNamespace
from typing import Any, Callable, List, Optional

import pytest
from aiohttp import WSMsgType

from seopage_chat.models.connection import ReconnectPolicy
from seopage_chat.storage.kv_store import InMemoryStore
from seopage_chat.streaming.callbacks import ConnectionHandlers
from seopage_chat.streaming.connection_manager import ConnectionManager

HANG = "hang"


class FakeSocket:
    """Stands in for aiohttp.ClientWebSocketResponse."""

    def __init__(self):
        self._inbox: asyncio.Queue = asyncio.Queue()
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.closed = False
        self.fail_sends = False

    async def send_str(self, data: str) -> None:
        if self.fail_sends or self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    def push_text(self, data: str) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=WSMsgType.TEXT, data=data))

    def push_json(self, payload: Any) -> None:
        self.push_text(json.dumps(payload))

    def server_close(self, code: int) -> None:
        self.close_code = code
        self._inbox.put_nowait(None)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        if self.closed:
            return False
        self.closed = True
        if self.close_code is None:
            self.close_code = code
        self._inbox.put_nowait(None)
        return True

    def exception(self):
        return None

    def sent_json(self) -> List[dict]:
        return [json.loads(s) for s in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeSocketFactory:
    """Hands out queued outcomes: a FakeSocket, an exception to raise, or HANG."""

    def __init__(self):
        self.urls: List[str] = []
        self.sockets: List[FakeSocket] = []
        self.outcomes: deque = deque()

    def queue(self, *outcomes: Any) -> None:
        self.outcomes.extend(outcomes)

    @property
    def calls(self) -> int:
        return len(self.urls)

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        outcome = self.outcomes.popleft() if self.outcomes else FakeSocket()
        if outcome == HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome


class RecordingSleep:
    """Backoff sleep that records the requested delay and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)

    @property
    def delays_ms(self) -> List[int]:
        return [round(d * 1000) for d in self.delays]


class Recorder:
    def __init__(self):
        self.opens = 0
        self.frames: List[Any] = []
        self.errors: List[BaseException] = []
        self.closes: List[int] = []
        self.reconnecting: List[tuple] = []

    def handlers(self) -> ConnectionHandlers:
        return ConnectionHandlers(
            on_open=self._on_open,
            on_frame=self.frames.append,
            on_error=self.errors.append,
            on_close=self.closes.append,
            on_reconnecting=lambda attempt, delay: self.reconnecting.append((attempt, delay)),
        )

    def _on_open(self):
        self.opens += 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
def backoff_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def policy() -> ReconnectPolicy:
    return ReconnectPolicy(max_attempts=3, base_delay_ms=2000, max_delay_ms=15000)


@pytest.fixture
async def manager(factory, backoff_sleep, policy):
    """Connection manager wired to fakes, heartbeat disabled."""
    mgr = ConnectionManager(
        "wss://chat.test",
        socket_factory=factory,
        policy=policy,
        connect_timeout=1.0,
        heartbeat_interval=0,
        sleep=backoff_sleep,
    )
    yield mgr
    await mgr.disconnect_all()
