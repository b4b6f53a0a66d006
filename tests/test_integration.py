"""End-to-end runs against a real aiohttp WebSocket server."""
import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from seopage_chat.exceptions import ConnectionFailedError, ReconnectExhaustedError
from seopage_chat.models.connection import ConnectionState, ReconnectPolicy
from seopage_chat.models.frames import FrameType
from seopage_chat.streaming.connection_manager import ConnectionManager

from .conftest import Recorder, wait_until

SCRIPT = [
    {"type": "heartbeat", "timestamp": 1},
    {"type": "Info", "content": "Starting analysis", "step": "INIT", "timestamp": 1700000000000},
    {"type": "Codes", "content": {"resultId": "r-1"}, "timestamp": 1700000000005},
]


class ChatBackend:
    def __init__(self):
        self.connections = 0
        self.queries = []
        self.inbound = []
        self.close_first_with = None

    async def handle(self, request: web.Request) -> web.StreamResponse:
        if request.query.get("token") != "tok":
            return web.Response(status=401)

        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections += 1
        self.queries.append(dict(request.query))

        if self.close_first_with and self.connections == 1:
            await ws.close(code=self.close_first_with)
            return ws

        for frame in SCRIPT:
            await ws.send_json(frame)

        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.inbound.append(msg.json())
        return ws


@pytest.fixture
async def chat_backend():
    backend = ChatBackend()
    app = web.Application()
    app.router.add_get("/ws/chat/{conversation_id}", backend.handle)
    server = TestServer(app)
    await server.start_server()
    backend.ws_url = str(server.make_url("")).replace("http://", "ws://", 1)
    yield backend
    await server.close()


def make_manager(url, **kwargs):
    kwargs.setdefault("policy", ReconnectPolicy(max_attempts=3, base_delay_ms=10, max_delay_ms=50))
    kwargs.setdefault("connect_timeout", 2.0)
    kwargs.setdefault("heartbeat_interval", 0)
    return ConnectionManager(url, **kwargs)


@pytest.mark.asyncio
async def test_streams_frames_and_announces_domain(chat_backend):
    manager = make_manager(chat_backend.ws_url, heartbeat_interval=0.05)
    recorder = Recorder()
    try:
        session = await manager.connect("conv-1", "tok", domain="seopage.ai", handlers=recorder.handlers())
        await wait_until(lambda: len(recorder.frames) == 2)
        await wait_until(lambda: any(m["type"] == "heartbeat" for m in chat_backend.inbound))

        assert [f.type for f in recorder.frames] == [FrameType.INFO, FrameType.CODES]
        assert recorder.frames[1].result_id == "r-1"
        assert session.last_heartbeat_at is not None
        assert chat_backend.queries[0] == {"token": "tok", "domain": "seopage.ai"}
        assert chat_backend.inbound[0]["type"] == "domain_info"
        assert chat_backend.inbound[0]["domain"] == "seopage.ai"

        assert await manager.send("conv-1", "make it blue") is True
        await wait_until(lambda: any(m["type"] == "message" for m in chat_backend.inbound))
    finally:
        await manager.close()

    assert manager.state("conv-1") is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_abnormal_server_close_reconnects(chat_backend):
    chat_backend.close_first_with = 4000
    manager = make_manager(chat_backend.ws_url)
    recorder = Recorder()
    try:
        await manager.connect("conv-1", "tok", handlers=recorder.handlers())
        await wait_until(lambda: len(recorder.frames) == 2)

        assert chat_backend.connections == 2
        assert recorder.closes == [4000]
        assert recorder.reconnecting == [(1, 10)]
        assert recorder.errors == []
        assert manager.state("conv-1") is ConnectionState.OPEN
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_normal_server_close_stays_closed(chat_backend):
    chat_backend.close_first_with = 1000
    manager = make_manager(chat_backend.ws_url)
    recorder = Recorder()
    try:
        await manager.connect("conv-1", "tok", handlers=recorder.handlers())
        await wait_until(lambda: recorder.closes)
        await asyncio.sleep(0.05)

        assert recorder.closes == [1000]
        assert recorder.reconnecting == []
        assert chat_backend.connections == 1
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_rejected_handshake_gives_up(chat_backend):
    manager = make_manager(chat_backend.ws_url, policy=ReconnectPolicy(max_attempts=1, base_delay_ms=10, max_delay_ms=10))
    recorder = Recorder()
    try:
        with pytest.raises(ReconnectExhaustedError) as info:
            await manager.connect("conv-1", "wrong", handlers=recorder.handlers())
    finally:
        await manager.close()

    assert isinstance(info.value.last_error, ConnectionFailedError)
    assert recorder.reconnecting == [(1, 10)]
    assert len(recorder.errors) == 1
    assert chat_backend.connections == 0
