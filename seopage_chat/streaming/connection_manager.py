"""WebSocket lifecycle for chat conversations.

One ``ConnectionSession`` per conversation id owns the socket, its state,
the reconnect scheduler and every timer. ``ConnectionManager`` creates,
looks up and tears down sessions; nothing else holds the raw socket.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, urlencode

import aiohttp

from ..config import settings
from ..exceptions import (
    ConnectionClosedError,
    ConnectionFailedError,
    ConnectionStateError,
    ConnectionTimeoutError,
    HeartbeatError,
    MissingConversationError,
    MissingTokenError,
    ReconnectExhaustedError,
)
from ..models.connection import (
    ABNORMAL_CLOSE_CODE,
    LEGAL_TRANSITIONS,
    NORMAL_CLOSE_CODES,
    ConnectionState,
    ReconnectPolicy,
)
from ..models.frames import ChatFrame, DomainInfoFrame, HeartbeatFrame, OutboundFrame, OutboundMessage
from ..monitoring import metrics
from ..storage.kv_store import KeyValueStore
from ..storage.resume_cursor import ResumeCursor
from .callbacks import ConnectionHandlers, notify
from .dispatcher import MessageDispatcher
from .reconnection import ReconnectScheduler, Sleep
from .transport import AiohttpSocketFactory, SocketFactory

logger = logging.getLogger(__name__)

SEND_ERRORS = (ConnectionError, aiohttp.ClientError, RuntimeError)


def _consume_exception(future: asyncio.Future) -> None:
    # Nobody may be awaiting the open-future; mark its exception retrieved
    if not future.cancelled():
        future.exception()


class ConnectionSession:
    def __init__(
        self,
        conversation_id: str,
        token: str,
        domain: Optional[str],
        *,
        url_builder: Callable[[], str],
        socket_factory: SocketFactory,
        policy: ReconnectPolicy,
        connect_timeout: float,
        heartbeat_interval: Optional[float],
        handlers: ConnectionHandlers,
        sleep: Sleep = asyncio.sleep,
        cursor: Optional[ResumeCursor] = None,
        on_teardown: Optional[Callable[["ConnectionSession"], None]] = None,
    ):
        self.conversation_id = conversation_id
        self.token = token
        self.domain = domain
        self.handlers = handlers
        self.connect_timeout = connect_timeout
        self.heartbeat_interval = heartbeat_interval
        self.auto_reconnect = True

        self._url_builder = url_builder
        self._socket_factory = socket_factory
        self._cursor = cursor
        self._on_teardown = on_teardown

        self._state = ConnectionState.CLOSED
        self._socket: Any = None
        self._generation = 0
        self._closed_by_caller = False
        self._terminal_reported = False
        self._torn_down = False
        self.last_error: Optional[BaseException] = None

        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

        self.reconnects = ReconnectScheduler(policy, sleep)
        self.dispatcher = MessageDispatcher(
            conversation_id,
            on_error=handlers.on_error,
            on_delivered=self._remember_cursor,
        )
        self.subscription = (
            self.dispatcher.subscribe(handlers.on_frame) if handlers.on_frame else None
        )

        self.created_at = datetime.now()
        self.connect_started_at: Optional[datetime] = None
        self.connected_at: Optional[datetime] = None
        self.heartbeats_sent = 0
        self.opened = self._new_open_future()

    # State

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        return self.reconnects.attempt

    @property
    def is_reconnecting(self) -> bool:
        return self.attempt > 0 and (
            self._state is ConnectionState.CONNECTING or self.reconnects.pending
        )

    @property
    def is_active(self) -> bool:
        """Connecting, open, or waiting on a backoff timer."""
        if self._closed_by_caller or self._torn_down:
            return False
        return self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN) or self.reconnects.pending

    @property
    def last_heartbeat_at(self) -> Optional[datetime]:
        return self.dispatcher.last_heartbeat_at

    def _set_state(self, target: ConnectionState) -> None:
        current = self._state
        if target is current:
            return
        if target not in LEGAL_TRANSITIONS[current]:
            raise ConnectionStateError(current, target)
        if current is ConnectionState.OPEN:
            metrics.active_sessions.dec()
        if target is ConnectionState.OPEN:
            metrics.active_sessions.inc()
        self._state = target
        logger.debug(f"{self.conversation_id}: {current.value} -> {target.value}")

    def _new_open_future(self) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        return future

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed_by_caller

    # Establishment

    def start(self) -> asyncio.Future:
        self._begin_establish()
        return self.opened

    def _begin_establish(self) -> None:
        if self._closed_by_caller or self._torn_down:
            return
        self._set_state(ConnectionState.CONNECTING)
        self._generation += 1
        self.connect_started_at = datetime.now()
        self._connect_task = asyncio.create_task(self._handshake(self._generation))

    async def _handshake(self, generation: int) -> None:
        url = self._url_builder()
        logger.info(f"Opening WebSocket for {self.conversation_id} (attempt {self.attempt})")

        try:
            socket = await asyncio.wait_for(self._socket_factory(url), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._on_handshake_failed(
                generation, ConnectionTimeoutError(self.conversation_id, self.connect_timeout)
            )
            return
        except Exception as e:
            await self._on_handshake_failed(
                generation, ConnectionFailedError(self.conversation_id, str(e) or type(e).__name__, e)
            )
            return

        if not self._is_current(generation):
            # Caller went away while the handshake was finishing
            await self._close_socket(socket)
            return

        self._socket = socket
        self._set_state(ConnectionState.OPEN)
        self.reconnects.reset()
        self.connected_at = datetime.now()
        self.last_error = None
        metrics.connection_attempts.labels(outcome="success").inc()
        logger.info(f"WebSocket open for {self.conversation_id}")

        if self.domain:
            await self._send_frame(DomainInfoFrame.for_domain(self.conversation_id, self.domain))

        self._reader_task = asyncio.create_task(self._read_loop(socket, generation))
        if self.heartbeat_interval:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(socket, generation))

        await notify(self.handlers.on_open)
        if not self.opened.done():
            self.opened.set_result(None)

    async def _on_handshake_failed(self, generation: int, error: ConnectionFailedError) -> None:
        if not self._is_current(generation):
            return
        outcome = "timeout" if isinstance(error, ConnectionTimeoutError) else "error"
        metrics.connection_attempts.labels(outcome=outcome).inc()
        logger.warning(str(error))

        self.last_error = error
        self._set_state(ConnectionState.CLOSED)
        await self._after_loss(error)

    # Running connection

    async def _read_loop(self, socket: Any, generation: int) -> None:
        error: Optional[BaseException] = None
        try:
            async for msg in socket:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self.dispatcher.feed(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = socket.exception()
                    logger.warning(f"Socket error on {self.conversation_id}: {error}")
                    break
        except (aiohttp.ClientError, OSError) as e:
            error = e
            logger.warning(f"Socket read failed on {self.conversation_id}: {e}")

        code = socket.close_code or ABNORMAL_CLOSE_CODE
        cause = ConnectionFailedError(self.conversation_id, f"closed with code {code}", error)
        await self._handle_close(generation, code, cause)

    async def _heartbeat_loop(self, socket: Any, generation: int) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if not self._is_current(generation):
                return
            try:
                await socket.send_str(HeartbeatFrame().to_wire())
            except SEND_ERRORS as e:
                logger.warning(f"Heartbeat failed on {self.conversation_id}: {e}")
                await self._handle_close(generation, ABNORMAL_CLOSE_CODE, HeartbeatError(self.conversation_id))
                return
            self.heartbeats_sent += 1
            metrics.heartbeats.labels(direction="sent").inc()

    async def _handle_close(self, generation: int, code: int, error: BaseException) -> None:
        if not self._is_current(generation):
            return
        # Invalidate every other callback still bound to this socket
        self._generation += 1

        self._cancel(self._heartbeat_task)
        self._cancel(self._reader_task)
        socket, self._socket = self._socket, None
        if socket is not None:
            await self._close_socket(socket)

        self._set_state(ConnectionState.CLOSED)
        self.connected_at = None
        metrics.close_events.labels(code=str(code)).inc()
        await notify(self.handlers.on_close, code)

        if code in NORMAL_CLOSE_CODES:
            logger.info(f"WebSocket for {self.conversation_id} closed normally ({code})")
            await self._teardown()
            if not self.opened.done():
                self.opened.set_exception(ConnectionClosedError(self.conversation_id))
            return

        logger.warning(f"WebSocket for {self.conversation_id} closed abnormally ({code})")
        self.last_error = error
        await self._after_loss(error)

    async def _after_loss(self, error: BaseException) -> None:
        if not self.auto_reconnect:
            await self._give_up(error)
            return

        delay_ms = self.reconnects.schedule(self._begin_establish, self.conversation_id)
        if delay_ms is None:
            await self._give_up(
                ReconnectExhaustedError(self.conversation_id, self.attempt, error)
            )
            return

        metrics.reconnects_scheduled.inc()
        await notify(self.handlers.on_reconnecting, self.attempt, delay_ms)

    async def _give_up(self, error: BaseException) -> None:
        if self._terminal_reported:
            return
        self._terminal_reported = True
        logger.error(f"Max retries reached for {self.conversation_id}. Giving up: {error}")

        await self._teardown()
        await notify(self.handlers.on_error, error)
        if not self.opened.done():
            self.opened.set_exception(error)

    # Outbound

    async def send(self, content: str, message_id: Optional[str] = None) -> bool:
        if self._state is not ConnectionState.OPEN:
            return False
        return await self._send_frame(OutboundMessage(content=content, message_id=message_id))

    async def _send_frame(self, frame: OutboundFrame) -> bool:
        socket = self._socket
        if socket is None:
            return False
        try:
            await socket.send_str(frame.to_wire())
            return True
        except SEND_ERRORS as e:
            logger.warning(f"Send failed on {self.conversation_id}: {e}")
            return False

    # Teardown

    async def disconnect(self) -> None:
        if self._closed_by_caller:
            return
        self._closed_by_caller = True
        self._generation += 1

        was_open = self._state is ConnectionState.OPEN
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            self._set_state(ConnectionState.CLOSING)

        await self._teardown(close_message=b"Normal closure")
        self._set_state(ConnectionState.CLOSED)
        self.reconnects.reset()
        self.connected_at = None

        if not self.opened.done():
            self.opened.set_exception(ConnectionClosedError(self.conversation_id))
        logger.info(f"Disconnected {self.conversation_id}")

        if was_open:
            await notify(self.handlers.on_close, 1000)

    async def reconnect(self) -> None:
        """Drop the current socket and re-establish right away with the attempt counter reset."""
        if self._closed_by_caller or self._torn_down:
            raise ConnectionStateError(self._state, ConnectionState.CONNECTING)

        self.reconnects.cancel()
        self.reconnects.reset()
        self._terminal_reported = False
        self._generation += 1

        self._cancel(self._connect_task)
        self._cancel(self._heartbeat_task)
        self._cancel(self._reader_task)
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            self._set_state(ConnectionState.CLOSING)
        socket, self._socket = self._socket, None
        if socket is not None:
            await self._close_socket(socket)
        self._set_state(ConnectionState.CLOSED)

        if self.opened.done():
            self.opened = self._new_open_future()
        self._begin_establish()
        await asyncio.shield(self.opened)

    async def set_auto_reconnect(self, enabled: bool) -> None:
        self.auto_reconnect = enabled
        if enabled or not self.reconnects.pending:
            return
        self.reconnects.cancel()
        await self._teardown()
        if not self.opened.done():
            self.opened.set_exception(ConnectionClosedError(self.conversation_id))

    async def _teardown(self, close_message: bytes = b"") -> None:
        self.reconnects.cancel()
        self._cancel(self._connect_task)
        self._cancel(self._heartbeat_task)
        self._cancel(self._reader_task)

        socket, self._socket = self._socket, None
        if socket is not None:
            await self._close_socket(socket, message=close_message)

        if not self._torn_down:
            self._torn_down = True
            if self._on_teardown is not None:
                self._on_teardown(self)

    async def _close_socket(self, socket: Any, message: bytes = b"") -> None:
        try:
            await socket.close(code=1000, message=message)
        except SEND_ERRORS as e:
            logger.debug(f"Ignoring close failure on {self.conversation_id}: {e}")

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _remember_cursor(self, frame: ChatFrame) -> None:
        if self._cursor is not None and frame.timestamp is not None:
            self._cursor.record(self.conversation_id, frame.timestamp)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "state": self._state.value,
            "reconnect_attempts": self.attempt,
            "reconnecting": self.is_reconnecting,
            "max_reconnect_attempts": self.reconnects.policy.max_attempts,
            "auto_reconnect": self.auto_reconnect,
            "created_at": self.created_at,
            "connected_at": self.connected_at,
            "uptime": datetime.now() - self.connected_at if self.connected_at else None,
            "last_heartbeat_at": self.last_heartbeat_at,
            "heartbeats_sent": self.heartbeats_sent,
            "frames_delivered": self.dispatcher.frames_delivered,
            "parse_errors": self.dispatcher.parse_errors,
        }


class ConnectionManager:
    """Owns at most one live session per conversation id."""

    def __init__(
        self,
        ws_base_url: Optional[str] = None,
        *,
        socket_factory: Optional[SocketFactory] = None,
        policy: Optional[ReconnectPolicy] = None,
        connect_timeout: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        store: Optional[KeyValueStore] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.ws_base_url = (ws_base_url or settings.CHAT_WS_URL).rstrip("/")
        self.socket_factory = socket_factory or AiohttpSocketFactory()
        self.policy = policy or settings.reconnect_policy()
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT_SECONDS
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None else settings.HEARTBEAT_INTERVAL_SECONDS
        )
        self.cursor = ResumeCursor(store) if store is not None else None
        self._sleep = sleep
        self.sessions: Dict[str, ConnectionSession] = {}

    def build_url(self, conversation_id: str, token: str, domain: Optional[str] = None) -> str:
        params = {"token": token}
        if self.cursor is not None:
            params.update(self.cursor.query_params(conversation_id))
        if domain:
            params["domain"] = domain
        return f"{self.ws_base_url}/ws/chat/{quote(conversation_id, safe='')}?{urlencode(params)}"

    async def connect(
        self,
        conversation_id: str,
        token: Optional[str],
        domain: Optional[str] = None,
        handlers: Optional[ConnectionHandlers] = None,
    ) -> ConnectionSession:
        """Resolve once the conversation's socket is open.

        Raises ``MissingTokenError`` before any socket is created when no
        token is given. A second call while a session is connecting, open or
        backing off joins that session instead of opening another socket.
        Raises the terminal transport error once reconnects are exhausted.
        """
        if not token:
            raise MissingTokenError()
        if not conversation_id:
            raise MissingConversationError()

        existing = self.sessions.get(conversation_id)
        if existing is not None and existing.is_active:
            logger.info(f"WebSocket for {conversation_id} already connecting or connected, skipping")
            await asyncio.shield(existing.opened)
            return existing

        session = ConnectionSession(
            conversation_id,
            token,
            domain,
            url_builder=lambda: self.build_url(conversation_id, token, domain),
            socket_factory=self.socket_factory,
            policy=self.policy,
            connect_timeout=self.connect_timeout,
            heartbeat_interval=self.heartbeat_interval,
            handlers=handlers or ConnectionHandlers(),
            sleep=self._sleep,
            cursor=self.cursor,
            on_teardown=self._forget,
        )
        self.sessions[conversation_id] = session
        await asyncio.shield(session.start())
        return session

    def _forget(self, session: ConnectionSession) -> None:
        if self.sessions.get(session.conversation_id) is session:
            del self.sessions[session.conversation_id]
            logger.debug(f"Released session {session.conversation_id}")

    def get_session(self, conversation_id: str) -> Optional[ConnectionSession]:
        return self.sessions.get(conversation_id)

    def state(self, conversation_id: str) -> ConnectionState:
        session = self.sessions.get(conversation_id)
        return session.state if session else ConnectionState.CLOSED

    async def send(self, conversation_id: str, content: str, message_id: Optional[str] = None) -> bool:
        session = self.sessions.get(conversation_id)
        if session is None:
            return False
        return await session.send(content, message_id)

    async def disconnect(self, conversation_id: str) -> None:
        session = self.sessions.get(conversation_id)
        if session is not None:
            await session.disconnect()

    async def disconnect_all(self) -> None:
        for session in list(self.sessions.values()):
            await session.disconnect()

    async def reconnect(self, conversation_id: str) -> bool:
        session = self.sessions.get(conversation_id)
        if session is None:
            logger.warning(f"No session to reconnect for {conversation_id}")
            return False
        await session.reconnect()
        return True

    async def set_auto_reconnect(self, conversation_id: str, enabled: bool) -> None:
        session = self.sessions.get(conversation_id)
        if session is not None:
            await session.set_auto_reconnect(enabled)

    def get_connection_stats(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(conversation_id)
        return session.get_stats() if session else None

    def get_all_stats(self) -> Dict[str, Any]:
        connected = sum(1 for s in self.sessions.values() if s.state is ConnectionState.OPEN)
        return {
            "total_connections": len(self.sessions),
            "connected": connected,
            "disconnected": len(self.sessions) - connected,
            "connections": {cid: s.get_stats() for cid, s in self.sessions.items()},
        }

    async def close(self) -> None:
        await self.disconnect_all()
        close = getattr(self.socket_factory, "close", None)
        if close is not None:
            await close()
