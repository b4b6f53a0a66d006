"""Sequences domain normalization, competitor search and the chat socket."""

import logging
from functools import partial
from typing import Callable, Optional

from ..config import settings
from ..exceptions import (
    FlowError,
    FlowStateError,
    MissingConversationError,
    SearchRejectedError,
    TransportError,
)
from ..models.connection import NORMAL_CLOSE_CODES, ConnectionState
from ..models.flow import FlowMode, FlowResult, FlowState
from ..models.search import CompetitorSearchResult
from ..storage.kv_store import KeyValueStore
from ..streaming.callbacks import Callback, ConnectionHandlers, notify
from ..streaming.connection_manager import ConnectionManager
from .domain_processor import DomainProcessor
from .search_gateway import SearchGateway

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

_BUSY_STATES = (FlowState.PROCESSING_DOMAIN, FlowState.SEARCHING, FlowState.CONNECTING_SOCKET)


def token_from_store(store: KeyValueStore, key: Optional[str] = None) -> TokenProvider:
    key = key or settings.ACCESS_TOKEN_KEY
    return lambda: store.get(key)


class FlowOrchestrator:
    """Drives one conversation from raw domain input to a streaming socket.

    ``start()`` walks IDLE -> PROCESSING_DOMAIN -> SEARCHING (search mode
    only) -> CONNECTING_SOCKET -> STREAMING. Any failure lands in FAILED and
    raises a single ``FlowError``. Nothing here retries; socket retries
    belong to the ConnectionManager. ``reset()`` always returns to IDLE.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        token_provider: TokenProvider,
        domain_processor: Optional[DomainProcessor] = None,
        search_gateway: Optional[SearchGateway] = None,
        mode: FlowMode = FlowMode.SEARCH_THEN_CONNECT,
        on_frame: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        on_close: Optional[Callback] = None,
        on_reconnecting: Optional[Callback] = None,
        on_competitors: Optional[Callback] = None,
        on_state_change: Optional[Callback] = None,
    ):
        if mode is FlowMode.SEARCH_THEN_CONNECT and search_gateway is None:
            raise ValueError("search mode needs a SearchGateway")

        self.connection_manager = connection_manager
        self.token_provider = token_provider
        self.domain_processor = domain_processor or DomainProcessor()
        self.search_gateway = search_gateway
        self.mode = mode

        self.on_frame = on_frame
        self.on_error = on_error
        self.on_close = on_close
        self.on_reconnecting = on_reconnecting
        self.on_competitors = on_competitors
        self.on_state_change = on_state_change

        self._state = FlowState.IDLE
        self._run_id = 0
        self.conversation_id: Optional[str] = None
        self.domain: Optional[str] = None
        self.search_result: Optional[CompetitorSearchResult] = None
        self.result: Optional[FlowResult] = None
        self.last_error: Optional[FlowError] = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def connection_state(self) -> ConnectionState:
        if not self.conversation_id:
            return ConnectionState.CLOSED
        return self.connection_manager.state(self.conversation_id)

    def _set_state(self, target: FlowState) -> None:
        previous = self._state
        if previous is target:
            return
        self._state = target
        logger.info(f"Flow {previous.value} -> {target.value}")
        if self.on_state_change is not None:
            self.on_state_change(previous, target)

    async def start(self, domain: str, conversation_id: str) -> FlowResult:
        if self._state is FlowState.STREAMING:
            if conversation_id == self.conversation_id:
                logger.info(f"Already streaming {conversation_id}, skipping start")
                return self.result
            await self.reset()
        elif self._state in _BUSY_STATES:
            raise FlowStateError(f"Flow is busy ({self._state.value})")
        elif self._state is FlowState.FAILED:
            await self.reset()

        self._run_id += 1
        run_id = self._run_id
        self.conversation_id = conversation_id
        self.last_error = None

        # Step 1: normalize
        self._set_state(FlowState.PROCESSING_DOMAIN)
        if not conversation_id:
            raise self._fail(FlowState.PROCESSING_DOMAIN, MissingConversationError())
        try:
            hostname = self.domain_processor.normalize(domain)
        except Exception as e:
            raise self._fail(FlowState.PROCESSING_DOMAIN, e)
        self.domain = hostname

        # Step 2: search
        if self.mode is FlowMode.SEARCH_THEN_CONNECT:
            self._set_state(FlowState.SEARCHING)
            try:
                search_result = await self.search_gateway.search(conversation_id, hostname)
            except Exception as e:
                self._ensure_not_reset(run_id, FlowState.SEARCHING)
                raise self._fail(FlowState.SEARCHING, e)
            self._ensure_not_reset(run_id, FlowState.SEARCHING)
            self.search_result = search_result
            if not search_result.success:
                raise self._fail(FlowState.SEARCHING, SearchRejectedError(search_result))
            await notify(self.on_competitors, list(search_result.competitors), search_result.website_id)

        # Step 3: connect
        self._set_state(FlowState.CONNECTING_SOCKET)
        handlers = ConnectionHandlers(
            on_frame=self.on_frame,
            on_error=self._on_connection_error,
            on_close=partial(self._on_connection_close, run_id),
            on_reconnecting=self.on_reconnecting,
        )
        try:
            await self.connection_manager.connect(
                conversation_id, self.token_provider(), hostname, handlers
            )
        except Exception as e:
            self._ensure_not_reset(run_id, FlowState.CONNECTING_SOCKET)
            raise self._fail(FlowState.CONNECTING_SOCKET, e)
        self._ensure_not_reset(run_id, FlowState.CONNECTING_SOCKET)

        self.result = FlowResult(
            conversation_id=conversation_id,
            domain=hostname,
            search_result=self.search_result,
            connected=True,
        )
        self._set_state(FlowState.STREAMING)
        return self.result

    def _ensure_not_reset(self, run_id: int, stage: FlowState) -> None:
        if run_id != self._run_id:
            raise FlowError(stage, FlowStateError("Flow was reset"))

    def _fail(self, stage: FlowState, cause: BaseException) -> FlowError:
        error = FlowError(stage, cause)
        self.last_error = error
        logger.error(str(error))
        self._set_state(FlowState.FAILED)
        return error

    async def _on_connection_error(self, error: BaseException) -> None:
        if self._state is FlowState.CONNECTING_SOCKET and isinstance(error, TransportError):
            # start() raises this one itself
            return
        if self._state is FlowState.STREAMING and isinstance(error, TransportError):
            self.last_error = FlowError(FlowState.STREAMING, error)
            self._set_state(FlowState.FAILED)
        await notify(self.on_error, error)

    async def _on_connection_close(self, run_id: int, code: int) -> None:
        if run_id == self._run_id and code in NORMAL_CLOSE_CODES and self._state is FlowState.STREAMING:
            logger.info(f"Server closed {self.conversation_id} with {code}, flow is idle again")
            self.result = None
            self._set_state(FlowState.IDLE)
        await notify(self.on_close, code)

    async def send(self, content: str, message_id: Optional[str] = None) -> bool:
        if self._state is not FlowState.STREAMING or not self.conversation_id:
            return False
        return await self.connection_manager.send(self.conversation_id, content, message_id)

    async def reset(self) -> None:
        self._run_id += 1
        if self.conversation_id:
            await self.connection_manager.disconnect(self.conversation_id)
        self.conversation_id = None
        self.domain = None
        self.search_result = None
        self.result = None
        self.last_error = None
        self._set_state(FlowState.IDLE)
