"""aiohttp session ownership and the socket factory used by ConnectionManager."""

import logging
from typing import Awaitable, Callable, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

# Anything returning an aiohttp-compatible websocket: async iterable of
# messages with ``type``/``data``, plus ``send_str``, ``close`` and ``close_code``.
SocketFactory = Callable[[str], Awaitable["aiohttp.ClientWebSocketResponse"]]


class ClientSessionOwner:
    """Lazily opens a ClientSession, or borrows one passed in by the caller.

    Only a session created here is closed by ``close()``.
    """

    session_headers: Optional[Dict[str, str]] = None

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self.session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(headers=self.session_headers)
            self._owns_session = True
        return self.session

    async def close(self):
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()
        self.session = None


class AiohttpSocketFactory(ClientSessionOwner):
    """Opens client WebSockets on a shared aiohttp session."""

    async def __call__(self, url: str) -> aiohttp.ClientWebSocketResponse:
        session = await self._ensure_session()
        # Keepalive is our own heartbeat frame, not protocol-level pings
        return await session.ws_connect(url, heartbeat=None, autoping=True)
