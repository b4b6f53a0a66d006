from .callbacks import ConnectionHandlers
from .connection_manager import ConnectionManager, ConnectionSession
from .dispatcher import MessageDispatcher, Subscription
from .reconnection import ReconnectScheduler
from .transport import AiohttpSocketFactory

__all__ = [
    "ConnectionHandlers",
    "ConnectionManager",
    "ConnectionSession",
    "MessageDispatcher",
    "Subscription",
    "ReconnectScheduler",
    "AiohttpSocketFactory"
]
