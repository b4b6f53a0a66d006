import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


@dataclass
class ConnectionHandlers:
    """Caller hooks for one conversation's connection.

    Each hook may be a plain function or a coroutine function.
    """

    on_open: Optional[Callback] = None
    on_frame: Optional[Callback] = None
    on_error: Optional[Callback] = None
    on_close: Optional[Callback] = None
    on_reconnecting: Optional[Callback] = None


async def notify(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # A failing subscriber must not take the connection down with it
        logger.exception(f"Callback {getattr(callback, '__name__', callback)!r} raised")
