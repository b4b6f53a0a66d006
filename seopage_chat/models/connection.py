from enum import Enum
from typing import Dict, FrozenSet

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConnectionState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


LEGAL_TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.CLOSED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.OPEN,
        ConnectionState.CLOSED,
        ConnectionState.CLOSING,
    }),
    ConnectionState.OPEN: frozenset({ConnectionState.CLOSING, ConnectionState.CLOSED}),
    ConnectionState.CLOSING: frozenset({ConnectionState.CLOSED}),
}

# Close codes that mean the peer hung up on purpose
NORMAL_CLOSE_CODES = frozenset({1000, 1001})
ABNORMAL_CLOSE_CODE = 1006


class ReconnectPolicy(BaseModel):
    """Deterministic exponential backoff with a ceiling."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=0)
    base_delay_ms: int = Field(default=2000, gt=0)
    max_delay_ms: int = Field(default=30000, gt=0)

    @model_validator(mode="after")
    def _check_ceiling(self) -> "ReconnectPolicy":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self

    def delay_for(self, attempt: int) -> int:
        """Delay in milliseconds before reconnect attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        return min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
