"""Error taxonomy for the chat connection core."""
from typing import Any, Optional


class SeoPageChatError(Exception):
    """Base class for every error raised by seopage_chat."""


# Precondition errors: fatal, raised before any I/O, never retried

class PreconditionError(SeoPageChatError):
    pass


class InvalidDomainError(PreconditionError):
    def __init__(self, raw_input: str, reason: str = "Invalid domain format"):
        self.raw_input = raw_input
        self.reason = reason
        super().__init__(f"{reason}: {raw_input!r}")


class MissingTokenError(PreconditionError):
    def __init__(self, message: str = "Missing access token, please log in first"):
        super().__init__(message)


class MissingConversationError(PreconditionError):
    def __init__(self, message: str = "A conversation id is required"):
        super().__init__(message)


# Transport errors: drive the reconnect policy

class TransportError(SeoPageChatError):
    pass


class ConnectionFailedError(TransportError):
    def __init__(self, conversation_id: str, reason: str, cause: Optional[BaseException] = None):
        self.conversation_id = conversation_id
        self.reason = reason
        self.cause = cause
        super().__init__(f"Connection failed for {conversation_id}: {reason}")


class ConnectionTimeoutError(ConnectionFailedError):
    def __init__(self, conversation_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(conversation_id, f"connection timed out after {timeout:.1f}s")


class HeartbeatError(TransportError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Heartbeat send failed for {conversation_id}")


class ReconnectExhaustedError(TransportError):
    def __init__(self, conversation_id: str, attempts: int, last_error: Optional[BaseException] = None):
        self.conversation_id = conversation_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Gave up reconnecting {conversation_id} after {attempts} attempts"
        )


class ConnectionClosedError(TransportError):
    """The caller disconnected while an open was still pending."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Connection {conversation_id} was closed before it opened")


# Protocol errors: reported per frame, the connection stays up

class ProtocolError(SeoPageChatError):
    pass


class FrameParseError(ProtocolError):
    def __init__(self, raw: Any, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Could not parse frame: {reason}")


# Backend-signaled errors

class BackendError(SeoPageChatError):
    pass


class SearchRejectedError(BackendError):
    def __init__(self, result: Any):
        self.result = result
        self.error_code = getattr(result, "error_code", None)
        super().__init__(getattr(result, "error", None) or "Competitor search failed")


# State errors

class ConnectionStateError(SeoPageChatError):
    def __init__(self, current: Any, target: Any):
        self.current = current
        self.target = target
        super().__init__(f"Illegal connection state transition {current} -> {target}")


class FlowStateError(SeoPageChatError):
    pass


class FlowError(SeoPageChatError):
    """Single aggregated error raised by FlowOrchestrator.start()."""

    def __init__(self, stage: Any, cause: BaseException):
        self.stage = stage
        self.cause = cause
        stage_name = getattr(stage, "value", stage)
        super().__init__(f"Flow failed during {stage_name}: {cause}")
