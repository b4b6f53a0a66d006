from .connection import ConnectionState, ReconnectPolicy, NORMAL_CLOSE_CODES
from .frames import ChatFrame, FrameType, OutboundMessage, HeartbeatFrame, DomainInfoFrame
from .search import CompetitorSearchResult, SearchOutcome
from .flow import FlowState, FlowMode, FlowResult

__all__ = [
    "ConnectionState",
    "ReconnectPolicy",
    "NORMAL_CLOSE_CODES",
    "ChatFrame",
    "FrameType",
    "OutboundMessage",
    "HeartbeatFrame",
    "DomainInfoFrame",
    "CompetitorSearchResult",
    "SearchOutcome",
    "FlowState",
    "FlowMode",
    "FlowResult",
]
