from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .search import CompetitorSearchResult


class FlowState(str, Enum):
    IDLE = "idle"
    PROCESSING_DOMAIN = "processing_domain"
    SEARCHING = "searching"
    CONNECTING_SOCKET = "connecting_socket"
    STREAMING = "streaming"
    FAILED = "failed"


class FlowMode(str, Enum):
    SEARCH_THEN_CONNECT = "search_then_connect"
    CONNECT_ONLY = "connect_only"


class FlowResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    domain: str
    search_result: Optional[CompetitorSearchResult] = None
    connected: bool = False
