"""Wire models for frames exchanged over the chat WebSocket."""
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class FrameType(str, Enum):
    """Values of the ``type`` discriminator."""

    MESSAGE = "message"
    SYSTEM = "system"
    ERROR = "error"
    HEARTBEAT = "heartbeat"
    DOMAIN_INFO = "domain_info"
    INFO = "Info"
    AGENT = "Agent"
    BACKEND_ERROR = "Error"
    HTML = "Html"
    CODES = "Codes"
    CRAWLER_IMAGES = "Crawler_Images"
    CRAWLER_HEADERS = "Crawler_Headers"
    CRAWLER_FOOTERS = "Crawler_Footers"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, raw_type: str) -> "FrameType":
        try:
            return cls(raw_type)
        except ValueError:
            return cls.UNKNOWN


MAX_TITLE_WORDS = 10

_FIXED_TITLES = {
    "CompetitorsAgent": "Finding competitors...",
    "SitemapAgent": "Finding website sitemap...",
    "Html": "Code Generation - Writing HTML...",
    "Color": "Color Analysis - Page Style Detected",
    "Crawler_Images": "Image Crawling - Found Images",
    "Crawler_Headers": "Header Crawling - Found Header Links",
    "Crawler_Footers": "Footer Crawling - Found Footer Links",
    "Codes": "Page Generated - Coding Finished",
}


class ChatFrame(BaseModel):
    """One inbound frame.

    ``type`` is the closed discriminator; anything the backend sends that is
    not a known discriminator becomes ``FrameType.UNKNOWN`` with the original
    string kept in ``raw_type``. ``raw`` is the decoded JSON object exactly as
    it arrived, and unrecognised keys are kept as extra fields.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    type: FrameType
    raw_type: str
    content: Any = None
    step: Optional[Union[str, int]] = None
    id: Optional[Union[str, int]] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    timestamp: Optional[Union[str, int, float]] = None
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ChatFrame":
        raw_type = data.get("type")
        if not isinstance(raw_type, str) or not raw_type:
            raise ValueError("frame has no string 'type' discriminator")

        fields = {k: v for k, v in data.items() if k not in ("type", "raw", "raw_type")}
        fields.update(type=FrameType.from_wire(raw_type), raw_type=raw_type, raw=dict(data))
        return cls.model_validate(fields)

    @property
    def is_heartbeat(self) -> bool:
        return self.type is FrameType.HEARTBEAT

    @property
    def is_error(self) -> bool:
        return self.type in (FrameType.ERROR, FrameType.BACKEND_ERROR)

    @property
    def result_id(self) -> Optional[str]:
        """``resultId`` of a finalized ``Codes`` frame, if present."""
        if self.type is FrameType.CODES and isinstance(self.content, dict):
            return self.content.get("resultId")
        return None

    def display_title(self) -> str:
        """Short human-readable title for the step this frame reports."""
        log_type = self.raw_type
        step = self.step

        if log_type == "API":
            if step == "FIND_COMPETITORS_SEMRUSH_API":
                title = "Finding competitors for the website URL"
            else:
                title = f"API Result - {step or 'Processing'}"
        elif log_type == "Agent":
            if step == "FIND_WEBSITE_SITEMAP_AGENT":
                title = "Finding website sitemap..."
            else:
                title = "Finding competitors..."
        elif log_type == "Dify":
            items = len(self.content) if isinstance(self.content, list) else 0
            title = f"Competitor Analysis - {items} steps"
        elif log_type in _FIXED_TITLES:
            title = _FIXED_TITLES[log_type]
        else:
            title = f"{log_type} Log - Processing"

        words = title.split(" ")
        if len(words) > MAX_TITLE_WORDS:
            return " ".join(words[:MAX_TITLE_WORDS]) + "..."
        return title


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OutboundFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class OutboundMessage(OutboundFrame):
    type: Literal["message"] = "message"
    content: str
    timestamp: str = Field(default_factory=_iso_now)
    message_id: Optional[str] = Field(default=None, alias="messageId")


class HeartbeatFrame(OutboundFrame):
    type: Literal["heartbeat"] = "heartbeat"
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


class DomainInfoFrame(OutboundFrame):
    type: Literal["domain_info"] = "domain_info"
    content: str
    timestamp: str = Field(default_factory=_iso_now)
    conversation_id: str = Field(alias="conversationId")
    domain: str

    @classmethod
    def for_domain(cls, conversation_id: str, domain: str) -> "DomainInfoFrame":
        return cls(
            content=f"Analyzing domain: {domain}",
            conversation_id=conversation_id,
            domain=domain,
        )
