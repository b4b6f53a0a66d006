import json

import pytest
from pydantic import ValidationError

from seopage_chat.models.connection import LEGAL_TRANSITIONS, ConnectionState, ReconnectPolicy
from seopage_chat.models.frames import (
    ChatFrame,
    DomainInfoFrame,
    FrameType,
    HeartbeatFrame,
    OutboundMessage,
)
from seopage_chat.models.search import CompetitorSearchResult, SearchOutcome


class TestReconnectPolicy:
    def test_defaults(self):
        policy = ReconnectPolicy()
        assert policy.max_attempts == 5
        assert policy.base_delay_ms == 2000
        assert policy.max_delay_ms == 30000

    def test_delays_double_until_ceiling(self):
        policy = ReconnectPolicy(max_attempts=6, base_delay_ms=2000, max_delay_ms=15000)
        assert [policy.delay_for(n) for n in range(1, 7)] == [2000, 4000, 8000, 15000, 15000, 15000]

    def test_attempt_numbers_start_at_one(self):
        with pytest.raises(ValueError):
            ReconnectPolicy().delay_for(0)

    def test_ceiling_must_cover_base(self):
        with pytest.raises(ValidationError):
            ReconnectPolicy(base_delay_ms=5000, max_delay_ms=1000)

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValidationError):
            ReconnectPolicy(max_attempts=-1)


def test_closed_only_moves_to_connecting():
    assert LEGAL_TRANSITIONS[ConnectionState.CLOSED] == {ConnectionState.CONNECTING}
    assert ConnectionState.OPEN not in LEGAL_TRANSITIONS[ConnectionState.CLOSING]


class TestChatFrame:
    def test_from_wire_keeps_raw_and_extras(self):
        data = {"type": "Info", "content": "x", "conversationId": "c1", "extra": 1}
        frame = ChatFrame.from_wire(data)

        assert frame.conversation_id == "c1"
        assert frame.raw == data
        assert frame.model_extra["extra"] == 1

    def test_missing_type_raises(self):
        with pytest.raises(ValueError):
            ChatFrame.from_wire({"content": "x"})

    def test_error_frames(self):
        assert ChatFrame.from_wire({"type": "error"}).is_error
        assert ChatFrame.from_wire({"type": "Error"}).is_error
        assert not ChatFrame.from_wire({"type": "Info"}).is_error

    def test_result_id_only_on_codes(self):
        assert ChatFrame.from_wire({"type": "Codes", "content": {"resultId": "r1"}}).result_id == "r1"
        assert ChatFrame.from_wire({"type": "Info", "content": {"resultId": "r1"}}).result_id is None

    @pytest.mark.parametrize(
        "data, title",
        [
            ({"type": "API", "step": "FIND_COMPETITORS_SEMRUSH_API"}, "Finding competitors for the website URL"),
            ({"type": "API", "step": "OTHER"}, "API Result - OTHER"),
            ({"type": "API"}, "API Result - Processing"),
            ({"type": "Agent", "step": "FIND_WEBSITE_SITEMAP_AGENT"}, "Finding website sitemap..."),
            ({"type": "Agent"}, "Finding competitors..."),
            ({"type": "Dify", "content": [1, 2, 3]}, "Competitor Analysis - 3 steps"),
            ({"type": "Codes"}, "Page Generated - Coding Finished"),
            ({"type": "Mystery"}, "Mystery Log - Processing"),
        ],
    )
    def test_display_title(self, data, title):
        assert ChatFrame.from_wire(data).display_title() == title

    def test_display_title_is_truncated(self):
        frame = ChatFrame.from_wire({"type": "API", "step": "one two three four five six seven eight nine"})
        title = frame.display_title()
        assert title.endswith("...")
        assert len(title[:-3].split(" ")) == 10


class TestOutboundFrames:
    def test_message_wire_shape(self):
        wire = json.loads(OutboundMessage(content="hi", message_id="m1").to_wire())
        assert wire["type"] == "message"
        assert wire["messageId"] == "m1"
        assert wire["timestamp"].endswith("Z")

    def test_heartbeat_uses_epoch_millis(self):
        wire = json.loads(HeartbeatFrame().to_wire())
        assert wire["type"] == "heartbeat"
        assert wire["timestamp"] > 1_600_000_000_000

    def test_domain_info(self):
        wire = json.loads(DomainInfoFrame.for_domain("c1", "seopage.ai").to_wire())
        assert wire["content"] == "Analyzing domain: seopage.ai"
        assert wire["conversationId"] == "c1"


def test_search_result_retryable_only_on_network_error():
    ok = CompetitorSearchResult(success=True, outcome=SearchOutcome.SUCCESS, competitors=("a.com",))
    net = CompetitorSearchResult(success=False, outcome=SearchOutcome.NETWORK_ERROR, error_code=1058)
    busy = CompetitorSearchResult(success=False, outcome=SearchOutcome.TASK_IN_PROGRESS, error_code=1075)

    assert not ok.retryable
    assert net.retryable
    assert not busy.retryable
