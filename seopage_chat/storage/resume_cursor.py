import re
from datetime import datetime, timedelta
from typing import Optional, Union

from .kv_store import KeyValueStore

_DIGITS = re.compile(r"^\d+$")


def resume_key(conversation_id: str) -> str:
    return f"ws_resume_ts_{conversation_id}"


def exclusive_after(ts: str) -> str:
    """Smallest timestamp strictly after ``ts``.

    Millisecond integers get +1, ISO-8601 strings get +1ms, anything else is
    returned unchanged.
    """
    if _DIGITS.match(ts):
        return str(int(ts) + 1)
    try:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return ts
    bumped = parsed + timedelta(milliseconds=1)
    text = bumped.isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


class ResumeCursor:
    """Remembers the timestamp of the last delivered frame per conversation."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def record(self, conversation_id: str, timestamp: Union[str, int, float, None]) -> None:
        if timestamp is None or timestamp == "":
            return
        if isinstance(timestamp, float):
            timestamp = int(timestamp)
        self.store.set(resume_key(conversation_id), str(timestamp))

    def last(self, conversation_id: str) -> Optional[str]:
        value = self.store.get(resume_key(conversation_id))
        return value or None

    def query_params(self, conversation_id: str) -> dict:
        last = self.last(conversation_id)
        if not last:
            return {}
        return {"fromTs": exclusive_after(last), "exclusive": "1"}

    def clear(self, conversation_id: str) -> None:
        self.store.delete(resume_key(conversation_id))
