from .kv_store import KeyValueStore, InMemoryStore, RedisStore
from .resume_cursor import ResumeCursor

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "ResumeCursor"
]
