"""Per-conversation state persisted between updates."""

from .manager import (
    KeyFunc,
    Session,
    SessionManager,
    chat_key,
    chat_sender_key,
    sender_key,
)
from .store import FileStore, MemoryStore, SessionStore

__all__ = [
    "FileStore",
    "KeyFunc",
    "MemoryStore",
    "Session",
    "SessionManager",
    "SessionStore",
    "chat_key",
    "chat_sender_key",
    "sender_key",
]
