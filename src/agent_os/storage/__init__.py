"""Storage abstractions for agent-os."""

from .chroma import ChromaStore, ChromaUnavailableError, SessionStore
from .models import DevServer, Message, Session

__all__ = [
    "ChromaStore",
    "ChromaUnavailableError",
    "DevServer",
    "Message",
    "Session",
    "SessionStore",
]
