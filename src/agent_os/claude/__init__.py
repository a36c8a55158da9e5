"""Headless agent CLI process management."""

from .events import ClientEvent, ParseError, error_event, status_event
from .process_manager import (
    ClaudeNotFoundError,
    ManagedProcessSession,
    Observer,
    ProcessManager,
    ProcessManagerError,
    PromptOptions,
    SessionNotFoundError,
    TurnInProgressError,
)
from .stream_parser import StreamParser

__all__ = [
    "ClaudeNotFoundError",
    "ClientEvent",
    "ManagedProcessSession",
    "Observer",
    "ParseError",
    "ProcessManager",
    "ProcessManagerError",
    "PromptOptions",
    "SessionNotFoundError",
    "StreamParser",
    "TurnInProgressError",
    "error_event",
    "status_event",
]
