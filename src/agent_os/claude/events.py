"""Client-facing events produced from an agent CLI's stream-json output."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

EventType = Literal["init", "text", "tool_start", "tool_end", "complete", "error", "status"]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ClientEvent:
    """An event broadcast to session observers.

    ``id`` is unique per event and doubles as the key of any row persisted from it,
    so handling the same event twice never writes two rows.
    """

    type: EventType
    session_id: str
    data: dict[str, Any]
    timestamp: str = field(default_factory=_timestamp)
    id: str = field(default_factory=lambda: uuid4().hex)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload())


@dataclass(slots=True)
class ParseError:
    """Signal emitted for a stream line that is not valid JSON."""

    line: str
    error: str
    type: str = "parse_error"


def status_event(session_id: str, status: str, exit_code: int | None = None) -> ClientEvent:
    data: dict[str, Any] = {"status": status}
    if exit_code is not None:
        data["exitCode"] = exit_code
    return ClientEvent(type="status", session_id=session_id, data=data)


def error_event(session_id: str, message: str) -> ClientEvent:
    return ClientEvent(type="error", session_id=session_id, data={"error": message})


__all__ = ["ClientEvent", "EventType", "ParseError", "error_event", "status_event"]
