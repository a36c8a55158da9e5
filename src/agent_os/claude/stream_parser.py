"""Incremental NDJSON parser for agent CLI stream-json output."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from .events import ClientEvent, ParseError

logger = logging.getLogger(__name__)

EventHandler = Callable[[ClientEvent], None]
ParseErrorHandler = Callable[[ParseError], None]


class StreamParser:
    """Buffer text chunks and turn each complete line into at most one event.

    Events are delivered synchronously, in the order their lines completed, to
    ``on_event``; undecodable lines go to ``on_parse_error`` and parsing continues.
    """

    def __init__(
        self,
        session_id: str,
        *,
        on_event: EventHandler | None = None,
        on_parse_error: ParseErrorHandler | None = None,
    ) -> None:
        self._session_id = session_id
        self._buffer = ""
        self._on_event = on_event
        self._on_parse_error = on_parse_error

    @property
    def session_id(self) -> str:
        return self._session_id

    def write(self, chunk: str) -> list[ClientEvent]:
        """Feed a chunk; returns the events emitted for lines it completed."""

        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        events: list[ClientEvent] = []
        for line in lines:
            if line.strip():
                event = self._parse_line(line)
                if event is not None:
                    events.append(event)
        return events

    def end(self) -> list[ClientEvent]:
        """Flush a trailing line that was never newline-terminated."""

        remainder, self._buffer = self._buffer, ""
        if not remainder.strip():
            return []
        event = self._parse_line(remainder)
        return [event] if event is not None else []

    def _parse_line(self, line: str) -> ClientEvent | None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning(
                "Failed to parse stream line",
                extra={"session_id": self._session_id, "line": line[:200], "error": str(exc)},
            )
            if self._on_parse_error is not None:
                self._on_parse_error(ParseError(line=line, error=str(exc)))
            return None

        if not isinstance(message, dict):
            return None

        event = self._transform(message)
        if event is not None and self._on_event is not None:
            self._on_event(event)
        return event

    def _transform(self, message: dict[str, Any]) -> ClientEvent | None:
        kind = message.get("type")

        if kind == "system":
            if message.get("subtype") != "init":
                return None
            return self._event("init", {"claudeSessionId": message.get("session_id") or ""})

        if kind == "assistant":
            body = message.get("message") or {}
            return self._text_event(body.get("role") or "assistant", body.get("content"))

        if kind == "message":
            return self._text_event(message.get("role") or "assistant", message.get("content"))

        if kind == "tool_use":
            return self._event(
                "tool_start",
                {"toolName": message.get("tool_name"), "input": message.get("tool_input") or {}},
            )

        if kind == "tool_result":
            return self._event(
                "tool_end",
                {
                    "toolName": message.get("tool_name"),
                    "output": message.get("output"),
                    "status": message.get("status"),
                },
            )

        if kind == "result":
            if message.get("subtype") == "success" or message.get("status") == "success":
                return self._event(
                    "complete",
                    {
                        "durationMs": message.get("duration_ms"),
                        "output": message.get("result") or message.get("output"),
                    },
                )
            return self._event("error", {"error": message.get("error") or "Unknown error"})

        return None

    def _text_event(self, role: str, content: Any) -> ClientEvent | None:
        if not isinstance(content, list):
            return None
        blocks = [
            block
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        if not blocks:
            return None
        return self._event(
            "text",
            {"role": role, "text": "".join(block["text"] for block in blocks), "content": blocks},
        )

    def _event(self, kind: str, data: dict[str, Any]) -> ClientEvent:
        return ClientEvent(type=kind, session_id=self._session_id, data=data)  # type: ignore[arg-type]


__all__ = ["StreamParser"]
