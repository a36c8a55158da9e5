from __future__ import annotations

import json

from agent_os.claude import ClientEvent, ParseError, StreamParser


def _line(payload: dict) -> str:
    return json.dumps(payload) + "\n"


def test_split_chunks_emit_single_init() -> None:
    events: list[ClientEvent] = []
    parser = StreamParser("s1", on_event=events.append)
    line = _line({"type": "system", "subtype": "init", "session_id": "claude-42"})

    parser.write(line[:10])
    assert events == []
    parser.write(line[10:])

    assert len(events) == 1
    assert events[0].type == "init"
    assert events[0].data == {"claudeSessionId": "claude-42"}
    assert events[0].session_id == "s1"


def test_malformed_line_reports_once_and_continues() -> None:
    events: list[ClientEvent] = []
    errors: list[ParseError] = []
    parser = StreamParser("s1", on_event=events.append, on_parse_error=errors.append)

    parser.write("{not json\n" + _line({"type": "result", "subtype": "success", "duration_ms": 12}))

    assert len(errors) == 1
    assert errors[0].line == "{not json"
    assert [event.type for event in events] == ["complete"]
    assert events[0].data["durationMs"] == 12


def test_events_follow_line_order() -> None:
    parser = StreamParser("s1")
    chunk = "".join(
        [
            _line({"type": "system", "subtype": "init", "session_id": "c"}),
            _line(
                {
                    "type": "assistant",
                    "message": {"role": "assistant", "content": [{"type": "text", "text": "Hello"}]},
                }
            ),
            _line({"type": "tool_use", "tool_name": "Read", "tool_input": {"path": "a.py"}}),
            _line({"type": "tool_result", "tool_name": "Read", "output": "ok", "status": "success"}),
            _line({"type": "result", "status": "error", "error": "boom"}),
        ]
    )

    events = parser.write(chunk)

    assert [event.type for event in events] == ["init", "text", "tool_start", "tool_end", "error"]
    assert events[1].data["text"] == "Hello"
    assert events[2].data == {"toolName": "Read", "input": {"path": "a.py"}}
    assert events[4].data == {"error": "boom"}


def test_ignored_messages_emit_nothing() -> None:
    parser = StreamParser("s1")

    events = parser.write(
        _line({"type": "system", "subtype": "hook"})
        + _line({"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Bash"}]}})
        + _line({"type": "unknown"})
        + "[1, 2]\n"
        + "\n"
    )

    assert events == []


def test_text_blocks_are_concatenated() -> None:
    parser = StreamParser("s1")

    events = parser.write(
        _line(
            {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "text", "text": "a"}, {"type": "thinking"}, {"type": "text", "text": "b"}],
            }
        )
    )

    assert events[0].data["text"] == "ab"
    assert len(events[0].data["content"]) == 2


def test_end_flushes_unterminated_line() -> None:
    parser = StreamParser("s1")
    parser.write(json.dumps({"type": "result", "subtype": "success", "result": "done"}))

    events = parser.end()

    assert [event.type for event in events] == ["complete"]
    assert events[0].data["output"] == "done"
    assert parser.end() == []


def test_event_payload_shape() -> None:
    parser = StreamParser("s1")
    event = parser.write(_line({"type": "system", "subtype": "init", "session_id": "c"}))[0]

    payload = json.loads(event.to_json())

    assert payload["type"] == "init"
    assert payload["sessionId"] == "s1"
    assert "timestamp" in payload
