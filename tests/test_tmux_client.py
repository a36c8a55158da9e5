from __future__ import annotations

import asyncio
import stat
from pathlib import Path

import pytest

from agent_os.tmux import TmuxClient, TmuxError, escape_literal


def _fake_tmux(tmp_path: Path, body: str) -> tuple[str, Path]:
    log = tmp_path / "tmux.log"
    script = tmp_path / "tmux"
    script.write_text(
        "#!/bin/sh\n"
        f"printf '%s\\n' \"$@\" >> '{log}'\n"
        f"echo --- >> '{log}'\n" + body,
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script), log


FAKE_TMUX = """
case "$1" in
  list-sessions) printf 'alpha\\t1700000000\\nbeta\\tnotanumber\\n' ;;
  capture-pane) printf 'line1\\nline2\\n\\n' ;;
  kill-session) echo "can't find session: $3" >&2; exit 1 ;;
  new-session) echo "duplicate session: $4" >&2; exit 1 ;;
  send-keys) exit 0 ;;
esac
"""


def _invocations(log: Path) -> list[list[str]]:
    blocks = log.read_text(encoding="utf-8").split("---\n")
    return [block.splitlines() for block in blocks if block.strip()]


def test_list_sessions_parses_activity(tmp_path: Path) -> None:
    executable, _ = _fake_tmux(tmp_path, FAKE_TMUX)
    client = TmuxClient(executable)

    sessions = asyncio.run(client.list_sessions())

    assert sessions == {"alpha": 1700000000, "beta": 0}


def test_list_sessions_without_server_is_empty(tmp_path: Path) -> None:
    executable, _ = _fake_tmux(tmp_path, "echo 'no server running on /tmp/tmux-0/default' >&2\nexit 1\n")

    assert asyncio.run(TmuxClient(executable).list_sessions()) == {}


def test_capture_pane_strips_and_passes_scrollback(tmp_path: Path) -> None:
    executable, log = _fake_tmux(tmp_path, FAKE_TMUX)

    content = asyncio.run(TmuxClient(executable).capture_pane("alpha", lines=10))

    assert content == "line1\nline2"
    assert _invocations(log)[-1] == ["capture-pane", "-t", "alpha", "-p", "-S", "-10"]


def test_kill_missing_session_counts_as_killed(tmp_path: Path) -> None:
    executable, _ = _fake_tmux(tmp_path, FAKE_TMUX)

    assert asyncio.run(TmuxClient(executable).kill_session("ghost")) is True


def test_new_session_failure_raises(tmp_path: Path) -> None:
    executable, log = _fake_tmux(tmp_path, FAKE_TMUX)

    with pytest.raises(TmuxError, match="duplicate session"):
        asyncio.run(TmuxClient(executable).new_session("claude-1", "/work", "claude --model sonnet"))

    assert _invocations(log)[-1] == [
        "new-session",
        "-d",
        "-s",
        "claude-1",
        "-c",
        "/work",
        "claude --model sonnet",
    ]


def test_send_literal_escapes_trailing_semicolon(tmp_path: Path) -> None:
    executable, log = _fake_tmux(tmp_path, FAKE_TMUX)
    client = TmuxClient(executable)

    async def scenario() -> tuple[bool, bool]:
        return await client.send_literal("alpha", "echo hi;"), await client.send_key("alpha", "Enter")

    assert asyncio.run(scenario()) == (True, True)
    literal, key = _invocations(log)[-2:]
    assert literal == ["send-keys", "-t", "alpha", "-l", "--", "echo hi\\;"]
    assert key == ["send-keys", "-t", "alpha", "Enter"]


def test_missing_executable(tmp_path: Path) -> None:
    client = TmuxClient(str(tmp_path / "no-tmux"))

    with pytest.raises(TmuxError):
        asyncio.run(client.list_sessions())
    assert asyncio.run(client.send_literal("a", "text")) is False
    assert asyncio.run(client.capture_pane("a")) == ""


def test_escape_literal() -> None:
    assert escape_literal("ls;") == "ls\\;"
    assert escape_literal("ls\\;") == "ls\\;"
    assert escape_literal("a; b") == "a; b"
