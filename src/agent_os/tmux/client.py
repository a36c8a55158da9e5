"""Async wrapper around the tmux command line."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_GONE_MARKERS = ("can't find session", "no server running", "session not found", "no sessions")


class TmuxError(RuntimeError):
    """Raised when a tmux command cannot run or a session cannot be created."""


@dataclass(slots=True)
class TmuxResult:
    """Holds the outcome of a tmux invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def session_gone(self) -> bool:
        lowered = self.stderr.lower()
        return any(marker in lowered for marker in _GONE_MARKERS)


def escape_literal(text: str) -> str:
    """Protect text sent with ``send-keys -l``.

    tmux splits commands on an argument that ends with ``;``; a trailing ``\\;`` is
    turned back into a literal semicolon.
    """

    if text.endswith(";") and not text.endswith("\\;"):
        return text[:-1] + "\\;"
    return text


class TmuxClient:
    """Execute tmux commands asynchronously without going through a shell."""

    def __init__(self, executable: str = "tmux") -> None:
        self._executable = executable

    @property
    def executable(self) -> str:
        return self._executable

    async def new_session(self, name: str, cwd: str, command: str) -> None:
        result = await self._invoke("new-session", "-d", "-s", name, "-c", cwd, command)
        if not result.ok:
            raise TmuxError(f"Failed to create tmux session {name}: {result.stderr.strip()}")

    async def list_sessions(self) -> dict[str, int]:
        """Return live session names mapped to their last-activity epoch seconds."""

        result = await self._invoke("list-sessions", "-F", "#{session_name}\t#{session_activity}")
        if not result.ok:
            if result.session_gone or "error connecting" in result.stderr.lower():
                return {}
            raise TmuxError(f"tmux list-sessions failed: {result.stderr.strip()}")

        sessions: dict[str, int] = {}
        for line in result.stdout.splitlines():
            name, _, activity = line.partition("\t")
            if not name:
                continue
            try:
                sessions[name] = int(activity)
            except ValueError:
                sessions[name] = 0
        return sessions

    async def capture_pane(self, name: str, lines: int | None = None) -> str:
        """Return the rendered pane text, or an empty string when it cannot be read."""

        args = ["capture-pane", "-t", name, "-p"]
        if lines is not None:
            args.extend(["-S", f"-{lines}"])
        try:
            result = await self._invoke(*args)
        except TmuxError as exc:
            logger.debug("capture-pane failed", extra={"session": name, "error": str(exc)})
            return ""
        return result.stdout.strip() if result.ok else ""

    async def send_literal(self, name: str, text: str) -> bool:
        try:
            result = await self._invoke("send-keys", "-t", name, "-l", "--", escape_literal(text))
        except TmuxError:
            return False
        return result.ok

    async def send_key(self, name: str, key: str) -> bool:
        try:
            result = await self._invoke("send-keys", "-t", name, key)
        except TmuxError:
            return False
        return result.ok

    async def kill_session(self, name: str) -> bool:
        """Kill ``name``; a session that is already gone counts as killed."""

        try:
            result = await self._invoke("kill-session", "-t", name)
        except TmuxError as exc:
            logger.warning("tmux kill-session could not run", extra={"session": name, "error": str(exc)})
            return False
        return result.ok or result.session_gone

    async def _invoke(self, *args: str) -> TmuxResult:
        cmd = [self._executable, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TmuxError(f"Unable to run {self._executable}: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        return TmuxResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )


__all__ = ["TmuxClient", "TmuxError", "TmuxResult", "escape_literal"]
