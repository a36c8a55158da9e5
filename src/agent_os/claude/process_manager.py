"""Per-session management of headless agent CLI turns."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Protocol
from uuid import uuid4

from ..paths import expand_home
from ..storage import Message, Session, SessionStore
from .events import ClientEvent, ParseError, error_event, status_event
from .stream_parser import StreamParser
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

ProcessStatus = Literal["idle", "running", "waiting", "error"]

_READ_CHUNK = 64 * 1024


class ProcessManagerError(RuntimeError):
    """Base class for process manager precondition failures."""


class SessionNotFoundError(ProcessManagerError):
    """Raised when a prompt targets a session with no registered observers."""


class TurnInProgressError(ProcessManagerError):
    """Raised when a session already has a live CLI process."""


class ClaudeNotFoundError(RuntimeError):
    """Raised when the agent CLI executable cannot be located."""


class Observer(Protocol):
    """A sink for serialized session events, such as a websocket."""

    @property
    def is_open(self) -> bool: ...

    def send(self, message: str) -> None: ...


@dataclass(slots=True)
class PromptOptions:
    model: str | None = None
    working_directory: str | None = None
    system_prompt: str | None = None


@dataclass(eq=False)
class ManagedProcessSession:
    """In-memory coordination state for one session; never persisted."""

    session_id: str
    parser: StreamParser
    observers: list[Observer] = field(default_factory=list)
    status: ProcessStatus = "idle"
    process: asyncio.subprocess.Process | None = None
    turn: asyncio.Task | None = None
    turn_active: bool = False


class ProcessManager:
    """Owns at most one agent CLI process per session and fans its events out.

    Table mutations happen only between awaits on the event loop, so no lock is
    needed as long as every caller shares the loop that constructed the manager.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        executable: Path | str | None = None,
        home_dir: Path | None = None,
    ) -> None:
        self._store = store
        self._explicit_executable = Path(executable) if executable else None
        self._home_dir = Path(home_dir) if home_dir else Path.home()
        self._sessions: dict[str, ManagedProcessSession] = {}

    # -- observers ---------------------------------------------------------------

    def register_client(self, session_id: str, observer: Observer) -> None:
        managed = self._sessions.get(session_id)
        if managed is None:
            managed = ManagedProcessSession(session_id=session_id, parser=self._new_parser(session_id))
            self._sessions[session_id] = managed

        if observer not in managed.observers:
            managed.observers.append(observer)

        self._deliver(observer, status_event(session_id, managed.status))

    def unregister_client(self, session_id: str, observer: Observer) -> None:
        managed = self._sessions.get(session_id)
        if managed is None:
            return
        if observer in managed.observers:
            managed.observers.remove(observer)
        self._collect(managed)

    def get_session_status(self, session_id: str) -> ProcessStatus | None:
        managed = self._sessions.get(session_id)
        return managed.status if managed else None

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    # -- turns -------------------------------------------------------------------

    async def send_prompt(
        self,
        session_id: str,
        prompt: str,
        options: PromptOptions | None = None,
    ) -> None:
        """Start one CLI turn for ``session_id``.

        Only the two preconditions raise. Spawn and I/O failures end the turn with
        an ``error`` status broadcast instead.
        """

        managed = self._sessions.get(session_id)
        if managed is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        if managed.turn_active:
            raise TurnInProgressError(f"Session {session_id} already has a running process")
        managed.turn_active = True

        options = options or PromptOptions()
        try:
            record = self._store.get_session(session_id)
            self._store.add_message(
                Message(
                    id=uuid4().hex,
                    session_id=session_id,
                    role="user",
                    content=json.dumps([{"type": "text", "text": prompt}]),
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )
            args = self._build_args(prompt, options, record)
            cwd = self._working_directory(options, record)
        except Exception:
            managed.turn_active = False
            raise

        logger.info(
            "Spawning agent turn",
            extra={"session_id": session_id, "cwd": str(cwd), "resume": "--resume" in args},
        )

        try:
            executable = self._resolve_executable()
            process = await asyncio.create_subprocess_exec(
                str(executable),
                *args,
                cwd=str(cwd),
                env=sanitize_environment(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (ClaudeNotFoundError, OSError) as exc:
            logger.error("Agent spawn failed", extra={"session_id": session_id, "error": str(exc)})
            self._settle(managed, "error", error=str(exc))
            return

        managed.parser = self._new_parser(session_id)
        managed.process = process
        self._set_status(managed, "running")
        managed.turn = asyncio.create_task(self._run_turn(managed, process))

    def cancel_session(self, session_id: str) -> bool:
        """Send SIGTERM to the live turn; the exit handler settles the final state."""

        managed = self._sessions.get(session_id)
        if managed is None or managed.process is None:
            return False
        try:
            managed.process.terminate()
        except ProcessLookupError:
            return False
        return True

    async def wait_for_turn(self, session_id: str) -> None:
        managed = self._sessions.get(session_id)
        if managed is not None and managed.turn is not None:
            await managed.turn

    async def shutdown(self) -> None:
        turns = []
        for managed in list(self._sessions.values()):
            if managed.process is not None:
                self.cancel_session(managed.session_id)
            if managed.turn is not None:
                turns.append(managed.turn)
        if turns:
            await asyncio.gather(*turns, return_exceptions=True)

    # -- internals ---------------------------------------------------------------

    def _resolve_executable(self) -> Path:
        if self._explicit_executable is not None:
            if self._explicit_executable.is_file():
                return self._explicit_executable
            raise ClaudeNotFoundError(f"Claude executable not found at {self._explicit_executable}")
        binary = shutil.which("claude")
        if binary is None:
            raise ClaudeNotFoundError("Claude CLI executable not found on PATH")
        return Path(binary)

    def _build_args(self, prompt: str, options: PromptOptions, record: Session | None) -> list[str]:
        args = ["-p", "--output-format", "stream-json", "--verbose"]
        model = options.model or (record.model if record else None)
        if model:
            args.extend(["--model", model])
        if record is not None and record.claude_session_id:
            args.extend(["--resume", record.claude_session_id])
        system_prompt = options.system_prompt or (record.system_prompt if record else None)
        if system_prompt:
            args.extend(["--system-prompt", system_prompt])
        args.append(prompt)
        return args

    def _working_directory(self, options: PromptOptions, record: Session | None) -> Path:
        if options.working_directory:
            return expand_home(options.working_directory, self._home_dir)
        if record is not None and record.working_directory:
            return expand_home(record.working_directory, self._home_dir)
        return self._home_dir

    def _new_parser(self, session_id: str) -> StreamParser:
        return StreamParser(
            session_id,
            on_event=lambda event: self._on_parser_event(session_id, event),
            on_parse_error=lambda error: self._on_parse_error(session_id, error),
        )

    async def _run_turn(self, managed: ManagedProcessSession, process: asyncio.subprocess.Process) -> None:
        returncode: int | None = None
        try:
            await asyncio.gather(
                self._pump_stdout(managed, process.stdout),
                self._drain_stderr(managed.session_id, process.stderr),
            )
            returncode = await process.wait()
        except OSError as exc:
            logger.error("Agent process I/O failed", extra={"session_id": managed.session_id, "error": str(exc)})
        finally:
            managed.parser.end()
            status: ProcessStatus = "idle" if returncode == 0 else "error"
            logger.info(
                "Agent turn finished",
                extra={"session_id": managed.session_id, "returncode": returncode},
            )
            self._settle(managed, status, exit_code=returncode if returncode is not None else -1)

    async def _pump_stdout(self, managed: ManagedProcessSession, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            managed.parser.write(decoder.decode(chunk))
        tail = decoder.decode(b"", final=True)
        if tail:
            managed.parser.write(tail)

    async def _drain_stderr(self, session_id: str, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.warning("Agent stderr", extra={"session_id": session_id, "stderr": text[:500]})

    def _settle(
        self,
        managed: ManagedProcessSession,
        status: ProcessStatus,
        *,
        exit_code: int | None = None,
        error: str | None = None,
    ) -> None:
        managed.process = None
        managed.turn_active = False
        managed.status = status
        self._persist_status(managed.session_id, status)
        if error is not None:
            self._broadcast(managed, error_event(managed.session_id, error))
        self._broadcast(managed, status_event(managed.session_id, status, exit_code))
        self._collect(managed)

    def _set_status(self, managed: ManagedProcessSession, status: ProcessStatus) -> None:
        managed.status = status
        self._persist_status(managed.session_id, status)
        self._broadcast(managed, status_event(managed.session_id, status))

    def _collect(self, managed: ManagedProcessSession) -> None:
        if not managed.observers and not managed.turn_active:
            if self._sessions.get(managed.session_id) is managed:
                del self._sessions[managed.session_id]

    def _on_parser_event(self, session_id: str, event: ClientEvent) -> None:
        managed = self._sessions.get(session_id)
        if managed is not None:
            self._broadcast(managed, event)
        self._apply_event(session_id, event)

    def _on_parse_error(self, session_id: str, error: ParseError) -> None:
        managed = self._sessions.get(session_id)
        if managed is not None:
            self._broadcast(managed, error_event(session_id, f"Parse error: {error.error}"))

    def _apply_event(self, session_id: str, event: ClientEvent) -> None:
        """Persist the durable consequence of an event; safe to repeat for the same event."""

        try:
            if event.type == "init":
                claude_session_id = event.data.get("claudeSessionId")
                if claude_session_id:
                    self._store.update_session(session_id, claude_session_id=claude_session_id)
            elif event.type == "text" and event.data.get("role") == "assistant":
                self._store.add_message(
                    Message(
                        id=event.id,
                        session_id=session_id,
                        role="assistant",
                        content=json.dumps(event.data.get("content", [])),
                        timestamp=event.timestamp,
                    )
                )
            elif event.type == "complete":
                self._store.update_session(session_id, status="idle")
            elif event.type == "error":
                self._store.update_session(session_id, status="error")
        except Exception:
            logger.exception("Failed to persist session event", extra={"session_id": session_id, "event": event.type})

    def _persist_status(self, session_id: str, status: ProcessStatus) -> None:
        try:
            self._store.update_session(session_id, status=status)
        except Exception:
            logger.exception("Failed to persist session status", extra={"session_id": session_id, "status": status})

    def _broadcast(self, managed: ManagedProcessSession, event: ClientEvent) -> None:
        for observer in list(managed.observers):
            self._deliver(observer, event)

    def _deliver(self, observer: Observer, event: ClientEvent) -> None:
        if not observer.is_open:
            return
        try:
            observer.send(event.to_json())
        except Exception as exc:  # observers are foreign code
            logger.warning("Dropping event for failed observer", extra={"event": event.type, "error": str(exc)})


__all__ = [
    "ClaudeNotFoundError",
    "ManagedProcessSession",
    "Observer",
    "ProcessManager",
    "ProcessManagerError",
    "PromptOptions",
    "SessionNotFoundError",
    "TurnInProgressError",
]
