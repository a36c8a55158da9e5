"""Conductor/worker orchestration on top of tmux sessions and git worktrees."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal
from uuid import uuid4

from ..devservers.ports import PortAllocator
from ..git import GitError, WorktreeManager
from ..paths import expand_home
from ..providers import AgentProvider, ProviderRegistry
from ..status import StatusDetector
from ..storage import Session, SessionStore
from ..tmux import TmuxClient, TmuxError
from .env_setup import setup_worktree

logger = logging.getLogger(__name__)

WorkerLiveStatus = Literal["pending", "running", "waiting", "idle", "completed", "failed", "dead"]

_TERMINAL_STATUSES = {"completed", "failed"}
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class WorkerNotFoundError(RuntimeError):
    """Raised when a worker id does not name a stored session."""


@dataclass(slots=True)
class WorkerInfo:
    id: str
    name: str
    task: str
    status: WorkerLiveStatus
    worktree_path: str | None
    branch_name: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class WorkersSummary:
    total: int = 0
    pending: int = 0
    running: int = 0
    waiting: int = 0
    idle: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            return "".join(reversed(digits))


def task_to_branch_name(task: str, now_ms: int) -> str:
    """``feature/`` plus the first four task words and a short time-based suffix."""

    words = re.sub(r"[^a-z0-9\s]", "", task.lower()).split()
    base = "-".join(words[:4])[:30] or "worker"
    return f"feature/{base}-{_base36(now_ms)[-4:]}"


def task_to_session_name(task: str) -> str:
    """Cut the task to 50 characters, backing off to a word boundary when one is close."""

    truncated = task[:50]
    last_space = truncated.rfind(" ")
    return truncated[:last_space] if last_space > 20 else truncated


class WorkerOrchestrator:
    """Spawn and supervise worker sessions on behalf of a conductor session."""

    def __init__(
        self,
        store: SessionStore,
        tmux: TmuxClient,
        detector: StatusDetector,
        providers: ProviderRegistry,
        worktrees: WorktreeManager,
        *,
        ports: PortAllocator | None = None,
        home_dir: Path | None = None,
        default_model: str = "sonnet",
        ready_poll_interval: float = 2.0,
        ready_timeout: float = 30.0,
        setup_timeout: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._tmux = tmux
        self._detector = detector
        self._providers = providers
        self._worktrees = worktrees
        self._ports = ports
        self._home_dir = Path(home_dir) if home_dir else Path.home()
        self._default_model = default_model
        self._ready_poll_interval = ready_poll_interval
        self._ready_timeout = ready_timeout
        self._setup_timeout = setup_timeout
        self._sleep = sleep
        self._clock = clock
        self._port_lock = asyncio.Lock()

    # -- spawning ----------------------------------------------------------------

    async def spawn_worker(
        self,
        conductor_id: str,
        task: str,
        working_directory: str,
        *,
        branch_name: str | None = None,
        session_name: str | None = None,
        use_worktree: bool = True,
        model: str | None = None,
        agent_type: str | None = "claude",
    ) -> Session:
        provider = self._providers.get(agent_type)
        project_dir = expand_home(working_directory, self._home_dir)
        session_id = str(uuid4())
        branch = branch_name or task_to_branch_name(task, int(self._clock() * 1000))
        model = model or self._default_model

        worktree_path: Path | None = None
        base_branch: str | None = None
        port: int | None = None
        if use_worktree:
            try:
                info = await self._worktrees.create_worktree(project_dir, branch)
            except (GitError, OSError) as exc:
                logger.warning(
                    "Worktree unavailable; worker will share the project directory",
                    extra={"session_id": session_id, "working_directory": str(project_dir), "error": str(exc)},
                )
            else:
                worktree_path = info.worktree_path
                base_branch = info.base_branch

        now = self._store.now()
        tmux_name = f"{provider.id}-{session_id}"
        # The port only counts as taken once the row holding it is stored.
        async with self._port_lock:
            if worktree_path is not None and self._ports is not None:
                port = await asyncio.to_thread(self._ports.find_available_port)
            session = Session(
                id=session_id,
                name=session_name or task_to_session_name(task),
                working_directory=str(worktree_path or project_dir),
                created_at=now,
                updated_at=now,
                tmux_name=tmux_name,
                model=model,
                agent_type=provider.id,
                auto_approve=True,
                parent_session_id=conductor_id,
                conductor_session_id=conductor_id,
                worker_task=task,
                worker_status="pending",
                worktree_path=str(worktree_path) if worktree_path else None,
                branch_name=branch if worktree_path else None,
                base_branch=base_branch,
                dev_server_port=port,
            )
            self._store.create_session(session)

        if worktree_path is not None:
            result = await setup_worktree(worktree_path, project_dir, port=port, timeout=self._setup_timeout)
            if not result.success:
                logger.warning(
                    "Worktree setup finished with failures",
                    extra={"session_id": session_id, "worktree": str(worktree_path)},
                )

        command = provider.command_line(model=model, auto_approve=True)
        try:
            await self._tmux.new_session(tmux_name, session.working_directory, command)
        except TmuxError as exc:
            logger.error("Failed to start worker session", extra={"session_id": session_id, "error": str(exc)})
            return self._finish_worker(session_id, "failed")

        if not await self._wait_until_ready(tmux_name, provider):
            logger.warning(
                "Worker did not report ready; sending task anyway",
                extra={"session_id": session_id, "timeout": self._ready_timeout},
            )

        sent = await self._tmux.send_literal(tmux_name, task) and await self._tmux.send_key(tmux_name, "Enter")
        if not sent:
            logger.error("Failed to send task to worker", extra={"session_id": session_id})
            return self._finish_worker(session_id, "failed")

        logger.info("Worker started", extra={"session_id": session_id, "tmux_session": tmux_name})
        return self._set_worker_status(session_id, "running")

    async def _wait_until_ready(self, tmux_name: str, provider: AgentProvider) -> bool:
        """Poll the pane until the agent shows its ready footer or the timeout passes.

        Trust banners are accepted with Enter and polling continues. Providers
        without any pattern cannot be confirmed and are not polled.
        """

        if not provider.ready_patterns and not provider.trust_patterns:
            return False

        waited = 0.0
        while waited < self._ready_timeout:
            await self._sleep(self._ready_poll_interval)
            waited += self._ready_poll_interval

            content = await self._tmux.capture_pane(tmux_name, lines=10)
            if provider.shows_trust_prompt(content):
                logger.info("Accepting trust prompt", extra={"tmux_session": tmux_name})
                await self._tmux.send_key(tmux_name, "Enter")
                continue

            tail = "\n".join(content.strip().split("\n")[-3:])
            if provider.is_ready(tail):
                logger.debug("Worker ready", extra={"tmux_session": tmux_name, "waited": waited})
                return True
        return False

    # -- inspection --------------------------------------------------------------

    async def get_workers(self, conductor_id: str) -> list[WorkerInfo]:
        workers = self._store.list_workers(conductor_id)
        live = await self._detector.get_all_statuses([self._tmux_name(worker) for worker in workers])

        infos: list[WorkerInfo] = []
        for worker in workers:
            if worker.worker_status in _TERMINAL_STATUSES:
                status: WorkerLiveStatus = worker.worker_status  # type: ignore[assignment]
            else:
                status = live.get(self._tmux_name(worker), "dead")
            infos.append(
                WorkerInfo(
                    id=worker.id,
                    name=worker.name,
                    task=worker.worker_task or "",
                    status=status,
                    worktree_path=worker.worktree_path,
                    branch_name=worker.branch_name,
                    created_at=worker.created_at,
                )
            )
        return infos

    async def get_workers_summary(self, conductor_id: str) -> WorkersSummary:
        summary = WorkersSummary()
        for worker in await self.get_workers(conductor_id):
            summary.total += 1
            if worker.status in ("failed", "dead"):
                summary.failed += 1
            else:
                setattr(summary, worker.status, getattr(summary, worker.status) + 1)
        return summary

    async def get_worker_output(self, worker_id: str, lines: int = 50) -> str:
        worker = self._require(worker_id)
        return await self._tmux.capture_pane(self._tmux_name(worker), lines=lines)

    async def send_to_worker(self, worker_id: str, message: str) -> bool:
        worker = self._require(worker_id)
        name = self._tmux_name(worker)
        return await self._tmux.send_literal(name, message) and await self._tmux.send_key(name, "Enter")

    # -- state transitions -------------------------------------------------------

    def complete_worker(self, worker_id: str) -> Session | None:
        if self._store.get_session(worker_id) is None:
            return None
        return self._finish_worker(worker_id, "completed")

    def fail_worker(self, worker_id: str) -> Session | None:
        if self._store.get_session(worker_id) is None:
            return None
        return self._finish_worker(worker_id, "failed")

    async def kill_worker(self, worker_id: str, cleanup_worktree: bool = False) -> None:
        """Stop a worker for good. Every step is best effort and the worker ends ``failed``."""

        worker = self._store.get_session(worker_id)
        if worker is None:
            return

        # A session that is already gone counts as killed.
        await self._tmux.kill_session(self._tmux_name(worker))

        if cleanup_worktree and worker.worktree_path:
            await self._remove_worktree(Path(worker.worktree_path))

        self._finish_worker(worker_id, "failed")
        logger.info("Worker killed", extra={"session_id": worker_id, "cleanup_worktree": cleanup_worktree})

    async def _remove_worktree(self, worktree: Path) -> None:
        removed = False
        project = await self._worktrees.main_worktree(worktree)
        if project is not None and project.resolve() != worktree.resolve():
            removed = await self._worktrees.delete_worktree(worktree, project, delete_branch=True)
        if removed or not worktree.exists():
            return
        if not self._worktrees.is_managed(worktree):
            logger.warning(
                "Refusing to delete a directory outside the worktrees root", extra={"worktree": str(worktree)}
            )
            return
        logger.warning("Removing worktree directory directly", extra={"worktree": str(worktree)})
        await asyncio.to_thread(shutil.rmtree, worktree, True)

    # -- helpers -----------------------------------------------------------------

    def _require(self, worker_id: str) -> Session:
        worker = self._store.get_session(worker_id)
        if worker is None:
            raise WorkerNotFoundError(f"Worker {worker_id} not found")
        return worker

    @staticmethod
    def _tmux_name(worker: Session) -> str:
        return worker.tmux_name or f"{worker.agent_type or 'claude'}-{worker.id}"

    def _set_worker_status(self, worker_id: str, status: str) -> Session:
        updated = self._store.update_session(worker_id, worker_status=status)
        if updated is None:
            raise WorkerNotFoundError(f"Worker {worker_id} not found")
        return updated

    def _finish_worker(self, worker_id: str, status: str) -> Session:
        """Move a worker to a terminal status and hand its port back to the allocator."""

        if self._ports is not None:
            self._ports.release_port(worker_id)
        return self._set_worker_status(worker_id, status)


__all__ = [
    "WorkerInfo",
    "WorkerLiveStatus",
    "WorkerNotFoundError",
    "WorkerOrchestrator",
    "WorkersSummary",
    "task_to_branch_name",
    "task_to_session_name",
]
