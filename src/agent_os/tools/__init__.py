"""Tool registration for the agent-os MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..config import AgentOSSettings
from ..engine import Engine
from ..orchestration import WorkerNotFoundError
from ..providers import ProviderNotFoundError
from ..storage import Session

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    spawn_worker: Any
    list_workers: Any
    get_worker_output: Any
    send_to_worker: Any
    complete_worker: Any
    kill_worker: Any
    get_workers_summary: Any
    session_statuses: Any
    acknowledge_session: Any
    list_dev_servers: Any
    detect_dev_servers: Any


def _worker_payload(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "name": session.name,
        "status": session.worker_status,
        "task": session.worker_task,
        "tmux_session": session.tmux_name,
        "working_directory": session.working_directory,
        "worktree_path": session.worktree_path,
        "branch_name": session.branch_name,
        "dev_server_port": session.dev_server_port,
    }


def register_tools(
    server: FastMCP,
    *,
    engine: Engine,
    settings: AgentOSSettings,
) -> ToolHandles:
    """Register the conductor-facing tools on the server."""

    orchestrator = engine.orchestrator

    def _conductor(conductor_id: str | None) -> str | None:
        return conductor_id or settings.conductor_session_id

    def _missing_conductor() -> dict[str, Any]:
        return {"error": "No conductor session id; pass conductor_id or set CONDUCTOR_SESSION_ID"}

    async def _spawn_worker(
        task: str,
        working_directory: str,
        conductor_id: str | None = None,
        branch_name: str | None = None,
        use_worktree: bool = True,
        model: str | None = None,
        agent_type: str = "claude",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Spawn a worker session that starts working on ``task`` immediately."""

        conductor = _conductor(conductor_id)
        if conductor is None:
            return _missing_conductor()

        try:
            session = await orchestrator.spawn_worker(
                conductor,
                task,
                working_directory,
                branch_name=branch_name,
                use_worktree=use_worktree,
                model=model,
                agent_type=agent_type,
            )
        except ProviderNotFoundError as exc:
            return {"error": str(exc)}

        _emit_log(
            context,
            "info",
            "Spawned worker",
            extra={"worker_id": session.id, "conductor_id": conductor, "worker_status": session.worker_status},
        )
        return _worker_payload(session)

    async def _list_workers(
        conductor_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List the conductor's workers with their live status."""

        conductor = _conductor(conductor_id)
        if conductor is None:
            return _missing_conductor()

        workers = await orchestrator.get_workers(conductor)
        _emit_log(context, "debug", "Listing workers", extra={"conductor_id": conductor, "count": len(workers)})
        return {"conductor_id": conductor, "workers": [worker.to_dict() for worker in workers]}

    async def _get_worker_output(
        worker_id: str,
        lines: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the last ``lines`` lines of a worker's terminal."""

        try:
            output = await orchestrator.get_worker_output(worker_id, lines)
        except WorkerNotFoundError as exc:
            return {"error": str(exc)}
        return {"worker_id": worker_id, "output": output}

    async def _send_to_worker(
        worker_id: str,
        message: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Type ``message`` into a worker's terminal and press Enter."""

        try:
            sent = await orchestrator.send_to_worker(worker_id, message)
        except WorkerNotFoundError as exc:
            return {"error": str(exc)}
        _emit_log(context, "info", "Sent message to worker", extra={"worker_id": worker_id, "sent": sent})
        return {"worker_id": worker_id, "sent": sent}

    def _complete_worker(worker_id: str, context: Context | None = None) -> dict[str, Any]:
        """Mark a worker as completed."""

        session = orchestrator.complete_worker(worker_id)
        if session is None:
            return {"error": f"Worker {worker_id} not found"}
        _emit_log(context, "info", "Worker completed", extra={"worker_id": worker_id})
        return _worker_payload(session)

    async def _kill_worker(
        worker_id: str,
        cleanup_worktree: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Kill a worker's terminal session and optionally remove its worktree."""

        await orchestrator.kill_worker(worker_id, cleanup_worktree)
        _emit_log(
            context,
            "info",
            "Worker killed",
            extra={"worker_id": worker_id, "cleanup_worktree": cleanup_worktree},
        )
        return {"worker_id": worker_id, "killed": True}

    async def _get_workers_summary(
        conductor_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Count the conductor's workers by status."""

        conductor = _conductor(conductor_id)
        if conductor is None:
            return _missing_conductor()
        summary = await orchestrator.get_workers_summary(conductor)
        return {"conductor_id": conductor, **summary.to_dict()}

    async def _session_statuses(
        session_names: list[str],
        context: Context | None = None,
    ) -> dict[str, str]:
        """Classify tmux sessions as running, waiting, idle or dead."""

        return await engine.detector.get_all_statuses(list(session_names))

    def _acknowledge_session(session_name: str, context: Context | None = None) -> dict[str, Any]:
        """Mark a waiting session as seen so it reports idle."""

        engine.detector.acknowledge(session_name)
        return {"session_name": session_name, "acknowledged": True}

    async def _list_dev_servers(
        project_id: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List dev servers with their live status."""

        if project_id:
            servers = await engine.dev_servers.get_servers_by_project(project_id)
        else:
            servers = await engine.dev_servers.get_all_servers()
        _emit_log(context, "debug", "Listing dev servers", extra={"count": len(servers)})
        return [{**server.to_dict(), "ports": server.port_list} for server in servers]

    async def _detect_dev_servers(
        working_directory: str,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """Suggest npm scripts and compose services that could run as dev servers."""

        detected = await engine.dev_servers.detect_servers(working_directory)
        return [server.to_dict() for server in detected]

    tool_spawn = server.tool(
        name="spawn_worker",
        description=(
            "Spawn a worker agent session for a sub-task, isolated in its own git worktree "
            "by default. Returns the worker id and status."
        ),
    )(_spawn_worker)

    tool_list = server.tool(
        name="list_workers",
        description="List workers of a conductor session with their live status.",
    )(_list_workers)

    tool_output = server.tool(
        name="get_worker_output",
        description="Read recent terminal output from a worker.",
    )(_get_worker_output)

    tool_send = server.tool(
        name="send_to_worker",
        description="Send a message or follow-up instruction to a worker.",
    )(_send_to_worker)

    tool_complete = server.tool(
        name="complete_worker",
        description="Mark a worker as completed once its task is done.",
    )(_complete_worker)

    tool_kill = server.tool(
        name="kill_worker",
        description="Kill a worker session; optionally delete its git worktree.",
        annotations={"destructiveHint": True},
    )(_kill_worker)

    tool_summary = server.tool(
        name="get_workers_summary",
        description="Count a conductor's workers by status.",
    )(_get_workers_summary)

    tool_statuses = server.tool(
        name="session_statuses",
        description="Report running/waiting/idle/dead for tmux session names.",
    )(_session_statuses)

    tool_acknowledge = server.tool(
        name="acknowledge_session",
        description="Acknowledge a waiting session so it reports idle.",
    )(_acknowledge_session)

    tool_servers = server.tool(
        name="list_dev_servers",
        description="List dev servers, optionally for one project, with live status.",
    )(_list_dev_servers)

    tool_detect = server.tool(
        name="detect_dev_servers",
        description="Detect npm scripts and docker compose services in a directory.",
    )(_detect_dev_servers)

    return ToolHandles(
        spawn_worker=tool_spawn,
        list_workers=tool_list,
        get_worker_output=tool_output,
        send_to_worker=tool_send,
        complete_worker=tool_complete,
        kill_worker=tool_kill,
        get_workers_summary=tool_summary,
        session_statuses=tool_statuses,
        acknowledge_session=tool_acknowledge,
        list_dev_servers=tool_servers,
        detect_dev_servers=tool_detect,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
