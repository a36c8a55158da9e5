"""FastMCP server bootstrap for agent-os."""

import asyncio
import json
import logging
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import AgentOSSettings, get_settings
from .engine import Engine, build_engine
from .storage import ChromaUnavailableError
from .tmux import TmuxError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the agent-os server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def build_status(
    engine: Engine,
    storage_metadata: dict[str, Any],
    orphaned: list[str],
) -> dict[str, Any]:
    """Summarize storage, tmux, worker and dev-server state."""

    try:
        live_sessions: int | None = len(await engine.tmux.list_sessions())
        tmux_error = None
    except TmuxError as exc:
        live_sessions = None
        tmux_error = str(exc)

    worker_counts: dict[str, int] = {}
    server_counts: dict[str, int] = {}
    storage_error = None
    try:
        for session in engine.store.list_sessions():
            if session.worker_status:
                worker_counts[session.worker_status] = worker_counts.get(session.worker_status, 0) + 1
        for dev_server in engine.store.list_dev_servers():
            server_counts[dev_server.status] = server_counts.get(dev_server.status, 0) + 1
    except ChromaUnavailableError as exc:
        storage_error = str(exc)

    return {
        "version": __version__,
        "storage": {**storage_metadata, "error": storage_error or storage_metadata["error"]},
        "tmux": {"live_sessions": live_sessions, "error": tmux_error},
        "workers": worker_counts,
        "dev_servers": server_counts,
        "orphaned_dev_servers": orphaned,
    }


def create_server(
    settings: Optional[AgentOSSettings] = None,
    engine: Engine | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server, recover dev-server state and register tools."""

    settings = settings or get_settings()
    engine = engine or build_engine(settings)

    storage_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "error": None,
    }
    try:
        engine.store.ping()
        storage_metadata["available"] = True
    except ChromaUnavailableError as exc:
        storage_metadata["error"] = str(exc)

    orphaned: list[str] = []
    if storage_metadata["available"]:
        orphaned = _run_sync(engine.dev_servers.cleanup_orphaned_servers())

    server = FastMCP(
        name="agent-os",
        version=__version__,
        instructions=(
            "agent-os lets a conductor session spawn and supervise worker agent sessions "
            "running in tmux, each optionally isolated in its own git worktree. Use the "
            "tools to spawn workers, watch their status and output, and clean them up."
        ),
    )

    handles = register_tools(server, engine=engine, settings=settings)

    @server.resource(
        "resource://agent-os/status",
        name="agent_os_status",
        title="agent-os Status",
        description="Provides the current runtime status of the agent-os engine.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    async def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        return json.dumps(await build_status(engine, storage_metadata, orphaned))

    setattr(server, "engine", engine)
    setattr(server, "storage_metadata", storage_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "orphaned_dev_servers", orphaned)
    return server


def main() -> None:
    """Entry point for running the agent-os MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching agent-os MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "storage_available": getattr(server, "storage_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
