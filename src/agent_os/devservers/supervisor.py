"""Start, stop and observe per-project dev servers."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..claude.utils import sanitize_environment
from ..paths import expand_home
from ..storage import DevServer, SessionStore
from ..storage.models import DevServerStatus, DevServerType
from .detection import DetectedServer, detect_servers
from .docker import DockerCLI, DockerError
from .ports import is_port_in_use
from .process import is_pid_running, pid_on_port, send_terminate, terminate_process

logger = logging.getLogger(__name__)

_DOCKER_STATES: dict[str, DevServerStatus] = {
    "running": "running",
    "starting": "starting",
    "restarting": "starting",
}
_ID_ALPHABET = string.digits + string.ascii_lowercase


class DevServerError(RuntimeError):
    """Raised when a dev server cannot be started."""


class DevServerNotFoundError(DevServerError):
    """Raised when a dev server id does not exist."""


@dataclass(slots=True)
class StartServerOptions:
    project_id: str
    type: DevServerType
    name: str
    command: str
    working_directory: str
    ports: list[int] = field(default_factory=list)


def _base36(value: int) -> str:
    digits = ""
    while True:
        value, remainder = divmod(value, 36)
        digits = _ID_ALPHABET[remainder] + digits
        if value == 0:
            return digits


def generate_server_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"ds_{_base36(int(time.time() * 1000))}_{suffix}"


class DevServerSupervisor:
    """Manage node processes and compose services recorded as ``DevServer`` rows.

    Nothing is cached in memory: every call re-reads the record and re-derives
    liveness from the OS or docker before trusting it.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        logs_dir: Path,
        home_dir: Path | None = None,
        docker: DockerCLI | None = None,
        port_probe: Callable[[int], bool] = is_port_in_use,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        start_delay: float = 0.5,
        stop_grace: float = 1.0,
    ) -> None:
        self._store = store
        self._logs_dir = Path(logs_dir)
        self._home_dir = Path(home_dir) if home_dir else Path.home()
        self._docker = docker or DockerCLI()
        self._port_probe = port_probe
        self._sleep = sleep
        self._start_delay = start_delay
        self._stop_grace = stop_grace
        self._children: dict[str, subprocess.Popen] = {}

    def log_path(self, server_id: str) -> Path:
        return self._logs_dir / f"{server_id}.log"

    # -- lifecycle ---------------------------------------------------------------

    async def start_server(self, options: StartServerOptions) -> DevServer:
        now = self._store.now()
        record = DevServer(
            id=generate_server_id(),
            project_id=options.project_id,
            type=options.type,
            name=options.name,
            command=options.command,
            working_directory=options.working_directory,
            created_at=now,
            updated_at=now,
            status="starting",
            ports=json.dumps(list(options.ports)),
        )
        self._store.create_dev_server(record)
        return await self._launch(record)

    async def stop_server(self, server_id: str) -> DevServer | None:
        server = self._store.get_dev_server(server_id)
        if server is None:
            return None

        if server.type == "docker":
            if server.container_id and not await self._docker.stop(server.container_id):
                logger.debug("docker stop failed", extra={"server_id": server_id})
        else:
            if server.pid:
                await terminate_process(server.pid, grace=self._stop_grace, sleep=self._sleep)
            # The tracked pid may be a wrapper shell whose child kept the port.
            for port in server.port_list:
                listener = pid_on_port(port)
                if listener:
                    send_terminate(listener)
            child = self._children.pop(server_id, None)
            if child is not None:
                child.poll()

        logger.info("Dev server stopped", extra={"server_id": server_id})
        return self._store.update_dev_server(server_id, status="stopped", pid=None)

    async def restart_server(self, server_id: str) -> DevServer:
        server = self._store.get_dev_server(server_id)
        if server is None:
            raise DevServerNotFoundError(f"Dev server {server_id} not found")
        await self.stop_server(server_id)
        self._store.update_dev_server(server_id, status="starting")
        return await self._launch(server)

    async def remove_server(self, server_id: str) -> None:
        await self.stop_server(server_id)
        self._store.delete_dev_server(server_id)
        self.log_path(server_id).unlink(missing_ok=True)

    async def get_server_logs(self, server_id: str, lines: int = 100) -> list[str]:
        server = self._store.get_dev_server(server_id)
        if server is None:
            return []

        if server.type == "docker" and server.container_id:
            return await self._docker.logs(server.container_id, lines) or []

        path = self.log_path(server_id)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Cannot read dev server log", extra={"server_id": server_id, "error": str(exc)})
            return []
        return content.split("\n")[-lines:]

    # -- status ------------------------------------------------------------------

    async def get_server_status(self, server: DevServer) -> DevServerStatus:
        if server.type == "docker":
            if not server.container_id:
                return "stopped"
            state = await self._docker.container_state(server.container_id)
            return _DOCKER_STATES.get(state, "stopped")

        if is_pid_running(server.pid):
            return "running"
        for port in server.port_list:
            if not await asyncio.to_thread(self._port_probe, port):
                continue
            listener = await asyncio.to_thread(pid_on_port, port)
            if listener:
                self._store.update_dev_server(server.id, pid=listener, status="running")
            return "running"
        return "stopped"

    async def get_all_servers(self) -> list[DevServer]:
        return [await self._refresh(server) for server in self._store.list_dev_servers()]

    async def get_servers_by_project(self, project_id: str) -> list[DevServer]:
        return [await self._refresh(server) for server in self._store.list_dev_servers(project_id)]

    async def cleanup_orphaned_servers(self) -> list[str]:
        """Mark servers stored as running but no longer alive as stopped."""

        corrected: list[str] = []
        for server in self._store.list_dev_servers():
            if server.status != "running":
                continue
            if await self.get_server_status(server) == "stopped":
                self._store.update_dev_server(server.id, status="stopped", pid=None)
                corrected.append(server.id)
        if corrected:
            logger.info("Corrected orphaned dev servers", extra={"server_ids": corrected})
        return corrected

    async def detect_servers(self, working_dir: str) -> list[DetectedServer]:
        return await detect_servers(expand_home(working_dir, self._home_dir), self._docker)

    # -- internals ---------------------------------------------------------------

    async def _refresh(self, server: DevServer) -> DevServer:
        live = await self.get_server_status(server)
        if server.status == "failed" and live == "stopped":
            return server
        if live != server.status:
            updated = self._store.update_dev_server(server.id, status=live)
            if updated is not None:
                return updated
        return self._store.get_dev_server(server.id) or server

    async def _launch(self, server: DevServer) -> DevServer:
        try:
            if server.type == "docker":
                changes = await self._spawn_docker(server)
            else:
                changes = await self._spawn_node(server)
        except (DevServerError, DockerError, OSError) as exc:
            self._store.update_dev_server(server.id, status="failed")
            logger.error("Dev server failed to start", extra={"server_id": server.id, "error": str(exc)})
            if isinstance(exc, DevServerError):
                raise
            raise DevServerError(f"Failed to start {server.name}: {exc}") from exc

        updated = self._store.update_dev_server(server.id, status="running", **changes)
        logger.info("Dev server started", extra={"server_id": server.id, **changes})
        return updated or server

    async def _spawn_node(self, server: DevServer) -> dict[str, Any]:
        self._logs_dir.mkdir(parents=True, exist_ok=True)
        ports = server.port_list
        env = sanitize_environment({"PORT": str(ports[0])} if ports else None)
        cwd = expand_home(server.working_directory, self._home_dir)

        # A shell resolves version-manager shims (nvm, volta) on PATH.
        with open(self.log_path(server.id), "ab") as log:
            child = subprocess.Popen(
                server.command,
                shell=True,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        self._children[server.id] = child
        await self._sleep(self._start_delay)
        return {"pid": child.pid, "container_id": None}

    async def _spawn_docker(self, server: DevServer) -> dict[str, Any]:
        cwd = expand_home(server.working_directory, self._home_dir)
        result = await self._docker.compose_up(server.command, cwd)
        if not result.ok:
            raise DevServerError(f"docker compose up {server.command} failed: {result.stderr.strip()}")
        return {"pid": None, "container_id": await self._docker.compose_container_id(server.command, cwd)}


__all__ = [
    "DevServerError",
    "DevServerNotFoundError",
    "DevServerSupervisor",
    "StartServerOptions",
    "generate_server_id",
]
