from __future__ import annotations

import asyncio
import json
import re
import time
from pathlib import Path

import pytest

from agent_os.devservers import (
    DevServerError,
    DevServerNotFoundError,
    DevServerSupervisor,
    DockerResult,
    StartServerOptions,
    detect_npm_scripts,
)
from agent_os.devservers.detection import parse_compose_file
from agent_os.devservers.process import is_pid_running
from agent_os.devservers.supervisor import generate_server_id
from agent_os.storage import ChromaStore, DevServer


class FakeDocker:
    def __init__(self, *, up_ok: bool = True, services: list[str] | None = None) -> None:
        self.up_ok = up_ok
        self.services = services
        self.states: dict[str, str] = {}
        self.stopped: list[str] = []
        self.up_calls: list[tuple[str, Path]] = []

    async def compose_up(self, service: str, cwd: Path) -> DockerResult:
        self.up_calls.append((service, cwd))
        if not self.up_ok:
            return DockerResult(args=("docker",), returncode=1, stdout="", stderr="no such service: web")
        self.states[f"cid-{service}"] = "running"
        return DockerResult(args=("docker",), returncode=0, stdout="", stderr="")

    async def compose_container_id(self, service: str, cwd: Path) -> str | None:
        return f"cid-{service}"

    async def compose_services(self, compose_file: str, cwd: Path) -> list[str] | None:
        return self.services

    async def container_state(self, container_id: str) -> str:
        return self.states.get(container_id, "")

    async def stop(self, container_id: str) -> bool:
        self.stopped.append(container_id)
        self.states[container_id] = "exited"
        return True

    async def logs(self, container_id: str, lines: int) -> list[str] | None:
        return ["listening on 8080"]


def _supervisor(store: ChromaStore, tmp_path: Path, **kwargs) -> DevServerSupervisor:
    kwargs.setdefault("docker", FakeDocker())
    kwargs.setdefault("port_probe", lambda port: False)
    return DevServerSupervisor(
        store,
        logs_dir=tmp_path / "logs",
        home_dir=tmp_path,
        start_delay=0.2,
        stop_grace=0.2,
        **kwargs,
    )


def _record(store: ChromaStore, server_id: str, **overrides) -> DevServer:
    now = store.now()
    values = {
        "id": server_id,
        "project_id": "p1",
        "type": "node",
        "name": "web",
        "command": "npm run dev",
        "working_directory": "~",
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return store.create_dev_server(DevServer(**values))


def test_node_server_lifecycle(store: ChromaStore, tmp_path: Path) -> None:
    supervisor = _supervisor(store, tmp_path)
    options = StartServerOptions(
        project_id="p1",
        type="node",
        name="web",
        command="echo started; exec sleep 30",
        working_directory="~",
    )

    async def scenario():
        started = await supervisor.start_server(options)
        live = await supervisor.get_server_status(started)
        stopped = await supervisor.stop_server(started.id)
        logs = await supervisor.get_server_logs(started.id)
        return started, live, stopped, logs

    started, live, stopped, logs = asyncio.run(scenario())

    assert started.status == "running"
    assert started.pid
    assert live == "running"
    assert stopped.status == "stopped"
    assert stopped.pid is None
    assert "started" in logs

    deadline = time.monotonic() + 5
    while is_pid_running(started.pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not is_pid_running(started.pid)


def test_node_start_failure_marks_failed(store: ChromaStore, tmp_path: Path) -> None:
    supervisor = _supervisor(store, tmp_path)
    options = StartServerOptions(
        project_id="p1",
        type="node",
        name="web",
        command="npm run dev",
        working_directory=str(tmp_path / "missing"),
    )

    with pytest.raises(DevServerError):
        asyncio.run(supervisor.start_server(options))

    [record] = store.list_dev_servers("p1")
    assert record.status == "failed"
    # A failed server stays failed when nothing is alive.
    assert asyncio.run(supervisor.get_all_servers())[0].status == "failed"


def test_docker_server_lifecycle(store: ChromaStore, tmp_path: Path) -> None:
    docker = FakeDocker()
    supervisor = _supervisor(store, tmp_path, docker=docker)
    options = StartServerOptions(
        project_id="p1",
        type="docker",
        name="api",
        command="api",
        working_directory="~",
        ports=[8080],
    )

    async def scenario():
        started = await supervisor.start_server(options)
        listed = await supervisor.get_servers_by_project("p1")
        logs = await supervisor.get_server_logs(started.id)
        stopped = await supervisor.stop_server(started.id)
        return started, listed, logs, stopped

    started, listed, logs, stopped = asyncio.run(scenario())

    assert started.container_id == "cid-api"
    assert started.port_list == [8080]
    assert docker.up_calls == [("api", tmp_path)]
    assert listed[0].status == "running"
    assert logs == ["listening on 8080"]
    assert docker.stopped == ["cid-api"]
    assert stopped.status == "stopped"


def test_docker_start_failure(store: ChromaStore, tmp_path: Path) -> None:
    supervisor = _supervisor(store, tmp_path, docker=FakeDocker(up_ok=False))
    options = StartServerOptions(project_id="p1", type="docker", name="web", command="web", working_directory="~")

    with pytest.raises(DevServerError, match="no such service"):
        asyncio.run(supervisor.start_server(options))

    assert store.list_dev_servers()[0].status == "failed"


def test_cleanup_orphaned_servers(store: ChromaStore, tmp_path: Path) -> None:
    _record(store, "dead", status="running", pid=999_999_999)
    _record(store, "idle", status="stopped")
    supervisor = _supervisor(store, tmp_path)

    corrected = asyncio.run(supervisor.cleanup_orphaned_servers())

    assert corrected == ["dead"]
    assert store.get_dev_server("dead").status == "stopped"
    assert store.get_dev_server("dead").pid is None


def test_occupied_port_counts_as_running(store: ChromaStore, tmp_path: Path) -> None:
    record = _record(store, "ds", status="running", pid=None, ports=json.dumps([1]))
    supervisor = _supervisor(store, tmp_path, port_probe=lambda port: port == 1)

    assert asyncio.run(supervisor.get_server_status(record)) == "running"
    assert asyncio.run(supervisor.cleanup_orphaned_servers()) == []


def test_unknown_server_ids(store: ChromaStore, tmp_path: Path) -> None:
    supervisor = _supervisor(store, tmp_path)

    assert asyncio.run(supervisor.stop_server("nope")) is None
    assert asyncio.run(supervisor.get_server_logs("nope")) == []
    with pytest.raises(DevServerNotFoundError):
        asyncio.run(supervisor.restart_server("nope"))


def test_remove_server_deletes_record_and_log(store: ChromaStore, tmp_path: Path) -> None:
    _record(store, "ds", status="stopped")
    supervisor = _supervisor(store, tmp_path)
    log = supervisor.log_path("ds")
    log.parent.mkdir(parents=True)
    log.write_text("old output\n", encoding="utf-8")

    asyncio.run(supervisor.remove_server("ds"))

    assert store.get_dev_server("ds") is None
    assert not log.exists()


def test_detect_servers_from_package_and_compose(store: ChromaStore, tmp_path: Path) -> None:
    project = tmp_path / "app"
    project.mkdir()
    (project / "package.json").write_text(
        json.dumps({"name": "app", "scripts": {"dev": "vite --port 5173", "start": "node server.js", "test": "jest"}}),
        encoding="utf-8",
    )
    (project / "docker-compose.yml").write_text(
        "services:\n"
        "  web:\n"
        "    ports:\n"
        "      - \"8080:80\"\n"
        "  db:\n"
        "    ports:\n"
        "      - \"127.0.0.1:5432:5432\"\n"
        "  worker:\n"
        "    image: busybox\n",
        encoding="utf-8",
    )
    supervisor = _supervisor(store, tmp_path)

    detected = asyncio.run(supervisor.detect_servers("~/app"))

    assert [(server.type, server.command, server.ports) for server in detected] == [
        ("node", "npm run dev", [5173]),
        ("node", "npm run start", [3000]),
        ("docker", "web", [8080]),
        ("docker", "db", [5432]),
        ("docker", "worker", []),
    ]


def test_compose_long_syntax_and_missing_package(tmp_path: Path) -> None:
    compose = tmp_path / "compose.yaml"
    compose.write_text("services:\n  api:\n    ports:\n      - published: 9000\n        target: 80\n", encoding="utf-8")

    assert parse_compose_file(compose) == {"api": [9000]}
    assert detect_npm_scripts(tmp_path) == []


def test_generate_server_id_format() -> None:
    assert re.fullmatch(r"ds_[0-9a-z]+_[0-9a-z]{6}", generate_server_id())
