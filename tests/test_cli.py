from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path

import pytest

from agent_os.storage import ChromaUnavailableError, DevServer


def _load_diag(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "agentos_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


@pytest.fixture
def diag(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, store):
    module = _load_diag("agentos_diag_test_module")
    monkeypatch.setenv("AGENTOS_HOME_DIR", str(tmp_path))
    monkeypatch.setenv("AGENTOS_DATA_DIR", str(tmp_path / ".agent-os"))
    monkeypatch.setenv("AGENTOS_TMUX_PATH", str(tmp_path / "no-tmux"))
    monkeypatch.setattr(module, "load_store", lambda _settings: store)
    return module


def test_diagnostics_reports_unavailable_storage(monkeypatch: pytest.MonkeyPatch, capsys, tmp_path: Path) -> None:
    diag = _load_diag("agentos_diag_unavailable_module")

    class BrokenStore:
        def __init__(self, *_, **__):
            pass

        def ping(self) -> bool:
            raise ChromaUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(diag, "ChromaStore", BrokenStore)
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["ports"])

    assert excinfo.value.code == 1
    assert "Storage unavailable" in capsys.readouterr().out


def test_workers_lists_conductor_workers(diag, make_session, capsys) -> None:
    make_session("w1", conductor_session_id="c1", worker_task="fix bug", worker_status="completed")
    make_session("w2", conductor_session_id="c1", worker_task="write docs", worker_status="running")
    make_session("w3", conductor_session_id="other", worker_task="elsewhere")

    diag.cmd_workers(argparse.Namespace(conductor_id="c1"))

    payload = json.loads(capsys.readouterr().out)
    assert [(worker["id"], worker["status"]) for worker in payload] == [("w1", "completed"), ("w2", "dead")]


def test_servers_and_cleanup(diag, store, capsys) -> None:
    now = store.now()
    store.create_dev_server(
        DevServer(
            id="ds_1",
            project_id="p1",
            type="node",
            name="web",
            command="npm run dev",
            working_directory="~",
            created_at=now,
            updated_at=now,
            status="running",
            pid=999_999_999,
        )
    )

    diag.cmd_cleanup(argparse.Namespace())
    cleanup = json.loads(capsys.readouterr().out)
    assert cleanup == {"corrected": ["ds_1"]}

    diag.cmd_servers(argparse.Namespace(project_id="p1"))
    servers = json.loads(capsys.readouterr().out)
    assert servers[0]["id"] == "ds_1"
    assert servers[0]["status"] == "stopped"


def test_ports_reports_assignments(diag, make_session, capsys) -> None:
    make_session("w1", dev_server_port=3100)

    diag.main(["ports"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["assigned"] == [3100]
    assert payload["next_available"] >= 3110


def test_main_without_command_prints_help(capsys) -> None:
    diag = _load_diag("agentos_diag_help_module")

    diag.main([])

    assert "agent-os diagnostics" in capsys.readouterr().out
