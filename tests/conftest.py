from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from agent_os.storage import ChromaStore, Session
from agent_os.tmux import TmuxError


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: dict[str, _Record] = {}

    def upsert(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records[record_id] = _Record(document=document, metadata=dict(metadata), id=record_id)

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = list(self.records.values())
        if ids is not None:
            filtered = [record for record in filtered if record.id in ids]
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }

    def delete(self, *, ids) -> None:  # type: ignore[override]
        for record_id in ids:
            self.records.pop(record_id, None)


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    """Each call returns a time one second after the previous one."""

    def __init__(self) -> None:
        self._now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


class FakeTmux:
    """In-memory stand-in for ``TmuxClient``."""

    def __init__(self) -> None:
        self.sessions: dict[str, int] = {}
        self.panes: dict[str, str] = {}
        self.created: list[tuple[str, str, str]] = []
        self.sent: list[tuple[str, str]] = []
        self.keys: list[tuple[str, str]] = []
        self.killed: list[str] = []
        self.fail_new_session = False

    async def new_session(self, name: str, cwd: str, command: str) -> None:
        if self.fail_new_session:
            raise TmuxError(f"Failed to create tmux session {name}: duplicate session")
        self.created.append((name, cwd, command))
        self.sessions[name] = 1

    async def list_sessions(self) -> dict[str, int]:
        return dict(self.sessions)

    async def capture_pane(self, name: str, lines: int | None = None) -> str:
        return self.panes.get(name, "")

    async def send_literal(self, name: str, text: str) -> bool:
        if name not in self.sessions:
            return False
        self.sent.append((name, text))
        return True

    async def send_key(self, name: str, key: str) -> bool:
        if name not in self.sessions:
            return False
        self.keys.append((name, key))
        return True

    async def kill_session(self, name: str) -> bool:
        self.killed.append(name)
        self.sessions.pop(name, None)
        return True


@pytest.fixture
def store(tmp_path: Path) -> ChromaStore:
    client = StubClient()
    return ChromaStore(tmp_path / "chroma", client_factory=lambda: client, clock=TickingClock())


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def make_session(store: ChromaStore):
    def _make(session_id: str = "sess-1", **overrides: Any) -> Session:
        now = store.now()
        values: dict[str, Any] = {
            "id": session_id,
            "name": "Session",
            "working_directory": "~",
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return store.create_session(Session(**values))

    return _make
