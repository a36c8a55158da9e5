"""Data models for persistent tracking."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from typing import Any, Literal

SessionStatus = Literal["idle", "running", "waiting", "error"]
WorkerStatus = Literal["pending", "running", "completed", "failed"]
DevServerType = Literal["node", "docker"]
DevServerStatus = Literal["stopped", "starting", "running", "failed"]


class _Record:
    """Shared (de)serialization for storage records."""

    __slots__ = ()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, payload: dict[str, Any]):
        known = {field.name for field in fields(cls)}  # type: ignore[arg-type]
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass(slots=True)
class Session(_Record):
    id: str
    name: str
    working_directory: str
    created_at: str
    updated_at: str
    tmux_name: str | None = None
    status: SessionStatus = "idle"
    model: str = "sonnet"
    agent_type: str = "claude"
    auto_approve: bool = False
    system_prompt: str | None = None
    project_id: str | None = None
    parent_session_id: str | None = None
    claude_session_id: str | None = None
    conductor_session_id: str | None = None
    worker_task: str | None = None
    worker_status: WorkerStatus | None = None
    worktree_path: str | None = None
    branch_name: str | None = None
    base_branch: str | None = None
    dev_server_port: int | None = None
    pr_url: str | None = None
    pr_number: int | None = None
    pr_status: Literal["open", "merged", "closed"] | None = None


@dataclass(slots=True)
class Message(_Record):
    id: str
    session_id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: str
    duration_ms: int | None = None


@dataclass(slots=True)
class DevServer(_Record):
    id: str
    project_id: str
    type: DevServerType
    name: str
    command: str
    working_directory: str
    created_at: str
    updated_at: str
    status: DevServerStatus = "stopped"
    pid: int | None = None
    container_id: str | None = None
    ports: str = "[]"

    @property
    def port_list(self) -> list[int]:
        try:
            decoded = json.loads(self.ports or "[]")
        except json.JSONDecodeError:
            return []
        return [int(port) for port in decoded if isinstance(port, (int, str)) and str(port).isdigit()]


__all__ = [
    "DevServer",
    "DevServerStatus",
    "DevServerType",
    "Message",
    "Session",
    "SessionStatus",
    "WorkerStatus",
]
