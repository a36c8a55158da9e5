"""Chroma-based persistence layer."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import DevServer, Message, Session


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by agent-os."""

    def upsert(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...

    def delete(self, *, ids: Iterable[str]) -> None:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by agent-os."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


class SessionStore(Protocol):
    """Persistence API consumed by the orchestration components."""

    def get_session(self, session_id: str) -> Session | None: ...

    def create_session(self, session: Session) -> Session: ...

    def update_session(self, session_id: str, **changes: Any) -> Session | None: ...

    def delete_session(self, session_id: str) -> None: ...

    def list_sessions(self) -> list[Session]: ...

    def list_workers(self, conductor_session_id: str) -> list[Session]: ...

    def assigned_ports(self) -> list[int]: ...

    def add_message(self, message: Message) -> Message: ...

    def list_messages(self, session_id: str) -> list[Message]: ...

    def get_dev_server(self, server_id: str) -> DevServer | None: ...

    def create_dev_server(self, server: DevServer) -> DevServer: ...

    def update_dev_server(self, server_id: str, **changes: Any) -> DevServer | None: ...

    def delete_dev_server(self, server_id: str) -> None: ...

    def list_dev_servers(self, project_id: str | None = None) -> list[DevServer]: ...


def _where(**conditions: Any) -> dict[str, Any]:
    """Build a Chroma ``where`` clause; several keys need an explicit ``$and``."""

    clauses = [{key: value} for key, value in conditions.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaStore:
    """Persist sessions, messages and dev servers as JSON documents in ChromaDB.

    Every record lives in one collection. The document holds the full record and a
    small metadata dict carries the fields used for filtering (``kind`` plus foreign
    keys). Chroma rejects ``None`` metadata values, so unset keys are omitted.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "agent_os_records",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install agent-os with its storage dependencies"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def now(self) -> str:
        return self._clock().isoformat()

    # -- generic record plumbing -------------------------------------------------

    def _put(self, kind: str, record_id: str, payload: dict[str, Any], **keys: Any) -> None:
        metadata = {"kind": kind, "record_id": record_id}
        metadata.update({key: value for key, value in keys.items() if value is not None})
        self._ensure_collection().upsert(
            documents=[json.dumps(payload)],
            metadatas=[metadata],
            ids=[f"{kind}:{record_id}"],
        )

    def _fetch_one(self, kind: str, record_id: str) -> dict[str, Any] | None:
        result = self._ensure_collection().get(ids=[f"{kind}:{record_id}"])
        documents = result.get("documents") or []
        if not documents:
            return None
        return json.loads(documents[0])

    def _fetch_many(self, kind: str, **conditions: Any) -> list[dict[str, Any]]:
        result = self._ensure_collection().get(where=_where(kind=kind, **conditions))
        return [json.loads(document) for document in result.get("documents") or []]

    def _remove(self, kind: str, record_id: str) -> None:
        self._ensure_collection().delete(ids=[f"{kind}:{record_id}"])

    # -- sessions ----------------------------------------------------------------

    def _put_session(self, session: Session) -> Session:
        self._put(
            "session",
            session.id,
            session.to_dict(),
            conductor_session_id=session.conductor_session_id,
            project_id=session.project_id,
            has_port=session.dev_server_port is not None,
        )
        return session

    def get_session(self, session_id: str) -> Session | None:
        payload = self._fetch_one("session", session_id)
        return Session.from_dict(payload) if payload else None

    def create_session(self, session: Session) -> Session:
        return self._put_session(session)

    def update_session(self, session_id: str, **changes: Any) -> Session | None:
        current = self.get_session(session_id)
        if current is None:
            return None
        return self._put_session(replace(current, updated_at=self.now(), **changes))

    def delete_session(self, session_id: str) -> None:
        self._remove("session", session_id)

    def list_sessions(self) -> list[Session]:
        sessions = [Session.from_dict(doc) for doc in self._fetch_many("session")]
        return sorted(sessions, key=lambda session: session.created_at)

    def list_workers(self, conductor_session_id: str) -> list[Session]:
        workers = [
            Session.from_dict(doc)
            for doc in self._fetch_many("session", conductor_session_id=conductor_session_id)
        ]
        return sorted(workers, key=lambda session: session.created_at)

    def assigned_ports(self) -> list[int]:
        return [
            doc["dev_server_port"]
            for doc in self._fetch_many("session", has_port=True)
            if doc.get("dev_server_port") is not None
        ]

    # -- messages ----------------------------------------------------------------

    def add_message(self, message: Message) -> Message:
        self._put("message", message.id, message.to_dict(), session_id=message.session_id)
        return message

    def list_messages(self, session_id: str) -> list[Message]:
        messages = [Message.from_dict(doc) for doc in self._fetch_many("message", session_id=session_id)]
        return sorted(messages, key=lambda message: message.timestamp)

    # -- dev servers -------------------------------------------------------------

    def _put_dev_server(self, server: DevServer) -> DevServer:
        self._put(
            "dev_server",
            server.id,
            server.to_dict(),
            project_id=server.project_id,
            status=server.status,
        )
        return server

    def get_dev_server(self, server_id: str) -> DevServer | None:
        payload = self._fetch_one("dev_server", server_id)
        return DevServer.from_dict(payload) if payload else None

    def create_dev_server(self, server: DevServer) -> DevServer:
        return self._put_dev_server(server)

    def update_dev_server(self, server_id: str, **changes: Any) -> DevServer | None:
        current = self.get_dev_server(server_id)
        if current is None:
            return None
        return self._put_dev_server(replace(current, updated_at=self.now(), **changes))

    def delete_dev_server(self, server_id: str) -> None:
        self._remove("dev_server", server_id)

    def list_dev_servers(self, project_id: str | None = None) -> list[DevServer]:
        conditions = {"project_id": project_id} if project_id else {}
        servers = [DevServer.from_dict(doc) for doc in self._fetch_many("dev_server", **conditions)]
        return sorted(servers, key=lambda server: server.created_at)


__all__ = ["ChromaStore", "ChromaUnavailableError", "SessionStore"]
