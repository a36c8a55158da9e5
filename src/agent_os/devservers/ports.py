"""Port allocation for worktree dev servers."""

from __future__ import annotations

import logging
import random
import socket
from typing import Callable

from ..storage import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_PORT_BASE = 3100
DEFAULT_PORT_INCREMENT = 10
DEFAULT_PORT_MAX = 3900
LOOPBACK_HOSTS = ("127.0.0.1", "::1")


def is_port_in_use(port: int, hosts: tuple[str, ...] = LOOPBACK_HOSTS) -> bool:
    """Return True when something accepts connections on ``port`` on any of ``hosts``.

    Blocking; async callers run it in a worker thread.
    """

    for host in hosts:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            with socket.socket(family, socket.SOCK_STREAM) as sock:
                sock.settimeout(0.5)
                if sock.connect_ex((host, port)) == 0:
                    return True
        except OSError as exc:
            logger.debug("Port probe failed", extra={"port": port, "host": host, "error": str(exc)})
    return False


class PortAllocator:
    """Hand out ports from a fixed range, skipping ones assigned or already bound.

    The only state is the ``dev_server_port`` column of stored sessions.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        base: int = DEFAULT_PORT_BASE,
        increment: int = DEFAULT_PORT_INCREMENT,
        max_port: int = DEFAULT_PORT_MAX,
        probe: Callable[[int], bool] = is_port_in_use,
        rng: random.Random | None = None,
    ) -> None:
        if increment < 1:
            raise ValueError("increment must be >= 1")
        if base > max_port:
            raise ValueError("base must not exceed max_port")
        self._store = store
        self._base = base
        self._increment = increment
        self._max_port = max_port
        self._probe = probe
        self._rng = rng or random.Random()

    @property
    def candidates(self) -> range:
        return range(self._base, self._max_port + 1, self._increment)

    def find_available_port(self) -> int:
        assigned = set(self._store.assigned_ports())
        for port in self.candidates:
            if port in assigned:
                continue
            if not self._probe(port):
                return port

        fallback = self._base + self._rng.randrange(len(self.candidates)) * self._increment
        logger.warning("Port range exhausted; using a random candidate", extra={"port": fallback})
        return fallback

    def assign_port(self, session_id: str) -> int:
        port = self.find_available_port()
        if self._store.update_session(session_id, dev_server_port=port) is None:
            logger.warning("Assigned port to unknown session", extra={"session_id": session_id, "port": port})
        return port

    def release_port(self, session_id: str) -> None:
        self._store.update_session(session_id, dev_server_port=None)

    def get_session_port(self, session_id: str) -> int | None:
        session = self._store.get_session(session_id)
        return session.dev_server_port if session else None


__all__ = ["PortAllocator", "is_port_in_use"]
