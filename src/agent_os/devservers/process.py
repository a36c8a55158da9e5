"""psutil helpers for dev-server processes."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import psutil

logger = logging.getLogger(__name__)


def is_pid_running(pid: int | None) -> bool:
    """Return True when ``pid`` names a live, non-zombie process."""

    if not pid or pid <= 0:
        return False
    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def pid_on_port(port: int) -> int | None:
    """Return the PID of a process listening on ``port``, if one can be seen."""

    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, OSError) as exc:
        logger.debug("Cannot list sockets", extra={"port": port, "error": str(exc)})
        return None
    for conn in connections:
        if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port and conn.pid:
            return conn.pid
    return None


def send_terminate(pid: int) -> bool:
    """SIGTERM ``pid``; a process that is already gone counts as handled."""

    try:
        psutil.Process(pid).terminate()
    except psutil.NoSuchProcess:
        return True
    except psutil.AccessDenied as exc:
        logger.warning("Not allowed to terminate process", extra={"pid": pid, "error": str(exc)})
        return False
    return True


async def terminate_process(
    pid: int,
    *,
    grace: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """SIGTERM, wait ``grace`` seconds, then SIGKILL; True once the process is gone."""

    if not is_pid_running(pid):
        return True
    send_terminate(pid)
    await sleep(grace)
    if is_pid_running(pid):
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            return True
        except psutil.AccessDenied as exc:
            logger.warning("Not allowed to kill process", extra={"pid": pid, "error": str(exc)})
            return False
    return not is_pid_running(pid)


__all__ = ["is_pid_running", "pid_on_port", "send_terminate", "terminate_process"]
