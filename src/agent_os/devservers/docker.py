"""Async wrapper around the docker command line."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path


class DockerError(RuntimeError):
    """Raised when the docker executable cannot be run."""


@dataclass(slots=True)
class DockerResult:
    """Holds the outcome of a docker invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class DockerCLI:
    """Run docker subcommands without a shell."""

    def __init__(self, executable: str = "docker") -> None:
        self._executable = executable

    @property
    def executable(self) -> str:
        return self._executable

    async def compose_up(self, service: str, cwd: Path) -> DockerResult:
        return await self.run("compose", "up", "-d", service, cwd=cwd)

    async def compose_container_id(self, service: str, cwd: Path) -> str | None:
        result = await self.run("compose", "ps", "-q", service, cwd=cwd)
        lines = result.stdout.split()
        return lines[0] if result.ok and lines else None

    async def compose_services(self, compose_file: str, cwd: Path) -> list[str] | None:
        """List services via ``compose config``; None when docker cannot answer."""

        try:
            result = await self.run("compose", "-f", compose_file, "config", "--services", cwd=cwd)
        except DockerError:
            return None
        if not result.ok:
            return None
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def container_state(self, container_id: str) -> str:
        try:
            result = await self.run("inspect", "-f", "{{.State.Status}}", container_id)
        except DockerError:
            return ""
        return result.stdout.strip() if result.ok else ""

    async def stop(self, container_id: str) -> bool:
        try:
            result = await self.run("stop", container_id)
        except DockerError:
            return False
        return result.ok

    async def logs(self, container_id: str, lines: int) -> list[str] | None:
        try:
            result = await self.run("logs", "--tail", str(lines), container_id, merge_stderr=True)
        except DockerError:
            return None
        return result.stdout.split("\n") if result.ok else None

    async def run(
        self,
        *args: str,
        cwd: Path | None = None,
        merge_stderr: bool = False,
    ) -> DockerResult:
        cmd = [self._executable, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd) if cwd else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DockerError(f"Unable to run {self._executable}: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        return DockerResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace"),
        )


__all__ = ["DockerCLI", "DockerError", "DockerResult"]
