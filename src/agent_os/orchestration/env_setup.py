"""Prepare a fresh worktree: env files, dependencies and project setup scripts."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..claude.utils import sanitize_environment

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES: tuple[str, ...] = (
    ".agent-os/worktrees.json",
    ".agent-os/worktrees.yaml",
    ".agent-os.json",
)

LOCKFILES: tuple[tuple[str, str, str], ...] = (
    ("bun.lockb", "bun", "bun install"),
    ("pnpm-lock.yaml", "pnpm", "pnpm install"),
    ("yarn.lock", "yarn", "yarn install"),
    ("package-lock.json", "npm", "npm install"),
)

DEFAULT_DEV_PORT = 3000


class DevServerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    command: str = Field(..., description="Shell command that starts the project's dev server.")
    port_env_var: str = Field(
        default="PORT",
        alias="portEnvVar",
        description="Environment variable the dev server reads its port from.",
    )


class WorktreeConfig(BaseModel):
    """Per-project worktree settings read from ``.agent-os`` config files."""

    model_config = ConfigDict(populate_by_name=True)

    setup: list[str] = Field(default_factory=list, description="Commands run in a new worktree.")
    dev_server: DevServerConfig | None = Field(default=None, alias="devServer")

    @field_validator("setup", mode="before")
    @classmethod
    def _coerce_setup(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


@dataclass(slots=True)
class PackageManager:
    name: str
    install_command: str


@dataclass(slots=True)
class SetupStep:
    name: str
    command: str
    success: bool
    output: str = ""
    error: str | None = None


@dataclass(slots=True)
class SetupResult:
    success: bool = True
    steps: list[SetupStep] = field(default_factory=list)
    env_files_copied: list[str] = field(default_factory=list)
    package_manager: str | None = None
    port: int | None = None

    def record(self, step: SetupStep) -> None:
        self.steps.append(step)
        if not step.success:
            self.success = False


@dataclass(slots=True)
class DevServerCommand:
    command: str
    port: int


def read_worktree_config(project_path: str | Path) -> WorktreeConfig | None:
    """Return the first readable worktree config of the project, if any."""

    base = Path(project_path)
    for relative in CONFIG_CANDIDATES:
        path = base / relative
        if not path.is_file():
            continue
        try:
            text = path.read_text(encoding="utf-8")
            document = yaml.safe_load(text) if path.suffix == ".yaml" else json.loads(text)
            return WorktreeConfig.model_validate(document or {})
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as exc:
            logger.warning("Skipping unreadable worktree config", extra={"path": str(path), "error": str(exc)})
    return None


def detect_package_manager(project_path: str | Path) -> PackageManager | None:
    base = Path(project_path)
    for filename, name, command in LOCKFILES:
        if (base / filename).exists():
            return PackageManager(name=name, install_command=command)
    if (base / "package.json").exists():
        return PackageManager(name="npm", install_command="npm install")
    return None


def find_env_files(project_path: str | Path) -> list[str]:
    """Names of ``.env*`` files in the project root, excluding ``*.example`` templates."""

    base = Path(project_path)
    try:
        candidates = sorted(base.iterdir())
    except OSError:
        return []
    return [
        entry.name
        for entry in candidates
        if entry.name.startswith(".env") and not entry.name.endswith(".example") and entry.is_file()
    ]


def copy_env_files(source_path: str | Path, worktree_path: str | Path) -> list[str]:
    copied: list[str] = []
    for name in find_env_files(source_path):
        try:
            shutil.copyfile(Path(source_path) / name, Path(worktree_path) / name)
        except OSError as exc:
            logger.warning("Failed to copy env file", extra={"file": name, "error": str(exc)})
            continue
        copied.append(name)
    return copied


def exported_variables(source_path: str | Path, worktree_path: str | Path, port: int | None) -> dict[str, str]:
    variables = {"ROOT_WORKTREE_PATH": str(source_path), "WORKTREE_PATH": str(worktree_path)}
    if port:
        variables["PORT"] = str(port)
    return variables


def expand_variables(command: str, variables: dict[str, str]) -> str:
    for key, value in variables.items():
        command = command.replace(f"${key}", value)
    return command


async def run_command(
    command: str,
    cwd: str | Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float = 300.0,
) -> SetupStep:
    """Run a shell command and capture it as an unnamed setup step."""

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(env),
        )
    except OSError as exc:
        return SetupStep(name="", command=command, success=False, error=str(exc))

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return SetupStep(name="", command=command, success=False, error=f"Timed out after {timeout:g}s")

    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")
    if process.returncode == 0:
        output = stdout + (f"\n{stderr}" if stderr else "")
        return SetupStep(name="", command=command, success=True, output=output)
    return SetupStep(
        name="",
        command=command,
        success=False,
        output=stdout,
        error=stderr.strip() or f"Exited with status {process.returncode}",
    )


async def setup_worktree(
    worktree_path: str | Path,
    source_path: str | Path,
    port: int | None = None,
    skip_install: bool = False,
    *,
    timeout: float = 300.0,
) -> SetupResult:
    """Copy env files, then run the configured setup list or the detected install.

    A failing command marks the result unsuccessful but later commands still run.
    """

    result = SetupResult(port=port)
    config = read_worktree_config(source_path)

    result.env_files_copied = copy_env_files(source_path, worktree_path)
    if result.env_files_copied:
        result.record(
            SetupStep(
                name="Copy env files",
                command=f"cp {' '.join(result.env_files_copied)}",
                success=True,
                output=f"Copied: {', '.join(result.env_files_copied)}",
            )
        )

    variables = exported_variables(source_path, worktree_path, port)
    if config is not None and config.setup:
        for raw in config.setup:
            expanded = expand_variables(raw, variables)
            step = await run_command(expanded, worktree_path, variables, timeout=timeout)
            step.name = f"Config: {raw[:50]}{'...' if len(raw) > 50 else ''}"
            result.record(step)
    elif not skip_install:
        manager = detect_package_manager(source_path)
        if manager is not None:
            result.package_manager = manager.name
            step = await run_command(manager.install_command, worktree_path, variables, timeout=timeout)
            step.name = f"Install dependencies ({manager.name})"
            result.record(step)

    for step in result.steps:
        if not step.success:
            logger.warning(
                "Worktree setup step failed",
                extra={"worktree": str(worktree_path), "step": step.name, "error": step.error},
            )
    return result


def get_dev_server_command(project_path: str | Path, port: int | None = None) -> DevServerCommand | None:
    final_port = port or DEFAULT_DEV_PORT
    config = read_worktree_config(project_path)
    if config is not None and config.dev_server is not None:
        return DevServerCommand(
            command=f"{config.dev_server.port_env_var}={final_port} {config.dev_server.command}",
            port=final_port,
        )

    package_json = Path(project_path) / "package.json"
    if package_json.is_file():
        try:
            package = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        scripts = package.get("scripts") if isinstance(package, dict) else None
        if isinstance(scripts, dict) and scripts.get("dev"):
            return DevServerCommand(command=f"PORT={final_port} npm run dev", port=final_port)
    return None


__all__ = [
    "CONFIG_CANDIDATES",
    "DevServerCommand",
    "DevServerConfig",
    "PackageManager",
    "SetupResult",
    "SetupStep",
    "WorktreeConfig",
    "copy_env_files",
    "detect_package_manager",
    "expand_variables",
    "exported_variables",
    "find_env_files",
    "get_dev_server_command",
    "read_worktree_config",
    "run_command",
    "setup_worktree",
]
