"""Read-only heuristics suggesting dev servers for a directory."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..storage.models import DevServerType
from .docker import DockerCLI

logger = logging.getLogger(__name__)

DEV_SCRIPTS: tuple[str, ...] = ("dev", "start", "serve", "develop")
COMPOSE_FILES: tuple[str, ...] = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")
DEFAULT_NODE_PORT = 3000

_SCRIPT_PORT = re.compile(r"port[=\s]+(\d+)", re.IGNORECASE)


@dataclass(slots=True)
class DetectedServer:
    type: DevServerType
    name: str
    command: str
    ports: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def detect_npm_scripts(working_dir: str | Path) -> list[DetectedServer]:
    """Suggest ``npm run`` commands for the conventional dev-server scripts."""

    base = Path(working_dir)
    package_json = base / "package.json"
    if not package_json.is_file():
        return []
    try:
        package = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.debug("Unreadable package.json", extra={"path": str(package_json), "error": str(exc)})
        return []
    if not isinstance(package, dict):
        return []

    scripts = package.get("scripts") or {}
    name = package.get("name") or base.name
    detected: list[DetectedServer] = []
    for script in DEV_SCRIPTS:
        body = scripts.get(script) if isinstance(scripts, dict) else None
        if not body:
            continue
        match = _SCRIPT_PORT.search(str(body))
        port = int(match.group(1)) if match else DEFAULT_NODE_PORT
        detected.append(DetectedServer(type="node", name=name, command=f"npm run {script}", ports=[port]))
    return detected


def _published_port(entry: Any) -> int | None:
    if isinstance(entry, dict):
        value = entry.get("published") or entry.get("target")
        return int(value) if str(value or "").isdigit() else None
    text = str(entry).split("/")[0]
    parts = text.split(":")
    # HOST:CONTAINER or IP:HOST:CONTAINER publish on the second-to-last part.
    candidate = parts[-2] if len(parts) >= 2 else parts[0]
    return int(candidate) if candidate.isdigit() else None


def parse_compose_file(path: str | Path) -> dict[str, list[int]]:
    """Map each compose service to its published host ports."""

    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.debug("Unreadable compose file", extra={"path": str(path), "error": str(exc)})
        return {}
    services = document.get("services") if isinstance(document, dict) else None
    if not isinstance(services, dict):
        return {}

    parsed: dict[str, list[int]] = {}
    for name, service in services.items():
        entries = service.get("ports") if isinstance(service, dict) else None
        ports = [port for port in map(_published_port, entries or []) if port is not None]
        parsed[str(name)] = ports
    return parsed


async def detect_docker_services(working_dir: str | Path, docker: DockerCLI | None = None) -> list[DetectedServer]:
    """List compose services of the first compose file found in ``working_dir``."""

    base = Path(working_dir)
    docker = docker or DockerCLI()
    for filename in COMPOSE_FILES:
        compose_path = base / filename
        if not compose_path.is_file():
            continue
        declared = parse_compose_file(compose_path)
        services = await docker.compose_services(filename, base)
        if services is None:
            services = list(declared)
        return [
            DetectedServer(type="docker", name=service, command=service, ports=declared.get(service, []))
            for service in services
        ]
    return []


async def detect_servers(working_dir: str | Path, docker: DockerCLI | None = None) -> list[DetectedServer]:
    return [*detect_npm_scripts(working_dir), *await detect_docker_services(working_dir, docker)]


__all__ = [
    "COMPOSE_FILES",
    "DEV_SCRIPTS",
    "DetectedServer",
    "detect_docker_services",
    "detect_npm_scripts",
    "detect_servers",
    "parse_compose_file",
]
