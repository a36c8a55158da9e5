"""agent-os diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json

from agent_os.config import AgentOSSettings
from agent_os.engine import Engine, build_engine
from agent_os.storage import ChromaStore, ChromaUnavailableError


def load_settings() -> AgentOSSettings:
    return AgentOSSettings().resolve_paths()


def load_store(settings: AgentOSSettings) -> ChromaStore:
    store = ChromaStore(settings.chroma_persist_path)
    try:
        store.ping()
    except ChromaUnavailableError as exc:
        print(f"Storage unavailable: {exc}")
        raise SystemExit(1)
    return store


def load_engine() -> Engine:
    settings = load_settings()
    return build_engine(settings, store=load_store(settings))


def cmd_workers(args: argparse.Namespace) -> None:
    engine = load_engine()
    workers = asyncio.run(engine.orchestrator.get_workers(args.conductor_id))
    print(json.dumps([worker.to_dict() for worker in workers], indent=2))


def cmd_servers(args: argparse.Namespace) -> None:
    engine = load_engine()
    if args.project_id:
        servers = asyncio.run(engine.dev_servers.get_servers_by_project(args.project_id))
    else:
        servers = asyncio.run(engine.dev_servers.get_all_servers())
    payload = [
        {
            "id": server.id,
            "project_id": server.project_id,
            "type": server.type,
            "name": server.name,
            "status": server.status,
            "pid": server.pid,
            "container_id": server.container_id,
            "ports": server.port_list,
        }
        for server in servers
    ]
    print(json.dumps(payload, indent=2))


def cmd_cleanup(args: argparse.Namespace) -> None:
    engine = load_engine()
    corrected = asyncio.run(engine.dev_servers.cleanup_orphaned_servers())
    print(json.dumps({"corrected": corrected}, indent=2))


def cmd_ports(args: argparse.Namespace) -> None:
    engine = load_engine()
    payload = {
        "assigned": sorted(engine.store.assigned_ports()),
        "next_available": engine.ports.find_available_port(),
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="agent-os diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_workers = sub.add_parser("workers", help="List a conductor's workers with live status")
    p_workers.add_argument("conductor_id")
    p_workers.set_defaults(func=cmd_workers)

    p_servers = sub.add_parser("servers", help="List dev servers with live status")
    p_servers.add_argument("--project-id")
    p_servers.set_defaults(func=cmd_servers)

    p_cleanup = sub.add_parser("cleanup", help="Mark dead dev servers recorded as running as stopped")
    p_cleanup.set_defaults(func=cmd_cleanup)

    p_ports = sub.add_parser("ports", help="Show assigned ports and the next free one")
    p_ports.set_defaults(func=cmd_ports)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
