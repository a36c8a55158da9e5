"""Construct the long-lived component graph once per host process."""

from __future__ import annotations

from dataclasses import dataclass

from .claude import ProcessManager
from .config import AgentOSSettings
from .devservers import DevServerSupervisor, DockerCLI, PortAllocator
from .git import WorktreeManager
from .orchestration import WorkerOrchestrator
from .providers import ProviderRegistry
from .status import StatusDetector
from .storage import ChromaStore, SessionStore
from .tmux import TmuxClient


@dataclass(slots=True)
class Engine:
    settings: AgentOSSettings
    store: SessionStore
    tmux: TmuxClient
    providers: ProviderRegistry
    detector: StatusDetector
    processes: ProcessManager
    worktrees: WorktreeManager
    ports: PortAllocator
    orchestrator: WorkerOrchestrator
    dev_servers: DevServerSupervisor


def build_engine(
    settings: AgentOSSettings,
    *,
    store: SessionStore | None = None,
    tmux: TmuxClient | None = None,
) -> Engine:
    """Wire every component from ``settings``; callers share the returned instance."""

    store = store or ChromaStore(settings.chroma_persist_path)
    tmux = tmux or TmuxClient(settings.tmux_path)
    providers = ProviderRegistry(settings.provider_paths)
    detector = StatusDetector(
        tmux,
        cooldown=settings.status_cooldown_seconds,
        spike_window=settings.spike_window_seconds,
        sustained_threshold=settings.sustained_threshold,
        cache_ttl=settings.session_cache_seconds,
    )
    processes = ProcessManager(store, executable=settings.claude_path, home_dir=settings.home_dir)
    worktrees = WorktreeManager(settings.worktrees_dir, home_dir=settings.home_dir)
    ports = PortAllocator(
        store,
        base=settings.port_base,
        increment=settings.port_increment,
        max_port=settings.port_max,
    )
    orchestrator = WorkerOrchestrator(
        store,
        tmux,
        detector,
        providers,
        worktrees,
        ports=ports,
        home_dir=settings.home_dir,
        default_model=settings.default_model,
        ready_poll_interval=settings.ready_poll_interval,
        ready_timeout=settings.ready_timeout,
        setup_timeout=settings.setup_timeout,
    )
    dev_servers = DevServerSupervisor(
        store,
        logs_dir=settings.logs_dir,
        home_dir=settings.home_dir,
        docker=DockerCLI(settings.docker_path),
    )
    return Engine(
        settings=settings,
        store=store,
        tmux=tmux,
        providers=providers,
        detector=detector,
        processes=processes,
        worktrees=worktrees,
        ports=ports,
        orchestrator=orchestrator,
        dev_servers=dev_servers,
    )


__all__ = ["Engine", "build_engine"]
