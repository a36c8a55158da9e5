"""Worker orchestration and worktree environment setup."""

from .env_setup import SetupResult, SetupStep, WorktreeConfig, read_worktree_config, setup_worktree
from .orchestrator import (
    WorkerInfo,
    WorkerNotFoundError,
    WorkerOrchestrator,
    WorkersSummary,
    task_to_branch_name,
    task_to_session_name,
)

__all__ = [
    "SetupResult",
    "SetupStep",
    "WorkerInfo",
    "WorkerNotFoundError",
    "WorkerOrchestrator",
    "WorkersSummary",
    "WorktreeConfig",
    "read_worktree_config",
    "setup_worktree",
    "task_to_branch_name",
    "task_to_session_name",
]
