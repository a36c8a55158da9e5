"""Git worktree helpers."""

from .worktrees import (
    GitError,
    GitResult,
    WorktreeEntry,
    WorktreeInfo,
    WorktreeManager,
    generate_branch_name,
    parse_worktree_list,
    slugify,
)

__all__ = [
    "GitError",
    "GitResult",
    "WorktreeEntry",
    "WorktreeInfo",
    "WorktreeManager",
    "generate_branch_name",
    "parse_worktree_list",
    "slugify",
]
