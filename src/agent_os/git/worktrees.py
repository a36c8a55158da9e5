"""Git worktree management for isolated worker checkouts."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..paths import expand_home

logger = logging.getLogger(__name__)

_PROTECTED_BRANCHES = {"main", "master"}


class GitError(RuntimeError):
    """Raised when a worktree operation cannot be completed."""


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class WorktreeInfo:
    worktree_path: Path
    branch_name: str
    base_branch: str
    project_path: Path
    project_name: str


@dataclass(slots=True)
class WorktreeEntry:
    path: Path
    branch: str
    head: str


def slugify(text: str) -> str:
    """Lowercase ``text`` and collapse every non-alphanumeric run into a dash."""

    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:50]


def generate_branch_name(feature: str) -> str:
    return f"feature/{slugify(feature)}"


def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    """Parse ``git worktree list --porcelain`` output; the main worktree comes first."""

    entries: list[WorktreeEntry] = []
    for block in output.split("\n\n"):
        path = branch = head = ""
        for line in block.splitlines():
            if line.startswith("worktree "):
                path = line[len("worktree "):]
            elif line.startswith("branch "):
                branch = line[len("branch "):].removeprefix("refs/heads/")
            elif line.startswith("HEAD "):
                head = line[len("HEAD "):]
        if path:
            entries.append(WorktreeEntry(path=Path(path), branch=branch, head=head))
    return entries


class WorktreeManager:
    """Create and remove git worktrees under a single managed directory."""

    def __init__(
        self,
        worktrees_dir: Path,
        *,
        home_dir: Path | None = None,
        git_executable: str = "git",
    ) -> None:
        self._home_dir = Path(home_dir) if home_dir else Path.home()
        self._worktrees_dir = expand_home(worktrees_dir, self._home_dir)
        self._git_executable = git_executable

    @property
    def worktrees_dir(self) -> Path:
        return self._worktrees_dir

    def is_managed(self, path: str | Path) -> bool:
        resolved = expand_home(path, self._home_dir)
        return resolved == self._worktrees_dir or self._worktrees_dir in resolved.parents

    async def is_git_repo(self, path: str | Path) -> bool:
        try:
            result = await self._git("rev-parse", "--git-dir", cwd=self._resolve(path), timeout=5)
        except GitError:
            return False
        return result.ok

    async def branch_exists(self, project_path: str | Path, branch_name: str) -> bool:
        result = await self._git(
            "rev-parse", "--verify", "--quiet", branch_name, cwd=self._resolve(project_path), timeout=5
        )
        return result.ok

    async def current_branch(self, project_path: str | Path) -> str | None:
        try:
            result = await self._git(
                "rev-parse", "--abbrev-ref", "HEAD", cwd=self._resolve(project_path), timeout=5
            )
        except GitError:
            return None
        branch = result.stdout.strip()
        if not result.ok or not branch or branch == "HEAD":
            return None
        return branch

    async def create_worktree(
        self,
        project_path: str | Path,
        branch_name: str,
        base_branch: str | None = None,
    ) -> WorktreeInfo:
        project = self._resolve(project_path)
        if not await self.is_git_repo(project):
            raise GitError(f"Not a git repository: {project_path}")

        if await self.branch_exists(project, branch_name):
            raise GitError(f"Branch already exists: {branch_name}")

        base = base_branch or await self.current_branch(project) or "main"
        worktree_path = self._worktrees_dir / f"{project.name}-{slugify(branch_name)}"
        if worktree_path.exists():
            raise GitError(f"Worktree path already exists: {worktree_path}")

        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        result = await self._git(
            "worktree", "add", "-b", branch_name, str(worktree_path), base, cwd=project, timeout=30
        )
        if not result.ok:
            raise GitError(f"Failed to create worktree: {result.stderr.strip()}")

        logger.info(
            "Created worktree",
            extra={"worktree": str(worktree_path), "branch": branch_name, "base_branch": base},
        )
        return WorktreeInfo(
            worktree_path=worktree_path,
            branch_name=branch_name,
            base_branch=base,
            project_path=project,
            project_name=project.name,
        )

    async def delete_worktree(
        self,
        worktree_path: str | Path,
        project_path: str | Path,
        delete_branch: bool = False,
    ) -> bool:
        """Remove a worktree; returns True once its directory is confirmed gone."""

        project = self._resolve(project_path)
        worktree = self._resolve(worktree_path)

        branch_name: str | None = None
        if delete_branch and worktree.exists():
            branch_name = await self.current_branch(worktree)

        try:
            removed = (
                await self._git("worktree", "remove", str(worktree), "--force", cwd=project, timeout=30)
            ).ok
        except GitError:
            removed = False

        if not removed:
            if worktree.exists():
                await asyncio.to_thread(shutil.rmtree, worktree, True)
            try:
                await self._git("worktree", "prune", cwd=project, timeout=10)
            except GitError as exc:
                logger.debug("git worktree prune failed", extra={"project": str(project), "error": str(exc)})

        if branch_name and branch_name not in _PROTECTED_BRANCHES:
            try:
                await self._git("branch", "-D", branch_name, cwd=project, timeout=10)
            except GitError as exc:
                logger.debug("Branch deletion failed", extra={"branch": branch_name, "error": str(exc)})

        return not worktree.exists()

    async def list_worktrees(self, project_path: str | Path) -> list[WorktreeEntry]:
        try:
            result = await self._git(
                "worktree", "list", "--porcelain", cwd=self._resolve(project_path), timeout=10
            )
        except GitError:
            return []
        return parse_worktree_list(result.stdout) if result.ok else []

    async def main_worktree(self, path: str | Path) -> Path | None:
        """Return the repository checkout that ``path`` was branched from."""

        entries = await self.list_worktrees(path)
        return entries[0].path if entries else None

    def _resolve(self, path: str | Path) -> Path:
        return expand_home(path, self._home_dir)

    async def _git(self, *args: str, cwd: Path, timeout: float) -> GitResult:
        cmd = [self._git_executable, "-C", str(cwd), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise GitError(f"Unable to run {self._git_executable}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return GitResult(args=tuple(cmd), returncode=-1, stdout="", stderr=f"timed out after {timeout}s")

        return GitResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
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
