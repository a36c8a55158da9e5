from __future__ import annotations

import asyncio
import json
from pathlib import Path

from agent_os.orchestration import read_worktree_config, setup_worktree
from agent_os.orchestration.env_setup import (
    detect_package_manager,
    expand_variables,
    find_env_files,
    get_dev_server_command,
)


def _project(tmp_path: Path) -> tuple[Path, Path]:
    source = tmp_path / "project"
    worktree = tmp_path / "worktree"
    source.mkdir()
    worktree.mkdir()
    return source, worktree


def test_env_files_copied_without_templates(tmp_path: Path) -> None:
    source, worktree = _project(tmp_path)
    (source / ".env").write_text("A=1\n", encoding="utf-8")
    (source / ".env.local").write_text("B=2\n", encoding="utf-8")
    (source / ".env.example").write_text("A=\n", encoding="utf-8")

    assert find_env_files(source) == [".env", ".env.local"]

    result = asyncio.run(setup_worktree(worktree, source))

    assert result.success
    assert result.env_files_copied == [".env", ".env.local"]
    assert (worktree / ".env.local").read_text(encoding="utf-8") == "B=2\n"
    assert not (worktree / ".env.example").exists()
    assert result.steps[0].name == "Copy env files"


def test_config_commands_run_with_exported_variables(tmp_path: Path) -> None:
    source, worktree = _project(tmp_path)
    config_dir = source / ".agent-os"
    config_dir.mkdir()
    (config_dir / "worktrees.json").write_text(
        json.dumps(
            {
                "setup": [
                    "echo $PORT > port.txt",
                    "echo \"$ROOT_WORKTREE_PATH\" > root.txt",
                    "exit 4",
                    "touch after.txt",
                ]
            }
        ),
        encoding="utf-8",
    )

    result = asyncio.run(setup_worktree(worktree, source, port=3110))

    assert not result.success
    assert (worktree / "port.txt").read_text(encoding="utf-8").strip() == "3110"
    assert (worktree / "root.txt").read_text(encoding="utf-8").strip() == str(source)
    # A failing step does not stop later ones.
    assert (worktree / "after.txt").exists()
    failed = [step for step in result.steps if not step.success]
    assert [step.name for step in failed] == ["Config: exit 4"]
    assert result.port == 3110


def test_yaml_config_and_dev_server_command(tmp_path: Path) -> None:
    source, _ = _project(tmp_path)
    config_dir = source / ".agent-os"
    config_dir.mkdir()
    (config_dir / "worktrees.yaml").write_text(
        "setup: make bootstrap\ndevServer:\n  command: bin/dev\n  portEnvVar: APP_PORT\n",
        encoding="utf-8",
    )

    config = read_worktree_config(source)

    assert config is not None
    assert config.setup == ["make bootstrap"]
    command = get_dev_server_command(source, 3120)
    assert command.command == "APP_PORT=3120 bin/dev"
    assert command.port == 3120


def test_unreadable_config_is_skipped(tmp_path: Path) -> None:
    source, _ = _project(tmp_path)
    (source / ".agent-os.json").write_text("{broken", encoding="utf-8")

    assert read_worktree_config(source) is None


def test_package_manager_detection_order(tmp_path: Path) -> None:
    source, _ = _project(tmp_path)
    assert detect_package_manager(source) is None

    (source / "package.json").write_text("{}", encoding="utf-8")
    assert detect_package_manager(source).name == "npm"

    (source / "yarn.lock").write_text("", encoding="utf-8")
    assert detect_package_manager(source).name == "yarn"

    (source / "pnpm-lock.yaml").write_text("", encoding="utf-8")
    assert detect_package_manager(source).install_command == "pnpm install"


def test_skip_install_and_npm_dev_fallback(tmp_path: Path) -> None:
    source, worktree = _project(tmp_path)
    (source / "package.json").write_text(json.dumps({"scripts": {"dev": "vite"}}), encoding="utf-8")

    result = asyncio.run(setup_worktree(worktree, source, skip_install=True))

    assert result.steps == []
    assert result.package_manager is None
    assert get_dev_server_command(source).command == "PORT=3000 npm run dev"


def test_expand_variables() -> None:
    assert expand_variables("cp $ROOT_WORKTREE_PATH/.env .", {"ROOT_WORKTREE_PATH": "/src"}) == "cp /src/.env ."
