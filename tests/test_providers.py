from pathlib import Path
import textwrap

import pytest

from agent_os.claude.utils import sanitize_environment
from agent_os.providers import ProviderLoadError, ProviderNotFoundError, ProviderRegistry


def write_provider(path: Path, *, name: str, provider_id: str = "claude") -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: {provider_id}
            name: {name}
            cli: claude
            auto_approve_flag: --dangerously-skip-permissions
            model_flag: --model
            ready_patterns:
              - "? for shortcuts"
            """
        ).strip().format(provider_id=provider_id, name=name),
        encoding="utf-8",
    )


def test_builtins_available_without_paths() -> None:
    registry = ProviderRegistry()

    providers = registry.load_all()

    assert {"claude", "codex", "gemini", "aider", "shell"} <= set(providers)
    assert registry.get(None).id == "claude"


def test_later_paths_override_earlier(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_provider(base / "claude.yaml", name="Base Claude")
    write_provider(override / "claude.yml", name="Override Claude")

    registry = ProviderRegistry([base, override, tmp_path / "missing"])

    assert registry.get("claude").name == "Override Claude"
    assert registry.search_paths == [base, override]


def test_custom_provider_added(tmp_path: Path) -> None:
    write_provider(tmp_path / "mine.yaml", name="Mine", provider_id="mine")

    assert ProviderRegistry([tmp_path]).get("mine").cli == "claude"


def test_unknown_provider() -> None:
    with pytest.raises(ProviderNotFoundError):
        ProviderRegistry().get("nope")


def test_invalid_provider_file(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: \ncli: x", encoding="utf-8")

    with pytest.raises(ProviderLoadError):
        ProviderRegistry([tmp_path]).load_all()


def test_command_line_flags() -> None:
    registry = ProviderRegistry()

    claude = registry.get("claude")
    assert claude.command_line(model="opus", auto_approve=True) == (
        "claude --dangerously-skip-permissions --model opus"
    )
    assert claude.command_line(resume_id="abc") == "claude --resume abc"

    codex = registry.get("codex")
    assert codex.build_flags(auto_approve=True, resume_id="abc") == ["--approval-mode", "full-auto"]
    assert registry.get("shell").command_line(model="opus", auto_approve=True) == "bash"


def test_ready_and_trust_detection() -> None:
    claude = ProviderRegistry().get("claude")

    assert claude.is_ready("────\n  ? for shortcuts")
    assert not claude.is_ready("Loading...")
    assert claude.shows_trust_prompt("Do you trust the files in this folder?\nYes, continue")


def test_sanitize_environment_strips_virtualenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("PATH", "/bin")

    env = sanitize_environment({"PORT": "3100"})

    assert "PYTHONPATH" not in env
    assert env["PORT"] == "3100"
    assert env["PATH"].endswith("/bin")
    assert "/usr/local/bin" in env["PATH"].split(":")
