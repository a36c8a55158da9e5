"""Provider registry with YAML overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import AgentProvider


class ProviderLoadError(RuntimeError):
    """Raised when one or more provider files cannot be parsed."""


class ProviderNotFoundError(RuntimeError):
    """Raised when an unknown provider id is requested."""


BUILTIN_PROVIDERS: tuple[AgentProvider, ...] = (
    AgentProvider(
        id="claude",
        name="Claude Code",
        description="Anthropic's official CLI",
        cli="claude",
        config_dir="~/.claude",
        auto_approve_flag="--dangerously-skip-permissions",
        model_flag="--model",
        resume_flag="--resume",
        supports_resume=True,
        supports_fork=True,
        ready_patterns=["? for shortcuts", "?>"],
        trust_patterns=["ready to code here", "yes, continue", "need permission to work"],
    ),
    AgentProvider(
        id="codex",
        name="Codex",
        description="OpenAI's CLI",
        cli="codex",
        config_dir="~/.codex",
        auto_approve_flag="--approval-mode full-auto",
        model_flag="--model",
        ready_patterns=["send a message", "ctrl+c to quit"],
    ),
    AgentProvider(
        id="opencode",
        name="OpenCode",
        description="Multi-provider AI CLI",
        cli="opencode",
        config_dir="~/.opencode.json",
    ),
    AgentProvider(
        id="gemini",
        name="Gemini CLI",
        description="Google's AI CLI",
        cli="gemini",
        config_dir="~/.gemini",
        auto_approve_flag="--yolomode",
        model_flag="-m",
        ready_patterns=["type your message"],
    ),
    AgentProvider(
        id="aider",
        name="Aider",
        description="AI pair programming",
        cli="aider",
        config_dir="~/.aider",
        auto_approve_flag="--yes",
        model_flag="--model",
    ),
    AgentProvider(
        id="cursor",
        name="Cursor CLI",
        description="Cursor's AI agent",
        cli="cursor-agent",
        config_dir="~/.cursor",
        model_flag="--model",
    ),
    AgentProvider(
        id="shell",
        name="Terminal",
        description="Plain shell session",
        cli="bash",
    ),
)


class ProviderRegistry:
    """Built-in agent providers, overlaid with YAML definitions from disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._cache: dict[str, AgentProvider] | None = None

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentProvider]:
        """Return every provider keyed by id.

        Later search paths override earlier ones, and any file overrides a built-in
        definition with the same id.
        """

        if self._cache is not None:
            return dict(self._cache)

        providers = {provider.id: provider for provider in BUILTIN_PROVIDERS}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    provider = AgentProvider.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Provider validation error in {path}: {exc}")
                    continue

                providers[provider.id] = provider

        if errors:
            raise ProviderLoadError("; ".join(errors))

        self._cache = providers
        return dict(providers)

    def get(self, provider_id: str | None) -> AgentProvider:
        """Return a single provider by id; ``None`` selects claude."""

        providers = self.load_all()
        try:
            return providers[provider_id or "claude"]
        except KeyError as exc:
            raise ProviderNotFoundError(f"Unknown agent provider '{provider_id}'") from exc


__all__ = [
    "BUILTIN_PROVIDERS",
    "ProviderLoadError",
    "ProviderNotFoundError",
    "ProviderRegistry",
]
