"""Provider models describing agent CLIs."""

from __future__ import annotations

import shlex

from pydantic import BaseModel, Field, field_validator


class AgentProvider(BaseModel):
    """Declarative description of an agent CLI and how to drive it in a terminal."""

    id: str = Field(..., description="Stable identifier, also used as the tmux session-name prefix.")
    name: str = Field(..., description="Display name of the agent CLI.")
    description: str = Field(default="", description="One-line description for pickers.")
    cli: str = Field(..., description="Executable name or path of the CLI.")
    config_dir: str | None = Field(default=None, description="Where the CLI keeps its own config.")
    auto_approve_flag: str | None = Field(
        default=None,
        description="Flag that disables interactive permission prompts.",
    )
    model_flag: str | None = Field(default=None, description="Flag used to select a model.")
    resume_flag: str | None = Field(default=None, description="Flag used to resume a prior session.")
    default_args: list[str] = Field(
        default_factory=list,
        description="Arguments always passed to the CLI.",
    )
    supports_resume: bool = False
    supports_fork: bool = False
    ready_patterns: list[str] = Field(
        default_factory=list,
        description="Case-insensitive substrings in the last pane lines meaning the CLI accepts input.",
    )
    trust_patterns: list[str] = Field(
        default_factory=list,
        description="Case-insensitive substrings of a startup trust banner confirmed with Enter.",
    )

    @field_validator("id", "cli")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Provider id and cli must not be empty")
        return normalized

    @field_validator("ready_patterns", "trust_patterns", "default_args", mode="before")
    @classmethod
    def _ensure_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Pattern and argument fields must be sequences of strings")

    def build_flags(
        self,
        *,
        model: str | None = None,
        auto_approve: bool = False,
        resume_id: str | None = None,
    ) -> list[str]:
        flags: list[str] = list(self.default_args)
        if auto_approve and self.auto_approve_flag:
            flags.extend(shlex.split(self.auto_approve_flag))
        if model and self.model_flag:
            flags.extend([*shlex.split(self.model_flag), model])
        if resume_id and self.supports_resume and self.resume_flag:
            flags.extend([*shlex.split(self.resume_flag), resume_id])
        return flags

    def command_line(self, **flag_options) -> str:
        """Return the shell command line that starts this CLI."""

        return shlex.join([self.cli, *self.build_flags(**flag_options)])

    def is_ready(self, tail: str) -> bool:
        lowered = tail.lower()
        return any(pattern.lower() in lowered for pattern in self.ready_patterns)

    def shows_trust_prompt(self, content: str) -> bool:
        lowered = content.lower()
        return any(pattern.lower() in lowered for pattern in self.trust_patterns)


__all__ = ["AgentProvider"]
