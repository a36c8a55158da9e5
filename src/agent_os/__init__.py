"""Session and worker orchestration engine for terminal-hosted coding agents."""

__version__ = "0.1.0"

__all__ = ["__version__"]
