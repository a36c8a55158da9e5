"""Agent CLI provider definitions."""

from .models import AgentProvider
from .registry import BUILTIN_PROVIDERS, ProviderLoadError, ProviderNotFoundError, ProviderRegistry

__all__ = [
    "AgentProvider",
    "BUILTIN_PROVIDERS",
    "ProviderLoadError",
    "ProviderNotFoundError",
    "ProviderRegistry",
]
