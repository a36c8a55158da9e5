"""Terminal multiplexer integration."""

from .client import TmuxClient, TmuxError, TmuxResult, escape_literal

__all__ = ["TmuxClient", "TmuxError", "TmuxResult", "escape_literal"]
