"""Live session status detection."""

from .detector import PaneSource, SessionLiveStatus, StatusDetector, StatusTracker
from .patterns import has_busy_indicator, has_waiting_prompt

__all__ = [
    "PaneSource",
    "SessionLiveStatus",
    "StatusDetector",
    "StatusTracker",
    "has_busy_indicator",
    "has_waiting_prompt",
]
