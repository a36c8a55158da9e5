"""Pane-text heuristics used by the status detector."""

from __future__ import annotations

import re

BUSY_INDICATORS: tuple[str, ...] = (
    "esc to interrupt",
    "(esc to interrupt)",
    "· esc to interrupt",
)

SPINNER_CHARS: tuple[str, ...] = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

# Progress verbs shown next to the token counter while the agent works.
WHIMSICAL_WORDS: frozenset[str] = frozenset(
    {
        "accomplishing", "actioning", "actualizing", "baking", "booping", "brewing",
        "calculating", "cerebrating", "channelling", "churning", "clauding", "coalescing",
        "cogitating", "combobulating", "computing", "concocting", "conjuring", "considering",
        "contemplating", "cooking", "crafting", "creating", "crunching", "deciphering",
        "deliberating", "determining", "discombobulating", "divining", "doing", "effecting",
        "elucidating", "enchanting", "envisioning", "finagling", "flibbertigibbeting",
        "forging", "forming", "frolicking", "generating", "germinating", "hatching",
        "herding", "honking", "hustling", "ideating", "imagining", "incubating", "inferring",
        "jiving", "manifesting", "marinating", "meandering", "moseying", "mulling",
        "mustering", "musing", "noodling", "percolating", "perusing", "philosophising",
        "pondering", "pontificating", "processing", "puttering", "puzzling", "reticulating",
        "ruminating", "scheming", "schlepping", "shimmying", "shucking", "simmering",
        "smooshing", "spelunking", "spinning", "stewing", "sussing", "synthesizing",
        "thinking", "tinkering", "transmuting", "unfurling", "unravelling", "vibing",
        "wandering", "whirring", "wibbling", "wizarding", "working", "wrangling",
    }
)

WAITING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\[Y/n\]", re.IGNORECASE),
    re.compile(r"\[y/N\]", re.IGNORECASE),
    re.compile(r"Allow\?", re.IGNORECASE),
    re.compile(r"Approve\?", re.IGNORECASE),
    re.compile(r"Continue\?", re.IGNORECASE),
    re.compile(r"Press Enter to", re.IGNORECASE),
    re.compile(r"waiting for input", re.IGNORECASE),
    re.compile(r"\(yes/no\)", re.IGNORECASE),
    re.compile(r"Do you want to", re.IGNORECASE),
    re.compile(r"Enter to confirm.*Esc to cancel", re.IGNORECASE),
    re.compile(r">\s*1\.\s*Yes"),
    re.compile(r"Yes, allow all", re.IGNORECASE),
    re.compile(r"allow all edits", re.IGNORECASE),
    re.compile(r"allow all commands", re.IGNORECASE),
)

BUSY_SCAN_LINES = 10
SPINNER_SCAN_LINES = 5
WAITING_SCAN_LINES = 5


def _tail(content: str, count: int) -> list[str]:
    return content.split("\n")[-count:]


def has_busy_indicator(content: str) -> bool:
    """Return True when the recent pane lines show the agent mid-turn.

    Only the tail is inspected so that old scrollback cannot keep a session busy.
    """

    recent = "\n".join(_tail(content, BUSY_SCAN_LINES)).lower()
    if any(indicator in recent for indicator in BUSY_INDICATORS):
        return True
    if "tokens" in recent and any(word in recent for word in WHIMSICAL_WORDS):
        return True
    last_lines = "".join(_tail(content, SPINNER_SCAN_LINES))
    return any(char in last_lines for char in SPINNER_CHARS)


def has_waiting_prompt(content: str) -> bool:
    """Return True when the last pane lines show a yes/no or permission prompt."""

    recent = "\n".join(_tail(content, WAITING_SCAN_LINES))
    return any(pattern.search(recent) for pattern in WAITING_PATTERNS)


__all__ = [
    "BUSY_INDICATORS",
    "SPINNER_CHARS",
    "WAITING_PATTERNS",
    "WHIMSICAL_WORDS",
    "has_busy_indicator",
    "has_waiting_prompt",
]
