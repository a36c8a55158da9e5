"""Classify tmux-hosted agent sessions from pane text and activity timestamps."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal, Protocol

from ..tmux import TmuxError
from .patterns import has_busy_indicator, has_waiting_prompt

logger = logging.getLogger(__name__)

SessionLiveStatus = Literal["running", "waiting", "idle", "dead"]


class PaneSource(Protocol):
    """The slice of the tmux client the detector depends on."""

    async def list_sessions(self) -> dict[str, int]: ...

    async def capture_pane(self, name: str, lines: int | None = None) -> str: ...


@dataclass(slots=True)
class StatusTracker:
    """Per-session memory between polls."""

    last_change_time: float
    acknowledged: bool
    last_activity: int
    spike_window_start: float | None = None
    spike_change_count: int = 0


class StatusDetector:
    """Derive running/waiting/idle/dead for named tmux sessions.

    Rules are evaluated in a fixed priority order: busy indicator, waiting prompt,
    sustained activity spike, spike-window hold, cooldown, then acknowledgement.
    Every tmux failure is treated as "no new information" and never raised.
    """

    def __init__(
        self,
        tmux: PaneSource,
        *,
        cooldown: float = 2.0,
        spike_window: float = 1.0,
        sustained_threshold: int = 2,
        cache_ttl: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tmux = tmux
        self._cooldown = cooldown
        self._spike_window = spike_window
        self._sustained_threshold = sustained_threshold
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._trackers: dict[str, StatusTracker] = {}
        self._sessions: dict[str, int] = {}
        self._cache_updated_at: float | None = None

    # -- liveness cache ----------------------------------------------------------

    async def refresh_cache(self, force: bool = False) -> None:
        now = self._clock()
        if (
            not force
            and self._cache_updated_at is not None
            and now - self._cache_updated_at < self._cache_ttl
        ):
            return
        try:
            sessions = await self._tmux.list_sessions()
        except TmuxError as exc:
            logger.debug("Keeping previous session cache", extra={"error": str(exc)})
            return
        self._sessions = dict(sessions)
        self._cache_updated_at = now

    def session_exists(self, name: str) -> bool:
        return name in self._sessions

    def tracker_for(self, name: str) -> StatusTracker | None:
        return self._trackers.get(name)

    # -- public API --------------------------------------------------------------

    async def get_status(self, session_name: str) -> SessionLiveStatus:
        await self.refresh_cache()
        return await self._classify(session_name)

    async def get_all_statuses(self, names: list[str]) -> dict[str, SessionLiveStatus]:
        await self.refresh_cache()
        statuses = await asyncio.gather(*(self._classify(name) for name in names))
        return dict(zip(names, statuses))

    def acknowledge(self, session_name: str) -> None:
        tracker = self._trackers.get(session_name)
        if tracker is not None:
            tracker.acknowledged = True

    def cleanup(self) -> None:
        for name in [name for name in self._trackers if name not in self._sessions]:
            del self._trackers[name]

    # -- rules -------------------------------------------------------------------

    async def _classify(self, name: str) -> SessionLiveStatus:
        if not self.session_exists(name):
            self._trackers.pop(name, None)
            return "dead"

        timestamp = self._sessions.get(name, 0)
        tracker = self._tracker(name, timestamp)
        try:
            content = await self._tmux.capture_pane(name)
        except TmuxError:
            content = ""

        for rule in (
            lambda: self._busy_rule(tracker, content),
            lambda: self._waiting_rule(content),
            lambda: self._spike_rule(tracker, timestamp),
            lambda: self._spike_hold_rule(tracker),
            lambda: self._cooldown_rule(tracker),
        ):
            status = rule()
            if status is not None:
                return status
        return self._settled(tracker)

    def _tracker(self, name: str, timestamp: int) -> StatusTracker:
        tracker = self._trackers.get(name)
        if tracker is None:
            tracker = StatusTracker(
                last_change_time=self._clock() - self._cooldown,
                acknowledged=True,
                last_activity=timestamp,
            )
            self._trackers[name] = tracker
        return tracker

    def _busy_rule(self, tracker: StatusTracker, content: str) -> SessionLiveStatus | None:
        if not has_busy_indicator(content):
            return None
        tracker.last_change_time = self._clock()
        tracker.acknowledged = False
        return "running"

    def _waiting_rule(self, content: str) -> SessionLiveStatus | None:
        return "waiting" if has_waiting_prompt(content) else None

    def _spike_rule(self, tracker: StatusTracker, timestamp: int) -> SessionLiveStatus | None:
        now = self._clock()
        if tracker.last_activity != timestamp:
            tracker.last_activity = timestamp
            window_expired = (
                tracker.spike_window_start is None
                or now - tracker.spike_window_start > self._spike_window
            )
            if window_expired:
                tracker.spike_window_start = now
                tracker.spike_change_count = 1
                return None
            tracker.spike_change_count += 1
            if tracker.spike_change_count >= self._sustained_threshold:
                tracker.last_change_time = now
                tracker.acknowledged = False
                tracker.spike_window_start = None
                tracker.spike_change_count = 0
                return "running"
            return None

        # A lone change whose window has closed was jitter.
        if (
            tracker.spike_change_count == 1
            and tracker.spike_window_start is not None
            and now - tracker.spike_window_start > self._spike_window
        ):
            tracker.spike_window_start = None
            tracker.spike_change_count = 0
        return None

    def _spike_hold_rule(self, tracker: StatusTracker) -> SessionLiveStatus | None:
        if tracker.spike_window_start is None:
            return None
        if self._clock() - tracker.spike_window_start >= self._spike_window:
            return None
        return "running" if self._in_cooldown(tracker) else self._settled(tracker)

    def _cooldown_rule(self, tracker: StatusTracker) -> SessionLiveStatus | None:
        return "running" if self._in_cooldown(tracker) else None

    def _in_cooldown(self, tracker: StatusTracker) -> bool:
        return self._clock() - tracker.last_change_time < self._cooldown

    @staticmethod
    def _settled(tracker: StatusTracker) -> SessionLiveStatus:
        return "idle" if tracker.acknowledged else "waiting"


__all__ = ["PaneSource", "SessionLiveStatus", "StatusDetector", "StatusTracker"]
