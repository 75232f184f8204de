"""Admission control that bounds automation feedback loops.

Two independent brakes apply before a rule may run for an event:
- causal depth: events at or beyond ``max_depth`` hops never fire rules;
- a per-board sliding-window limiter on rule firings.

Rejections are safety trips, not errors: the rule is skipped and logged.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque

from app.core.config import settings

logger = logging.getLogger("app.services.loop_guard")

REASON_MAX_DEPTH = "max_depth"
REASON_RATE_LIMITED = "rate_limited"


@dataclass(frozen=True, slots=True)
class GuardDecision:
    admitted: bool
    reason: str | None = None
    # True only for the first rate-limit rejection of a throttling episode.
    tripped: bool = False


ADMITTED = GuardDecision(admitted=True)


class LoopGuard:
    """Depth bound plus rolling per-board rate limiter."""

    def __init__(
        self,
        *,
        max_depth: int | None = None,
        max_firings: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_depth = settings.automation_max_chain_depth if max_depth is None else max_depth
        self.max_firings = settings.automation_rate_limit_max_firings if max_firings is None else max_firings
        self.window_seconds = (
            settings.automation_rate_limit_window_seconds if window_seconds is None else window_seconds
        )
        self._clock = clock
        self._firings: defaultdict[uuid.UUID, Deque[float]] = defaultdict(deque)
        self._throttled: set[uuid.UUID] = set()
        self.depth_rejections = 0
        self.rate_rejections = 0

    def _prune(self, board_id: uuid.UUID, now: float) -> Deque[float]:
        window = self._firings[board_id]
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        if len(window) < self.max_firings:
            self._throttled.discard(board_id)
        return window

    def admit(self, board_id: uuid.UUID, rule_id: uuid.UUID, depth: int) -> GuardDecision:
        """Decide whether ``rule_id`` may evaluate for an event at ``depth``."""
        if depth >= self.max_depth:
            self.depth_rejections += 1
            logger.warning(
                "Loop guard: rule %s skipped on board %s at depth %s (max %s)",
                rule_id,
                board_id,
                depth,
                self.max_depth,
            )
            return GuardDecision(admitted=False, reason=REASON_MAX_DEPTH)
        window = self._prune(board_id, self._clock())
        if len(window) >= self.max_firings:
            self.rate_rejections += 1
            first_trip = board_id not in self._throttled
            self._throttled.add(board_id)
            if first_trip:
                logger.warning(
                    "Loop guard: board %s throttled after %s firings in %ss",
                    board_id,
                    len(window),
                    self.window_seconds,
                )
            else:
                logger.debug("Loop guard: rule %s still throttled on board %s", rule_id, board_id)
            return GuardDecision(admitted=False, reason=REASON_RATE_LIMITED, tripped=first_trip)
        return ADMITTED

    def record_firing(self, board_id: uuid.UUID) -> None:
        """Count a rule whose conditions passed and whose actions will run."""
        self._firings[board_id].append(self._clock())

    def snapshot(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "max_depth": self.max_depth,
            "max_firings": self.max_firings,
            "window_seconds": self.window_seconds,
            "depth_rejections": self.depth_rejections,
            "rate_rejections": self.rate_rejections,
            "throttled_boards": sorted(str(board_id) for board_id in self._throttled),
            "active_boards": sum(
                1 for window in self._firings.values() if window and window[-1] > now - self.window_seconds
            ),
        }
