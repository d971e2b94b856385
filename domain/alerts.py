"""Mapping of active issues and away duration to peripheral commands."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from domain.models import ActiveIssue, IssueType

logger = logging.getLogger(__name__)

# Command vocabulary understood by the peripheral
NORMAL = "NORMAL"
POSTURE_ALERT = "POSTURE_ALERT"
DROWSINESS_ALERT = "DROWSINESS_ALERT"
FOCUS_ALERT = "FOCUS_ALERT"
USER_AWAY = "USER_AWAY"
USER_RETURN = "USER_RETURN"

MAX_LEVEL = 5

# Seconds of continuous absence → away level
AWAY_LEVELS: tuple[tuple[float, int], ...] = ((300.0, 5), (120.0, 3), (30.0, 1))

STATUS_OK = "posture correct"


def leveled(base: str, level: int) -> str:
    return f"{base}_L{level}"


def status_text(issues: Sequence[ActiveIssue]) -> str:
    if not issues:
        return STATUS_OK
    return "bad posture: " + ", ".join(i.description for i in issues)


class AlertEscalator:
    """Chooses the single command for the current set of active issues."""

    @staticmethod
    def command_for(issues: Sequence[ActiveIssue]) -> str:
        if not issues:
            return NORMAL

        types = {i.type for i in issues}
        count = len(issues)

        if IssueType.DROWSINESS in types:
            level = min(count + 1, MAX_LEVEL)
            return leveled(DROWSINESS_ALERT, level) if level > 1 else DROWSINESS_ALERT

        if IssueType.USER_AWAY in types:
            level = min(count + 1, MAX_LEVEL)
            return leveled(FOCUS_ALERT, level) if level > 1 else FOCUS_ALERT

        if count >= 3:
            level = 5
        elif count == 2:
            level = 3
        else:
            level = 1
        return leveled(POSTURE_ALERT, level)


class CommandGate:
    """Suppresses a command identical to the previous one let through."""

    def __init__(self) -> None:
        self.last: Optional[str] = None

    def reset(self) -> None:
        self.last = None

    def admit(self, command: str) -> bool:
        if command == self.last:
            logger.debug("Command suppressed (repeat): %s", command)
            return False
        self.last = command
        return True


class AwayEscalator:
    """Raises the away alert level with absence duration.

    Driven by :meth:`check`, which only looks at the clock every
    *check_interval_ms* so it can run from a timer with no frames arriving.
    """

    def __init__(self, check_interval_ms: float = 10_000.0) -> None:
        self.check_interval_ms = check_interval_ms
        self._away_since: Optional[float] = None
        self._next_check_at: Optional[float] = None
        self._level = 0

    @property
    def active(self) -> bool:
        return self._away_since is not None

    @property
    def level(self) -> int:
        return self._level

    def start(self, now_ms: float) -> str:
        self._away_since = now_ms
        self._next_check_at = now_ms + self.check_interval_ms
        self._level = 0
        logger.info("Away escalation started.")
        return USER_AWAY

    def check(self, now_ms: float) -> Optional[str]:
        if self._away_since is None or self._next_check_at is None:
            return None
        if now_ms < self._next_check_at:
            return None
        self._next_check_at = now_ms + self.check_interval_ms

        away_s = (now_ms - self._away_since) / 1000.0
        new_level = next((lvl for secs, lvl in AWAY_LEVELS if away_s >= secs), 0)
        if new_level == self._level:
            return None
        self._level = new_level
        logger.info("Away for %.0f s – alert level %d", away_s, new_level)
        return leveled(USER_AWAY, new_level) if new_level else USER_AWAY

    def stop(self) -> Optional[str]:
        """End escalation because the user returned."""
        if self._away_since is None:
            return None
        self.cancel()
        logger.info("Away escalation stopped – user returned.")
        return USER_RETURN

    def cancel(self) -> None:
        self._away_since = None
        self._next_check_at = None
        self._level = 0
