"""Per-type debouncing of raw problem signals into active issues."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from domain.models import ActiveIssue, IssueCleared, IssueRaised, IssueRecord, IssueType

logger = logging.getLogger(__name__)


class IssueDebouncer:
    """A raw signal becomes an active issue only after it has been reported
    continuously for the type's debounce duration.  Clearing is immediate.

    Active issues keep the order in which they were promoted; the first one
    is the primary issue.
    """

    def __init__(self) -> None:
        self._pending: dict[IssueType, IssueRecord] = {}
        self._active: dict[IssueType, ActiveIssue] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(
        self, signals: Mapping[IssueType, bool], now_ms: float
    ) -> tuple[list[IssueRaised], list[IssueCleared]]:
        """Apply one frame's raw signals.  Types not in *signals* are left
        untouched.  Returns the promotions and clearances it caused."""
        raised: list[IssueRaised] = []
        cleared: list[IssueCleared] = []

        for issue_type, on in signals.items():
            if not on:
                if self._clear(issue_type):
                    cleared.append(IssueCleared(issue_type, now_ms))
                continue

            record = self._pending.get(issue_type)
            if record is None:
                self._pending[issue_type] = IssueRecord(issue_type, now_ms)
                logger.debug("Issue pending: %s", issue_type.value)
                record = self._pending[issue_type]

            if issue_type in self._active:
                continue
            held_ms = now_ms - record.first_observed_at
            if held_ms >= issue_type.debounce_ms:
                self._active[issue_type] = ActiveIssue(issue_type, issue_type.description)
                raised.append(IssueRaised(issue_type, now_ms))
                logger.debug("Issue active: %s (%.0f ms)", issue_type.value, held_ms)

        return raised, cleared

    def interrupt(self, types: Iterable[IssueType]) -> None:
        """Forget pending records of *types* that were not observed this
        frame.  Active issues stay until a false signal clears them."""
        for issue_type in types:
            if issue_type not in self._active and self._pending.pop(issue_type, None) is not None:
                logger.debug("Issue pending reset: %s", issue_type.value)

    def clear_all(self) -> list[IssueType]:
        """Drop every pending and active record; return the types that were
        active."""
        was_active = list(self._active)
        self._pending.clear()
        self._active.clear()
        return was_active

    @property
    def active(self) -> list[ActiveIssue]:
        return list(self._active.values())

    @property
    def pending(self) -> dict[IssueType, IssueRecord]:
        return dict(self._pending)

    def is_active(self, issue_type: IssueType) -> bool:
        return issue_type in self._active

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _clear(self, issue_type: IssueType) -> bool:
        self._pending.pop(issue_type, None)
        if self._active.pop(issue_type, None) is not None:
            logger.debug("Issue cleared: %s", issue_type.value)
            return True
        return False
