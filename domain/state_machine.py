"""Presence decision and Monitoring / UserAway hysteresis state machine."""

from __future__ import annotations

import logging
from typing import Optional

from domain.models import LandmarkFrame, MonitorState, StateChanged

logger = logging.getLogger(__name__)


def decide_presence(frame: LandmarkFrame, confidence: float) -> bool:
    """Is someone present in this frame?  First matching rule wins."""
    # Either eye probability counts as eye state, so a face in profile still
    # qualifies as strong evidence
    strong = (
        frame.face is not None
        and frame.face.tracking_id is not None
        and frame.face.has_eye_state
    )
    moderate = frame.pose is not None and len(frame.pose) >= 5

    if strong:
        return True
    if moderate and confidence > 0:
        return True
    if confidence > 3.0:
        return True
    if confidence < -5.0:
        return False
    return confidence > 0


class PresenceStateMachine:
    """Turns per-frame present/absent decisions into MONITORING ⇄ USER_AWAY
    transitions with asymmetric hysteresis.

    Leaving requires *away_threshold_ms* of continuous absence plus either
    enough consecutive absent frames or a clearly negative confidence.
    Returning requires a couple of consecutive present frames backed by
    confidence or by a short gap since the last presence.
    """

    def __init__(
        self,
        away_threshold_ms: float = 3000.0,
        absent_frames_threshold: int = 10,
        away_confidence_threshold: float = -3.0,
        return_frames: int = 2,
        return_gap_ms: float = 800.0,
        return_confidence_threshold: float = 1.0,
    ) -> None:
        self.away_threshold_ms = away_threshold_ms
        self.absent_frames_threshold = absent_frames_threshold
        self.away_confidence_threshold = away_confidence_threshold
        self.return_frames = return_frames
        self.return_gap_ms = return_gap_ms
        self.return_confidence_threshold = return_confidence_threshold

        self._state = MonitorState.IDLE
        self._absent_since: Optional[float] = None
        self._last_present_at: float = 0.0
        self._present_frames = 0
        self._absent_frames = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, now_ms: float) -> Optional[StateChanged]:
        self._reset_counters(now_ms)
        return self._transition(MonitorState.MONITORING, now_ms)

    def stop(self, now_ms: float) -> Optional[StateChanged]:
        self._reset_counters(now_ms)
        return self._transition(MonitorState.IDLE, now_ms)

    def update(self, present: bool, confidence: float, now_ms: float) -> Optional[StateChanged]:
        """Feed one frame's presence decision; return the transition it
        caused, if any."""
        if self._state is MonitorState.IDLE:
            return None
        if present:
            return self._on_present(confidence, now_ms)
        return self._on_absent(confidence, now_ms)

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def absent_since(self) -> Optional[float]:
        return self._absent_since

    @property
    def present_frames(self) -> int:
        return self._present_frames

    @property
    def absent_frames(self) -> int:
        return self._absent_frames

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _on_present(self, confidence: float, now_ms: float) -> Optional[StateChanged]:
        gap_ms = now_ms - self._last_present_at
        self._last_present_at = now_ms
        self._absent_frames = 0
        self._present_frames += 1

        if self._state is not MonitorState.USER_AWAY:
            self._absent_since = None
            return None

        return_confidence = self._present_frames * (confidence / 5.0)
        if self._present_frames >= self.return_frames and (
            return_confidence >= self.return_confidence_threshold or gap_ms < self.return_gap_ms
        ):
            logger.debug(
                "User return confirmed (%d frames, confidence=%.2f, return=%.2f)",
                self._present_frames,
                confidence,
                return_confidence,
            )
            self._absent_since = None
            self._present_frames = 0
            return self._transition(MonitorState.MONITORING, now_ms)
        return None

    def _on_absent(self, confidence: float, now_ms: float) -> Optional[StateChanged]:
        self._present_frames = 0
        self._absent_frames += 1
        if self._absent_since is None:
            self._absent_since = now_ms
            logger.debug("Absence started at %.0f ms", now_ms)

        if self._state is MonitorState.USER_AWAY:
            return None

        long_enough = now_ms - self._absent_since > self.away_threshold_ms
        enough_frames = self._absent_frames >= self.absent_frames_threshold
        low_confidence = confidence <= self.away_confidence_threshold
        if long_enough and (enough_frames or low_confidence):
            logger.debug(
                "User away confirmed: %.1f s, %d absent frames, confidence=%.2f",
                (now_ms - self._absent_since) / 1000.0,
                self._absent_frames,
                confidence,
            )
            return self._transition(MonitorState.USER_AWAY, now_ms)
        return None

    def _reset_counters(self, now_ms: float) -> None:
        self._absent_since = None
        self._last_present_at = now_ms
        self._present_frames = 0
        self._absent_frames = 0

    def _transition(self, new_state: MonitorState, now_ms: float) -> Optional[StateChanged]:
        if new_state is self._state:
            return None
        event = StateChanged(previous=self._state, current=new_state, at_ms=now_ms)
        logger.debug("State: %s → %s", self._state.value, new_state.value)
        self._state = new_state
        return event
