"""The per-session decision engine: landmark frames in, state and commands out."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Callable, Optional

from domain.alerts import NORMAL, AlertEscalator, AwayEscalator, CommandGate, status_text
from domain.angles import HEAD_SOURCE_POSE
from domain.issues import IssueDebouncer
from domain.models import (
    POSTURE_ISSUES,
    ActiveIssue,
    Angles,
    Diagnostic,
    EvaluationResult,
    IssueType,
    LandmarkFrame,
    MonitorState,
    StateChanged,
)
from domain.motion import MotionTracker
from domain.posture import PostureEvaluator, no_issues
from domain.presence import ConfidenceAccumulator, NoiseFloor, PresenceScorer
from domain.state_machine import PresenceStateMachine, decide_presence

logger = logging.getLogger(__name__)


class EngineBusyError(RuntimeError):
    """A frame arrived while the previous one was still being evaluated."""


class MonitorEngine:
    """Owns every piece of per-session state and runs the frame pipeline:

    motion → presence score → noise floor → confidence → presence state
    machine → (if present) posture → issue debouncing → alert escalation.

    :meth:`evaluate` is not re-entrant; a concurrent call raises
    :class:`EngineBusyError` instead of interleaving state updates.
    :meth:`tick` is the timer path and waits for the frame pipeline.
    Every call returns an :class:`EvaluationResult`.  Commands are also
    handed to *command_sink*, in decision order, before the lock is
    released; the sink must only enqueue, never block on I/O.
    """

    def __init__(
        self,
        head_source: str = HEAD_SOURCE_POSE,
        away_threshold_ms: float = 3000.0,
        absent_frames_threshold: int = 10,
        away_confidence_threshold: float = -3.0,
        return_frames: int = 2,
        return_gap_ms: float = 800.0,
        motion_threshold: float = 15.0,
        noise_calibration_frames: int = 30,
        away_check_interval_ms: float = 10_000.0,
        command_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.motion = MotionTracker(threshold=motion_threshold)
        self.scorer = PresenceScorer()
        self.noise = NoiseFloor(calibration_frames=noise_calibration_frames)
        self.accumulator = ConfidenceAccumulator()
        self.presence = PresenceStateMachine(
            away_threshold_ms=away_threshold_ms,
            absent_frames_threshold=absent_frames_threshold,
            away_confidence_threshold=away_confidence_threshold,
            return_frames=return_frames,
            return_gap_ms=return_gap_ms,
        )
        self.posture = PostureEvaluator(head_source=head_source)
        self.issues = IssueDebouncer()
        self.escalator = AlertEscalator()
        self.away = AwayEscalator(check_interval_ms=away_check_interval_ms)
        self.gate = CommandGate()
        # Receives each admitted command while the engine lock is still held
        self.command_sink = command_sink

        self._lock = threading.Lock()
        self._last_frame_at: Optional[float] = None
        self._released = False

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self, now_ms: float) -> EvaluationResult:
        """Begin (or restart) monitoring.  Resets confidence, calibration and
        issues, and tells the peripheral to go back to normal."""
        with self._lock:
            self._ensure_alive()
            self._reset_session()
            self._last_frame_at = now_ms
            result = self._new_result(now_ms)
            self._record_transition(self.presence.start(now_ms), result)
            self._emit(NORMAL, result)
            logger.info("Monitoring started.")
            return self._finish(result)

    def stop(self, now_ms: float) -> EvaluationResult:
        """Stop monitoring: drop pending issues and cancel away escalation."""
        with self._lock:
            self._ensure_alive()
            self._reset_session()
            result = self._new_result(now_ms)
            self._record_transition(self.presence.stop(now_ms), result)
            logger.info("Monitoring stopped.")
            return self._finish(result)

    def release(self) -> None:
        """Tear down for good.  Safe to call more than once."""
        if self._released:
            return
        with self._lock:
            if self._released:
                return
            self._reset_session()
            self.presence.stop(0.0)
            self._released = True
        logger.info("Engine released.")

    # ------------------------------------------------------------------
    # Frame and timer paths
    # ------------------------------------------------------------------

    def evaluate(self, frame: LandmarkFrame, now_ms: float) -> EvaluationResult:
        """Run one frame through the whole pipeline."""
        if not self._lock.acquire(blocking=False):
            raise EngineBusyError("Previous frame is still being evaluated.")
        try:
            self._ensure_alive()
            return self._evaluate(frame, now_ms)
        finally:
            self._lock.release()

    def tick(self, now_ms: float) -> EvaluationResult:
        """Timer path: advances away debouncing and the away alert level
        without needing a frame."""
        with self._lock:
            self._ensure_alive()
            result = self._new_result(now_ms)
            if self.presence.state is not MonitorState.USER_AWAY:
                return self._finish(result)

            before = self._active_types()
            self._apply_signals({IssueType.USER_AWAY: True}, result)
            self._escalate_if_changed(before, result)

            command = self.away.check(now_ms)
            if command is not None:
                self._emit(command, result)
            return self._finish(result)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self.presence.state

    @property
    def confidence(self) -> float:
        return self.accumulator.value

    @property
    def baseline(self) -> Optional[Angles]:
        return self.posture.baseline

    @property
    def active_issues(self) -> list[ActiveIssue]:
        return self.issues.active

    @property
    def last_command(self) -> Optional[str]:
        return self.gate.last

    @property
    def is_released(self) -> bool:
        return self._released

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _evaluate(self, frame: LandmarkFrame, now_ms: float) -> EvaluationResult:
        result = self._new_result(now_ms)
        if self.presence.state is MonitorState.IDLE:
            result.diagnostics.append(Diagnostic("Frame ignored: monitoring not started."))
            return self._finish(result)

        last = self._last_frame_at if self._last_frame_at is not None else now_ms
        elapsed_ms = max(0.0, now_ms - last)
        self._last_frame_at = now_ms

        motion = self.motion.update(frame)
        raw = self.scorer.score(frame, motion, elapsed_ms)
        adjusted = self.noise.adjust(raw)
        confidence = self.accumulator.update(adjusted, elapsed_ms)
        present = decide_presence(frame, confidence)

        result.motion_score = motion
        result.presence_score = raw
        result.adjusted_score = adjusted
        result.confidence = confidence
        result.present = present

        event = self.presence.update(present, confidence, now_ms)
        self._record_transition(event, result)
        if event is not None:
            if event.current is MonitorState.USER_AWAY:
                self._enter_away(now_ms, result)
            elif event.previous is MonitorState.USER_AWAY:
                self._leave_away(now_ms, result)

        before = self._active_types()
        if self.presence.state is MonitorState.USER_AWAY:
            self._apply_signals({IssueType.USER_AWAY: True}, result)
        elif present and frame.face is not None and frame.pose is not None:
            self._apply_signals(self.posture.evaluate(frame), result)
            result.angles = self.posture.last_angles
        else:
            # Posture not observed this frame: pending signals are not continuous
            self.issues.interrupt(POSTURE_ISSUES)
        self._escalate_if_changed(before, result)

        fields = {
            "face": frame.face is not None,
            "pose_landmarks": len(frame.pose) if frame.pose is not None else 0,
            "score": round(raw, 3),
            "adjusted": round(adjusted, 3),
            "motion": round(motion, 3),
            "confidence": round(confidence, 3),
            "present": present,
        }
        result.diagnostics.append(Diagnostic("Frame evaluated.", fields))
        logger.debug(
            "Frame: face=%s pose=%d score=%.2f adjusted=%.2f motion=%.2f confidence=%.2f present=%s",
            fields["face"],
            fields["pose_landmarks"],
            raw,
            adjusted,
            motion,
            confidence,
            present,
        )
        return self._finish(result)

    def _enter_away(self, now_ms: float, result: EvaluationResult) -> None:
        before = self._active_types()
        self._apply_signals(no_issues(), result)
        self._escalate_if_changed(before, result)
        self._emit(self.away.start(now_ms), result)

    def _leave_away(self, now_ms: float, result: EvaluationResult) -> None:
        command = self.away.stop()
        if command is not None:
            self._emit(command, result)
        before = self._active_types()
        self._apply_signals({IssueType.USER_AWAY: False}, result)
        self._escalate_if_changed(before, result)

    def _apply_signals(self, signals: Mapping[IssueType, bool], result: EvaluationResult) -> None:
        raised, cleared = self.issues.update(signals, result.at_ms)
        result.raised.extend(raised)
        result.cleared.extend(cleared)

    def _escalate_if_changed(self, before: list[IssueType], result: EvaluationResult) -> None:
        if self._active_types() == before:
            return
        active = self.issues.active
        self._emit(self.escalator.command_for(active), result)
        logger.info("Status: %s", status_text(active))

    def _emit(self, command: str, result: EvaluationResult) -> None:
        if self.gate.admit(command):
            result.commands.append(command)
            logger.debug("Command decided: %s", command)
            if self.command_sink is not None:
                self.command_sink(command)

    def _record_transition(self, event: Optional[StateChanged], result: EvaluationResult) -> None:
        if event is None:
            return
        result.transitions.append(event)
        result.diagnostics.append(
            Diagnostic(
                f"State changed: {event.previous.value} → {event.current.value}",
                {"confidence": round(self.accumulator.value, 3)},
            )
        )
        logger.info("State changed: %s → %s", event.previous.value, event.current.value)

    def _active_types(self) -> list[IssueType]:
        return [i.type for i in self.issues.active]

    def _new_result(self, now_ms: float) -> EvaluationResult:
        return EvaluationResult(
            state=self.presence.state,
            at_ms=now_ms,
            confidence=self.accumulator.value,
        )

    def _finish(self, result: EvaluationResult) -> EvaluationResult:
        result.state = self.presence.state
        result.status_text = status_text(self.issues.active)
        return result

    def _reset_session(self) -> None:
        self.motion.reset()
        self.noise.reset()
        self.accumulator.reset()
        self.posture.reset()
        self.issues.clear_all()
        self.away.cancel()
        self.gate.reset()
        self._last_frame_at = None

    def _ensure_alive(self) -> None:
        if self._released:
            raise RuntimeError("Engine has been released.")
