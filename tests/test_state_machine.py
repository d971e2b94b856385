"""Tests for the presence decision and the Monitoring / UserAway state machine."""

from domain.models import (
    FaceEvidence,
    LandmarkFrame,
    MonitorState,
    PoseEvidence,
    PoseLandmark,
    PosePoint,
    StateChanged,
)
from domain.state_machine import PresenceStateMachine, decide_presence


def _strong_face() -> FaceEvidence:
    return FaceEvidence(left_eye_open=0.9, right_eye_open=0.9, tracking_id=1)


def _pose(n: int) -> PoseEvidence:
    names = list(PoseLandmark)[:n]
    return PoseEvidence({name: PosePoint(100.0, 100.0, 0.9) for name in names})


def _drive_away(sm: PresenceStateMachine, start: float = 0.0) -> float:
    sm.start(start)
    t = start
    while sm.state is not MonitorState.USER_AWAY:
        t += 100.0
        sm.update(False, -8.0, t)
    return t


# ── decide_presence ───────────────────────────────────────────────────────────

def test_tracked_face_with_eyes_is_present_regardless_of_confidence():
    frame = LandmarkFrame(face=_strong_face())
    assert decide_presence(frame, -9.0) is True


def test_one_eye_probability_is_enough_for_strong_evidence():
    right_only = LandmarkFrame(face=FaceEvidence(right_eye_open=0.8, tracking_id=3))
    left_only = LandmarkFrame(face=FaceEvidence(left_eye_open=0.8, tracking_id=3))
    assert decide_presence(right_only, -9.0) is True
    assert decide_presence(left_only, -9.0) is True


def test_tracked_face_without_eye_state_falls_through_to_confidence():
    frame = LandmarkFrame(face=FaceEvidence(tracking_id=3))
    assert decide_presence(frame, -9.0) is False


def test_face_without_tracking_id_falls_through_to_confidence():
    frame = LandmarkFrame(face=FaceEvidence(left_eye_open=0.9, right_eye_open=0.9))
    assert decide_presence(frame, -1.0) is False
    assert decide_presence(frame, 0.5) is True


def test_pose_needs_positive_confidence():
    frame = LandmarkFrame(pose=_pose(5))
    assert decide_presence(frame, 0.1) is True
    assert decide_presence(frame, -0.1) is False


def test_confidence_only_rules():
    empty = LandmarkFrame.empty()
    assert decide_presence(empty, 3.5) is True
    assert decide_presence(empty, 2.0) is True
    assert decide_presence(empty, -1.0) is False
    assert decide_presence(empty, -6.0) is False


# ── PresenceStateMachine ──────────────────────────────────────────────────────

def test_initial_state_is_idle_and_ignores_updates():
    sm = PresenceStateMachine()
    assert sm.state == MonitorState.IDLE
    assert sm.update(False, -10.0, 10_000.0) is None
    assert sm.state == MonitorState.IDLE


def test_start_and_stop_emit_transitions():
    sm = PresenceStateMachine()
    assert sm.start(0.0) == StateChanged(MonitorState.IDLE, MonitorState.MONITORING, 0.0)
    assert sm.start(5.0) is None  # already monitoring
    assert sm.stop(10.0) == StateChanged(MonitorState.MONITORING, MonitorState.IDLE, 10.0)


def test_away_requires_more_than_threshold_even_with_very_low_confidence():
    sm = PresenceStateMachine(away_threshold_ms=3000.0)
    sm.start(0.0)

    # First absence at 100 ms; 3000 ms later is not yet *more* than the threshold
    for t in range(100, 3101, 100):
        assert sm.update(False, -9.0, float(t)) is None
    assert sm.state == MonitorState.MONITORING

    event = sm.update(False, -9.0, 3200.0)
    assert event is not None
    assert event.current == MonitorState.USER_AWAY


def test_away_with_mild_confidence_needs_enough_absent_frames():
    sm = PresenceStateMachine(absent_frames_threshold=10)
    sm.start(0.0)
    assert sm.update(False, -1.0, 100.0) is None
    assert sm.update(False, -1.0, 5000.0) is None  # long enough, but 2 frames only

    for i in range(7):
        assert sm.update(False, -1.0, 5100.0 + 100 * i) is None
    assert sm.absent_frames == 9

    event = sm.update(False, -1.0, 5800.0)
    assert event is not None and event.current == MonitorState.USER_AWAY


def test_present_frame_restarts_absence_timer():
    sm = PresenceStateMachine()
    sm.start(0.0)
    sm.update(False, -9.0, 100.0)
    sm.update(True, 1.0, 2000.0)
    assert sm.absent_since is None

    sm.update(False, -9.0, 3500.0)
    # 5900 ms since the first absence, but only 2500 ms since the latest
    assert sm.update(False, -9.0, 6000.0) is None
    assert sm.state == MonitorState.MONITORING


def test_return_needs_two_consecutive_present_frames():
    sm = PresenceStateMachine()
    t = _drive_away(sm)

    assert sm.update(True, 0.1, t + 100.0) is None
    event = sm.update(True, 0.1, t + 600.0)  # gap 500 ms < 800 ms
    assert event == StateChanged(MonitorState.USER_AWAY, MonitorState.MONITORING, t + 600.0)


def test_single_present_frame_then_absent_does_not_return():
    sm = PresenceStateMachine()
    t = _drive_away(sm)

    assert sm.update(True, 5.0, t + 100.0) is None
    assert sm.update(False, -2.0, t + 200.0) is None
    assert sm.update(True, 5.0, t + 300.0) is None  # counter restarted
    assert sm.state == MonitorState.USER_AWAY


def test_slow_return_needs_confidence():
    sm = PresenceStateMachine()
    t = _drive_away(sm)

    sm.update(True, 1.0, t + 1000.0)
    # 2 frames × 1.0 / 5 = 0.4 < 1.0 and the gap is 2000 ms
    assert sm.update(True, 1.0, t + 3000.0) is None
    # 3 frames × 3.0 / 5 = 1.8
    event = sm.update(True, 3.0, t + 5000.0)
    assert event is not None and event.current == MonitorState.MONITORING
