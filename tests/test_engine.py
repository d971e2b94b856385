"""End-to-end scenarios through the decision engine."""

import pytest

from domain.engine import EngineBusyError, MonitorEngine
from domain.models import (
    FaceEvidence,
    IssueType,
    LandmarkFrame,
    MonitorState,
    PoseEvidence,
    PoseLandmark,
    PosePoint,
    StateChanged,
)

_FACE = FaceEvidence(
    left_eye_open=0.9,
    right_eye_open=0.9,
    tracking_id=1,
    bounding_box=(280.0, 150.0, 360.0, 250.0),
)


def _upright_points() -> dict[PoseLandmark, PosePoint]:
    return {
        PoseLandmark.NOSE: PosePoint(320.0, 200.0),
        PoseLandmark.LEFT_EYE: PosePoint(340.0, 190.0),
        PoseLandmark.RIGHT_EYE: PosePoint(300.0, 190.0),
        PoseLandmark.LEFT_EAR: PosePoint(360.0, 200.0),
        PoseLandmark.RIGHT_EAR: PosePoint(280.0, 200.0),
        PoseLandmark.LEFT_SHOULDER: PosePoint(400.0, 350.0),
        PoseLandmark.RIGHT_SHOULDER: PosePoint(240.0, 350.0),
    }


def _upright() -> LandmarkFrame:
    return LandmarkFrame(face=_FACE, pose=PoseEvidence(_upright_points()))


def _shoulder_tilted() -> LandmarkFrame:
    points = _upright_points()
    points[PoseLandmark.RIGHT_SHOULDER] = PosePoint(240.0, 380.0)
    return LandmarkFrame(face=_FACE, pose=PoseEvidence(points))


def _pose_only() -> LandmarkFrame:
    names = (
        PoseLandmark.NOSE,
        PoseLandmark.LEFT_EYE,
        PoseLandmark.RIGHT_EYE,
        PoseLandmark.LEFT_EAR,
        PoseLandmark.RIGHT_EAR,
        PoseLandmark.LEFT_SHOULDER,
    )
    return LandmarkFrame(pose=PoseEvidence({n: PosePoint(320.0, 200.0, 0.9) for n in names}))


def _face_only() -> LandmarkFrame:
    return LandmarkFrame(face=_FACE)


def _go_away(engine: MonitorEngine) -> tuple[float, list]:
    """Feed empty frames every 500 ms until the engine reports USER_AWAY."""
    t = 0.0
    result = None
    for _ in range(100):
        t += 500.0
        result = engine.evaluate(LandmarkFrame.empty(), t)
        if result.state is MonitorState.USER_AWAY:
            return t, result.commands
    pytest.fail("engine never reported USER_AWAY")


@pytest.fixture
def engine():
    eng = MonitorEngine()
    eng.start(0.0)
    yield eng
    eng.release()


# ── Lifecycle ─────────────────────────────────────────────────────────────────

def test_start_emits_normal_and_monitoring():
    eng = MonitorEngine()
    result = eng.start(0.0)
    assert result.commands == ["NORMAL"]
    assert result.transitions == [StateChanged(MonitorState.IDLE, MonitorState.MONITORING, 0.0)]
    assert result.status_text == "posture correct"
    assert eng.state == MonitorState.MONITORING


def test_frames_ignored_while_idle():
    eng = MonitorEngine()
    result = eng.evaluate(_upright(), 100.0)
    assert result.state == MonitorState.IDLE
    assert result.commands == []
    assert result.present is None


def test_stop_returns_to_idle(engine):
    result = engine.stop(1000.0)
    assert result.transitions[0].current == MonitorState.IDLE
    assert engine.state == MonitorState.IDLE
    assert engine.baseline is None


def test_release_is_idempotent_and_final():
    eng = MonitorEngine()
    eng.start(0.0)
    eng.release()
    eng.release()
    assert eng.is_released
    with pytest.raises(RuntimeError):
        eng.evaluate(_upright(), 100.0)


def test_concurrent_evaluate_is_rejected(engine):
    with engine._lock:
        with pytest.raises(EngineBusyError):
            engine.evaluate(_upright(), 100.0)


# ── Presence ──────────────────────────────────────────────────────────────────

def test_pose_only_frames_stay_present(engine):
    for i in range(20):
        result = engine.evaluate(_pose_only(), 100.0 * (i + 1))
        assert result.present is True
        assert result.transitions == []
        assert result.commands == []
    assert engine.state == MonitorState.MONITORING
    assert engine.confidence > 0
    # Posture needs face and pose; none was computed
    assert engine.baseline is None


def test_empty_frame_after_long_gap_reads_absent_but_not_away(engine):
    engine.evaluate(_pose_only(), 100.0)
    result = engine.evaluate(LandmarkFrame.empty(), 5100.0)

    # face -2.5, pose -3.0, reused position 0.1 × 1.5, staleness -1.5
    assert result.presence_score == pytest.approx(-6.85)
    assert result.present is False
    assert result.confidence < -5.0
    assert result.transitions == []
    assert engine.state == MonitorState.MONITORING


def test_away_not_before_threshold(engine):
    for t in range(500, 3501, 500):
        result = engine.evaluate(LandmarkFrame.empty(), float(t))
        assert result.state == MonitorState.MONITORING

    result = engine.evaluate(LandmarkFrame.empty(), 4000.0)
    assert result.state == MonitorState.USER_AWAY
    assert result.commands == ["USER_AWAY"]


def test_frame_diagnostics_carry_scores(engine):
    result = engine.evaluate(_pose_only(), 100.0)
    diag = result.diagnostics[-1]
    assert diag.message == "Frame evaluated."
    assert diag.fields["pose_landmarks"] == 6
    assert diag.fields["face"] is False
    assert diag.fields["present"] is True


# ── Posture ───────────────────────────────────────────────────────────────────

def test_shoulder_tilt_alert_and_clear(engine):
    result = engine.evaluate(_upright(), 100.0)
    assert engine.baseline is not None
    assert result.angles == engine.baseline
    assert result.commands == []

    assert engine.evaluate(_shoulder_tilted(), 200.0).commands == []
    assert engine.evaluate(_shoulder_tilted(), 2199.0).commands == []

    result = engine.evaluate(_shoulder_tilted(), 2201.0)
    assert [r.issue for r in result.raised] == [IssueType.SHOULDER_TILT]
    assert result.commands == ["POSTURE_ALERT_L1"]
    assert result.status_text == "bad posture: shoulder tilt"

    result = engine.evaluate(_upright(), 2300.0)
    assert [c.issue for c in result.cleared] == [IssueType.SHOULDER_TILT]
    assert result.commands == ["NORMAL"]
    assert result.status_text == "posture correct"


def test_going_away_clears_posture_issues_first(engine):
    engine.evaluate(_upright(), 100.0)
    engine.evaluate(_shoulder_tilted(), 200.0)
    engine.evaluate(_shoulder_tilted(), 2300.0)
    assert engine.last_command == "POSTURE_ALERT_L1"

    t = 2300.0
    result = None
    for _ in range(100):
        t += 500.0
        result = engine.evaluate(LandmarkFrame.empty(), t)
        if result.state is MonitorState.USER_AWAY:
            break
    assert result is not None and result.state is MonitorState.USER_AWAY
    assert result.commands == ["NORMAL", "USER_AWAY"]
    assert engine.active_issues == []


def test_posture_timer_restarts_after_frames_without_posture(engine):
    engine.evaluate(_upright(), 100.0)
    assert engine.evaluate(_shoulder_tilted(), 600.0).commands == []

    # Face drops out; the user is still present on pose alone
    tilted_pose = LandmarkFrame(pose=_shoulder_tilted().pose)
    for t in range(700, 2501, 100):
        result = engine.evaluate(tilted_pose, float(t))
        assert result.present is True
        assert result.commands == []

    result = engine.evaluate(_shoulder_tilted(), 2600.0)
    assert result.raised == []
    assert result.commands == []

    result = engine.evaluate(_shoulder_tilted(), 4700.0)
    assert [r.issue for r in result.raised] == [IssueType.SHOULDER_TILT]
    assert result.commands == ["POSTURE_ALERT_L1"]


# ── Away escalation and return ────────────────────────────────────────────────

def test_away_escalates_on_ticks_without_frames():
    eng = MonitorEngine()
    eng.start(0.0)
    away_at, commands = _go_away(eng)
    assert away_at == 4000.0
    assert commands == ["USER_AWAY"]

    sent = []
    t = 5000.0
    while t <= 310_000.0:
        sent.extend(eng.tick(t).commands)
        t += 1000.0

    assert sent == ["FOCUS_ALERT_L2", "USER_AWAY_L1", "USER_AWAY_L3", "USER_AWAY_L5"]
    assert eng.state == MonitorState.USER_AWAY
    assert [i.type for i in eng.active_issues] == [IssueType.USER_AWAY]

    # Two present frames 500 ms apart bring the user back
    first = eng.evaluate(_face_only(), 310_500.0)
    assert first.state == MonitorState.USER_AWAY
    back = eng.evaluate(_face_only(), 311_000.0)
    assert back.state == MonitorState.MONITORING
    assert back.commands == ["USER_RETURN", "NORMAL"]
    assert eng.active_issues == []


def test_tick_does_nothing_while_monitoring(engine):
    result = engine.tick(60_000.0)
    assert result.commands == []
    assert result.state == MonitorState.MONITORING
