"""Tests for landmarker-output conversion (no MediaPipe needed)."""

from types import SimpleNamespace

import numpy as np
import pytest

from domain.models import PoseLandmark
from vision.landmark_mapping import (
    TrackingIds,
    euler_from_matrix,
    eye_open_probabilities,
    face_evidence,
    pose_evidence,
)


def _lm(x, y, visibility=0.9):
    return SimpleNamespace(x=x, y=y, visibility=visibility)


def test_pose_evidence_scales_and_filters_by_visibility():
    landmarks = [_lm(0.5, 0.25) for _ in range(33)]
    landmarks[0] = _lm(0.5, 0.25, visibility=0.2)  # nose off-frame

    pose = pose_evidence(landmarks, 640, 480)
    assert len(pose) == 32
    assert pose.get(PoseLandmark.NOSE) is None

    shoulder = pose.get(PoseLandmark.LEFT_SHOULDER)
    assert shoulder is not None
    assert (shoulder.x, shoulder.y) == pytest.approx((320.0, 120.0))
    assert shoulder.likelihood == pytest.approx(0.9)


def test_euler_from_identity_is_zero():
    assert euler_from_matrix(np.eye(4)) == pytest.approx((0.0, 0.0, 0.0))


def test_euler_roll():
    a = np.radians(30.0)
    rot = np.array(
        [
            [np.cos(a), -np.sin(a), 0.0],
            [np.sin(a), np.cos(a), 0.0],
            [0.0, 0.0, 1.0],
        ]
    )
    pitch, yaw, roll = euler_from_matrix(rot)
    assert roll == pytest.approx(30.0)
    assert pitch == pytest.approx(0.0)
    assert yaw == pytest.approx(0.0)


def test_eye_open_is_inverse_blink():
    shapes = [
        SimpleNamespace(category_name="eyeBlinkLeft", score=0.8),
        SimpleNamespace(category_name="jawOpen", score=0.5),
    ]
    left, right = eye_open_probabilities(shapes)
    assert left == pytest.approx(0.2)
    assert right is None
    assert eye_open_probabilities(None) == (None, None)


def test_face_evidence_bounding_box():
    landmarks = [SimpleNamespace(x=0.25, y=0.5), SimpleNamespace(x=0.5, y=0.75)]
    face = face_evidence(landmarks, 400, 200, tracking_id=7)

    assert face.bounding_box == pytest.approx((100.0, 100.0, 200.0, 150.0))
    assert face.center == pytest.approx((150.0, 125.0))
    assert face.tracking_id == 7
    assert face.has_eye_state is False
    assert (face.pitch, face.yaw, face.roll) == (0.0, 0.0, 0.0)


def test_tracking_ids_stable_while_seen():
    ids = TrackingIds()
    assert ids.update(True) == 1
    assert ids.update(True) == 1
    assert ids.update(False) is None
    assert ids.update(True) == 2
