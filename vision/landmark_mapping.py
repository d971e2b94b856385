"""Conversion of MediaPipe landmarker output into :class:`LandmarkFrame` parts.

Kept free of the ``mediapipe`` import so it can be exercised with plain
objects exposing ``.x``, ``.y``, ``.visibility`` / ``.category_name``,
``.score``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

import numpy as np

from domain.models import FaceEvidence, PoseEvidence, PoseLandmark, PosePoint

# MediaPipe's 33-point body model uses the same order as PoseLandmark
_POSE_ORDER: tuple[PoseLandmark, ...] = tuple(PoseLandmark)

_BLINK_LEFT = "eyeBlinkLeft"
_BLINK_RIGHT = "eyeBlinkRight"


def pose_evidence(
    landmarks: Sequence[Any],
    width: int,
    height: int,
    min_visibility: float = 0.5,
) -> PoseEvidence:
    """Pixel-space pose evidence from normalised landmarks.  Landmarks the
    model itself considers off-frame (visibility < *min_visibility*) are
    left out, so the landmark count reflects what is actually in view."""
    points: dict[PoseLandmark, PosePoint] = {}
    for name, lm in zip(_POSE_ORDER, landmarks):
        visibility = float(getattr(lm, "visibility", 1.0) or 0.0)
        if visibility < min_visibility:
            continue
        points[name] = PosePoint(
            x=float(lm.x) * width,
            y=float(lm.y) * height,
            likelihood=float(np.clip(visibility, 0.0, 1.0)),
        )
    return PoseEvidence(points)


def euler_from_matrix(matrix: Any) -> tuple[float, float, float]:
    """(pitch, yaw, roll) in degrees from a 4×4 (or 3×3) head transform."""
    r = np.asarray(matrix, dtype=np.float64)[:3, :3]
    sy = float(np.hypot(r[2, 1], r[2, 2]))
    pitch = np.degrees(np.arctan2(r[2, 1], r[2, 2]))
    yaw = np.degrees(np.arctan2(-r[2, 0], sy))
    roll = np.degrees(np.arctan2(r[1, 0], r[0, 0]))
    return float(pitch), float(yaw), float(roll)


def eye_open_probabilities(blendshapes: Optional[Sequence[Any]]) -> tuple[Optional[float], Optional[float]]:
    """``1 - blink`` for each eye, or ``None`` where the blendshape is absent."""
    if not blendshapes:
        return None, None
    scores = {c.category_name: float(c.score) for c in blendshapes}
    left = scores.get(_BLINK_LEFT)
    right = scores.get(_BLINK_RIGHT)
    return (
        None if left is None else float(np.clip(1.0 - left, 0.0, 1.0)),
        None if right is None else float(np.clip(1.0 - right, 0.0, 1.0)),
    )


def face_evidence(
    landmarks: Sequence[Any],
    width: int,
    height: int,
    blendshapes: Optional[Sequence[Any]] = None,
    transform: Optional[Any] = None,
    tracking_id: Optional[int] = None,
) -> FaceEvidence:
    pts = np.array([[lm.x * width, lm.y * height] for lm in landmarks], dtype=np.float64)
    x_min, y_min = pts.min(axis=0)
    x_max, y_max = pts.max(axis=0)

    pitch = yaw = roll = 0.0
    if transform is not None:
        pitch, yaw, roll = euler_from_matrix(transform)

    left_open, right_open = eye_open_probabilities(blendshapes)
    return FaceEvidence(
        pitch=pitch,
        yaw=yaw,
        roll=roll,
        left_eye_open=left_open,
        right_eye_open=right_open,
        tracking_id=tracking_id,
        bounding_box=(float(x_min), float(y_min), float(x_max), float(y_max)),
    )


class TrackingIds:
    """Hands out a stable id for as long as a face stays continuously
    detected, and a fresh one each time it reappears."""

    def __init__(self) -> None:
        self._next = 1
        self._current: Optional[int] = None

    def update(self, face_seen: bool) -> Optional[int]:
        if not face_seen:
            self._current = None
            return None
        if self._current is None:
            self._current = self._next
            self._next += 1
        return self._current
