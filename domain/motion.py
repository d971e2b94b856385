"""Short-history position tracking used as a presence signal."""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

import numpy as np

from domain.models import LandmarkFrame, PoseLandmark

logger = logging.getLogger(__name__)

_UPPER_BODY = (
    PoseLandmark.LEFT_EYE,
    PoseLandmark.RIGHT_EYE,
    PoseLandmark.LEFT_EAR,
    PoseLandmark.RIGHT_EAR,
    PoseLandmark.LEFT_SHOULDER,
    PoseLandmark.RIGHT_SHOULDER,
)


class MotionTracker:
    """Keeps the last few representative positions of the person and scores
    how much they moved between frames (0-1).

    A still image scores low, a steady small drift (breathing, typing) gets
    a bonus, and large jumps score high.
    """

    def __init__(self, threshold: float = 15.0, history_size: int = 5) -> None:
        self.threshold = threshold
        self._history: deque[tuple[float, float]] = deque(maxlen=history_size)
        self._last_face_pos: Optional[tuple[float, float]] = None
        self._last_pose_pos: Optional[tuple[float, float]] = None

    def reset(self) -> None:
        self._history.clear()
        self._last_face_pos = None
        self._last_pose_pos = None

    @property
    def history(self) -> list[tuple[float, float]]:
        return list(self._history)

    def update(self, frame: LandmarkFrame) -> float:
        position = self._representative_position(frame)
        if position is None:
            return 0.0

        self._history.append(position)
        score = 0.0

        if len(self._history) > 1:
            distance = float(np.hypot(*np.subtract(self._history[-1], self._history[-2])))
            if distance > self.threshold * 2:
                score = 1.0
            elif distance > self.threshold:
                score = 0.7
            elif distance > self.threshold / 2:
                score = 0.3
            else:
                score = 0.1

        if len(self._history) >= 3:
            pts = np.asarray(self._history, dtype=np.float64)
            mean_step = float(np.linalg.norm(np.diff(pts, axis=0), axis=1).mean())
            if self.threshold / 3 < mean_step < self.threshold:
                score += 0.2

        return float(np.clip(score, 0.0, 1.0))

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _representative_position(self, frame: LandmarkFrame) -> Optional[tuple[float, float]]:
        if frame.face is not None and frame.face.center is not None:
            self._last_face_pos = frame.face.center
            return self._last_face_pos

        if frame.pose is not None:
            nose = frame.pose.get(PoseLandmark.NOSE)
            if nose is not None:
                self._last_pose_pos = (nose.x, nose.y)
                return self._last_pose_pos

            visible = [frame.pose.get(name) for name in _UPPER_BODY]
            pts = [(p.x, p.y) for p in visible if p is not None]
            if pts:
                mean = np.mean(np.asarray(pts, dtype=np.float64), axis=0)
                self._last_pose_pos = (float(mean[0]), float(mean[1]))
                return self._last_pose_pos

        return self._last_face_pos or self._last_pose_pos
