"""Baseline-relative posture evaluation producing raw (undebounced) issue signals."""

from __future__ import annotations

import logging
from typing import Optional

from domain.angles import HEAD_SOURCE_POSE, extract_angles
from domain.models import NEUTRAL_ANGLES, POSTURE_ISSUES, Angles, IssueType, LandmarkFrame

logger = logging.getLogger(__name__)

HEAD_X_LIMIT = 15.0
HEAD_Y_LIMIT = 10.0
HEAD_Z_LIMIT = 10.0
SHOULDER_LIMIT = 8.0
DROWSY_EYE_OPENNESS = 0.3


def angle_delta(current: float, base: float) -> float:
    """Signed difference ``current - base`` wrapped into [-180, 180)."""
    return (current - base + 180.0) % 360.0 - 180.0


def no_issues() -> dict[IssueType, bool]:
    return {t: False for t in POSTURE_ISSUES}


class PostureEvaluator:
    """Compares each frame's :class:`Angles` with a calibration baseline.

    The first successful reading after :meth:`reset` becomes the baseline.
    Until then a zero baseline is used.
    """

    def __init__(self, head_source: str = HEAD_SOURCE_POSE) -> None:
        self.head_source = head_source
        self._baseline: Optional[Angles] = None
        self._last: Angles = NEUTRAL_ANGLES

    def reset(self) -> None:
        self._baseline = None
        self._last = NEUTRAL_ANGLES

    @property
    def baseline(self) -> Optional[Angles]:
        return self._baseline

    @property
    def is_calibrated(self) -> bool:
        return self._baseline is not None

    @property
    def last_angles(self) -> Angles:
        return self._last

    def evaluate(self, frame: LandmarkFrame) -> dict[IssueType, bool]:
        """Return the raw signal for every posture issue type.

        Missing landmarks yield the neutral reading and no issues.
        """
        angles = extract_angles(frame, self.head_source)
        if angles is None:
            self._last = NEUTRAL_ANGLES
            logger.debug("Posture skipped – required landmarks missing.")
            return no_issues()

        self._last = angles
        if self._baseline is None:
            self._baseline = angles
            logger.info(
                "Posture calibrated: head=(%.1f, %.1f, %.1f) shoulder=%.1f eyes=%.2f",
                angles.head_x,
                angles.head_y,
                angles.head_z,
                angles.shoulder_angle,
                angles.eye_openness,
            )
        return self.signals(angles, self._baseline)

    @staticmethod
    def signals(angles: Angles, baseline: Optional[Angles] = None) -> dict[IssueType, bool]:
        base = baseline if baseline is not None else NEUTRAL_ANGLES
        dx = angles.head_x - base.head_x
        dy = angles.head_y - base.head_y
        dz = angle_delta(angles.head_z, base.head_z)
        ds = angle_delta(angles.shoulder_angle, base.shoulder_angle)

        head_x_bad = abs(dx) > HEAD_X_LIMIT
        result = {
            IssueType.HEAD_FORWARD_TILT: head_x_bad and dx < 0,
            IssueType.HEAD_BACKWARD_TILT: head_x_bad and dx > 0,
            IssueType.HEAD_SIDE_TILT: abs(dy) > HEAD_Y_LIMIT,
            IssueType.HEAD_ROLL_TILT: abs(dz) > HEAD_Z_LIMIT,
            IssueType.SHOULDER_TILT: abs(ds) > SHOULDER_LIMIT,
            IssueType.DROWSINESS: angles.eye_openness < DROWSY_EYE_OPENNESS,
        }
        if any(result.values()):
            logger.debug(
                "Posture problems: %s",
                ", ".join(t.value for t, bad in result.items() if bad),
            )
        return result
