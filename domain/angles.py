"""Head / shoulder angle and eye-openness extraction from a landmark frame."""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from domain.models import NEUTRAL_ANGLES, Angles, FaceEvidence, LandmarkFrame, PoseLandmark, PosePoint

logger = logging.getLogger(__name__)

HEAD_SOURCE_POSE = "pose"
HEAD_SOURCE_FACE = "face"

# Scale factors turning pixel geometry into degree-like values
_HEAD_X_SCALE = 0.5
_HEAD_Y_SCALE = 5.0

_MISSING_EYE_PROBABILITY = 0.5


def shoulder_angle(left: PosePoint, right: PosePoint) -> float:
    """Angle of the left→right shoulder vector in degrees (image coordinates)."""
    return float(np.degrees(np.arctan2(right.y - left.y, right.x - left.x)))


def eye_openness(face: Optional[FaceEvidence]) -> float:
    """Mean eye-open probability; a missing eye counts as half open."""
    if face is None:
        return NEUTRAL_ANGLES.eye_openness
    left = face.left_eye_open if face.left_eye_open is not None else _MISSING_EYE_PROBABILITY
    right = face.right_eye_open if face.right_eye_open is not None else _MISSING_EYE_PROBABILITY
    return (left + right) / 2.0


def extract_angles(frame: LandmarkFrame, head_source: str = HEAD_SOURCE_POSE) -> Optional[Angles]:
    """Compute :class:`Angles` for *frame*, or ``None`` when the landmarks
    needed for it are missing.

    With ``head_source="pose"`` the head axes come from body-landmark
    geometry: X from the nose-to-ear distance, Y from the vertical eye
    offset, Z from the angle of the eye-to-eye line.  With ``"face"`` the
    face detector's Euler angles are used directly.
    """
    pose = frame.pose
    if pose is None:
        return None

    l_sh = pose.get(PoseLandmark.LEFT_SHOULDER)
    r_sh = pose.get(PoseLandmark.RIGHT_SHOULDER)
    if l_sh is None or r_sh is None:
        return None

    if head_source == HEAD_SOURCE_FACE:
        if frame.face is None:
            return None
        head_x, head_y, head_z = frame.face.pitch, frame.face.yaw, frame.face.roll
    else:
        nose = pose.get(PoseLandmark.NOSE)
        l_eye = pose.get(PoseLandmark.LEFT_EYE)
        r_eye = pose.get(PoseLandmark.RIGHT_EYE)
        ear = pose.get(PoseLandmark.LEFT_EAR) or pose.get(PoseLandmark.RIGHT_EAR)
        if nose is None or l_eye is None or r_eye is None or ear is None:
            return None
        head_x = math.hypot(nose.x - ear.x, nose.y - ear.y) * _HEAD_X_SCALE
        head_y = (l_eye.y - r_eye.y) * _HEAD_Y_SCALE
        head_z = float(np.degrees(np.arctan2(l_eye.y - r_eye.y, l_eye.x - r_eye.x)))

    return Angles(
        head_x=float(head_x),
        head_y=float(head_y),
        head_z=float(head_z),
        shoulder_angle=shoulder_angle(l_sh, r_sh),
        eye_openness=eye_openness(frame.face),
    )


def extract_angles_or_neutral(frame: LandmarkFrame, head_source: str = HEAD_SOURCE_POSE) -> Angles:
    angles = extract_angles(frame, head_source)
    if angles is None:
        logger.debug("Angle extraction failed – required landmarks missing.")
        return NEUTRAL_ANGLES
    return angles
