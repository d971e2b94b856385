"""Per-frame presence scoring, noise-floor adaptation and confidence smoothing."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from domain.models import FaceEvidence, LandmarkFrame, PoseEvidence, PoseLandmark

logger = logging.getLogger(__name__)

# Weights of the landmarks that matter most for "someone is sitting here"
LANDMARK_WEIGHTS: dict[PoseLandmark, float] = {
    PoseLandmark.NOSE: 3.0,
    PoseLandmark.LEFT_EYE: 2.5,
    PoseLandmark.RIGHT_EYE: 2.5,
    PoseLandmark.LEFT_EAR: 1.5,
    PoseLandmark.RIGHT_EAR: 1.5,
    PoseLandmark.LEFT_SHOULDER: 2.0,
    PoseLandmark.RIGHT_SHOULDER: 2.0,
    PoseLandmark.LEFT_ELBOW: 1.0,
    PoseLandmark.RIGHT_ELBOW: 1.0,
}
_WEIGHT_SUM = sum(LANDMARK_WEIGHTS.values())

STALE_FRAME_MS = 500
CONFIDENCE_LIMIT = 10.0


def face_term(face: Optional[FaceEvidence]) -> float:
    if face is None:
        return -2.5

    score = 3.0
    pitch, yaw = abs(face.pitch), abs(face.yaw)
    if pitch > 45 or yaw > 45:
        score -= 2.0
    elif pitch > 30 or yaw > 30:
        score -= 1.0
    elif pitch > 20 or yaw > 20:
        score -= 0.5

    left = face.left_eye_open or 0.0
    right = face.right_eye_open or 0.0
    eyes = (left + right) / 2.0
    if eyes > 0.7:
        score += 1.0
    elif eyes > 0.5:
        score += 0.7
    elif eyes > 0.3:
        score += 0.4
    else:
        score -= 0.2  # closed eyes read as drowsy, not gone

    if face.tracking_id is not None:
        score += 0.5
    return score


def pose_term(pose: Optional[PoseEvidence]) -> float:
    if pose is None:
        return -3.0

    n = len(pose)
    if n >= 15:
        score = 2.5
    elif n >= 10:
        score = 2.0
    elif n >= 5:
        score = 1.5
    elif n > 0:
        score = 0.5
    else:
        score = -1.5

    present = [(w, pose.get(name)) for name, w in LANDMARK_WEIGHTS.items()]
    weighted = [w * p.likelihood for w, p in present if p is not None]
    if weighted:
        score += float(np.sum(weighted)) / _WEIGHT_SUM * 2.0
    return score


def staleness_penalty(elapsed_ms: float) -> float:
    if elapsed_ms <= STALE_FRAME_MS:
        return 0.0
    steps = min(int(elapsed_ms // STALE_FRAME_MS), 3)
    return 0.5 * steps


class PresenceScorer:
    """Weighted additive evidence that a person is in view.

    Stateless apart from configuration; see :class:`NoiseFloor` for the
    adaptive part.
    """

    def __init__(self, motion_weight: float = 1.5) -> None:
        self.motion_weight = motion_weight

    def score(self, frame: LandmarkFrame, motion_score: float, elapsed_ms: float) -> float:
        return (
            face_term(frame.face)
            + pose_term(frame.pose)
            + motion_score * self.motion_weight
            - staleness_penalty(elapsed_ms)
        )


class NoiseFloor:
    """Learns the typical magnitude of negative scores from the first
    *calibration_frames* negative frames, then damps negative scores that
    look like that ambient jitter."""

    def __init__(self, calibration_frames: int = 30, margin: float = 1.5) -> None:
        self.calibration_frames = calibration_frames
        self.margin = margin
        self.level = 0.0
        self.samples = 0

    def reset(self) -> None:
        self.level = 0.0
        self.samples = 0

    @property
    def learned(self) -> bool:
        return self.samples >= self.calibration_frames

    def adjust(self, score: float) -> float:
        if score >= 0:
            return score
        if not self.learned:
            self.level = (self.level * self.samples + abs(score)) / (self.samples + 1)
            self.samples += 1
            logger.debug(
                "Noise floor learning: %.3f (%d/%d)", self.level, self.samples, self.calibration_frames
            )
            return score
        if abs(score) < self.level * self.margin:
            return score * 0.5
        return score


class ConfidenceAccumulator:
    """Time-adaptive exponential filter over presence scores, clamped to
    ±``limit``.  Frames arriving after a gap weigh the new score more."""

    def __init__(self, limit: float = CONFIDENCE_LIMIT) -> None:
        self.limit = limit
        self.value = 0.0

    def reset(self) -> None:
        self.value = 0.0

    def update(self, score: float, elapsed_ms: float) -> float:
        time_weight = float(np.clip(1000.0 / (max(elapsed_ms, 0.0) + 1000.0), 0.1, 0.9))
        updated = self.value * (0.7 * time_weight) + score * (0.3 + (1.0 - time_weight))
        self.value = float(np.clip(updated, -self.limit, self.limit))
        return self.value
