"""Core data models for the posture monitor."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class PoseLandmark(str, Enum):
    NOSE = "nose"
    LEFT_EYE_INNER = "left_eye_inner"
    LEFT_EYE = "left_eye"
    LEFT_EYE_OUTER = "left_eye_outer"
    RIGHT_EYE_INNER = "right_eye_inner"
    RIGHT_EYE = "right_eye"
    RIGHT_EYE_OUTER = "right_eye_outer"
    LEFT_EAR = "left_ear"
    RIGHT_EAR = "right_ear"
    MOUTH_LEFT = "mouth_left"
    MOUTH_RIGHT = "mouth_right"
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_ELBOW = "left_elbow"
    RIGHT_ELBOW = "right_elbow"
    LEFT_WRIST = "left_wrist"
    RIGHT_WRIST = "right_wrist"
    LEFT_PINKY = "left_pinky"
    RIGHT_PINKY = "right_pinky"
    LEFT_INDEX = "left_index"
    RIGHT_INDEX = "right_index"
    LEFT_THUMB = "left_thumb"
    RIGHT_THUMB = "right_thumb"
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"
    LEFT_HEEL = "left_heel"
    RIGHT_HEEL = "right_heel"
    LEFT_FOOT_INDEX = "left_foot_index"
    RIGHT_FOOT_INDEX = "right_foot_index"


@dataclass(frozen=True)
class PosePoint:
    x: float
    y: float
    likelihood: float = 1.0  # in-frame likelihood, 0-1


@dataclass(frozen=True)
class PoseEvidence:
    landmarks: dict[PoseLandmark, PosePoint] = field(default_factory=dict)

    def get(self, name: PoseLandmark) -> Optional[PosePoint]:
        return self.landmarks.get(name)

    def __len__(self) -> int:
        return len(self.landmarks)


@dataclass(frozen=True)
class FaceEvidence:
    pitch: float = 0.0  # head Euler X, degrees
    yaw: float = 0.0    # head Euler Y, degrees
    roll: float = 0.0   # head Euler Z, degrees
    left_eye_open: Optional[float] = None
    right_eye_open: Optional[float] = None
    tracking_id: Optional[int] = None
    # (left, top, right, bottom) in the same units as pose positions
    bounding_box: Optional[tuple[float, float, float, float]] = None

    @property
    def has_eye_state(self) -> bool:
        return self.left_eye_open is not None or self.right_eye_open is not None

    @property
    def center(self) -> Optional[tuple[float, float]]:
        if self.bounding_box is None:
            return None
        left, top, right, bottom = self.bounding_box
        return (left + right) / 2.0, (top + bottom) / 2.0


@dataclass(frozen=True)
class LandmarkFrame:
    """Everything the detectors saw in one camera frame.  Either part may be
    missing; a frame with neither is an absence signal."""

    face: Optional[FaceEvidence] = None
    pose: Optional[PoseEvidence] = None

    @classmethod
    def empty(cls) -> "LandmarkFrame":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.face is None and self.pose is None


@dataclass(frozen=True)
class Angles:
    head_x: float
    head_y: float
    head_z: float
    shoulder_angle: float
    eye_openness: float


NEUTRAL_ANGLES = Angles(0.0, 0.0, 0.0, 0.0, 1.0)


class MonitorState(str, Enum):
    IDLE = "IDLE"
    MONITORING = "MONITORING"
    USER_AWAY = "USER_AWAY"


class IssueType(str, Enum):
    HEAD_FORWARD_TILT = "HEAD_FORWARD_TILT"
    HEAD_BACKWARD_TILT = "HEAD_BACKWARD_TILT"
    HEAD_SIDE_TILT = "HEAD_SIDE_TILT"
    HEAD_ROLL_TILT = "HEAD_ROLL_TILT"
    SHOULDER_TILT = "SHOULDER_TILT"
    DROWSINESS = "DROWSINESS"
    USER_AWAY = "USER_AWAY"

    @property
    def debounce_ms(self) -> float:
        return _DEBOUNCE_MS[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DEBOUNCE_MS: dict[IssueType, float] = {
    IssueType.HEAD_FORWARD_TILT: 1500.0,
    IssueType.HEAD_BACKWARD_TILT: 1500.0,
    IssueType.HEAD_SIDE_TILT: 1500.0,
    IssueType.HEAD_ROLL_TILT: 1500.0,
    IssueType.SHOULDER_TILT: 2000.0,
    IssueType.DROWSINESS: 2500.0,
    IssueType.USER_AWAY: 3000.0,
}

_DESCRIPTIONS: dict[IssueType, str] = {
    IssueType.HEAD_FORWARD_TILT: "head tilted forward",
    IssueType.HEAD_BACKWARD_TILT: "head tilted backward",
    IssueType.HEAD_SIDE_TILT: "head tilted sideways",
    IssueType.HEAD_ROLL_TILT: "head rotated",
    IssueType.SHOULDER_TILT: "shoulder tilt",
    IssueType.DROWSINESS: "drowsiness",
    IssueType.USER_AWAY: "away from desk",
}

POSTURE_ISSUES: tuple[IssueType, ...] = tuple(t for t in IssueType if t is not IssueType.USER_AWAY)


@dataclass
class IssueRecord:
    type: IssueType
    first_observed_at: float  # ms


@dataclass(frozen=True)
class ActiveIssue:
    type: IssueType
    description: str


# ----------------------------------------------------------------------
# Events returned from the engine
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StateChanged:
    previous: MonitorState
    current: MonitorState
    at_ms: float


@dataclass(frozen=True)
class IssueRaised:
    issue: IssueType
    at_ms: float


@dataclass(frozen=True)
class IssueCleared:
    issue: IssueType
    at_ms: float


@dataclass(frozen=True)
class Diagnostic:
    """Structured diagnostic message; ``fields`` carries the raw numbers."""

    message: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class EvaluationResult:
    """Everything one engine call decided.  The caller dispatches
    ``commands`` in order and renders the rest."""

    state: MonitorState
    at_ms: float
    present: Optional[bool] = None
    presence_score: float = 0.0
    adjusted_score: float = 0.0
    motion_score: float = 0.0
    confidence: float = 0.0
    angles: Optional[Angles] = None
    transitions: list[StateChanged] = field(default_factory=list)
    raised: list[IssueRaised] = field(default_factory=list)
    cleared: list[IssueCleared] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    status_text: Optional[str] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
