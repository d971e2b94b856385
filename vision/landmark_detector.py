"""MediaPipe Face + Pose landmarkers (Tasks API) producing :class:`LandmarkFrame`."""

from __future__ import annotations

import logging
import time
import urllib.request
from pathlib import Path
from typing import Optional

import mediapipe as mp
import numpy as np
from mediapipe.tasks.python import vision
from mediapipe.tasks.python.core.base_options import BaseOptions

from domain.models import LandmarkFrame
from vision.landmark_mapping import TrackingIds, face_evidence, pose_evidence

logger = logging.getLogger(__name__)

# ── Model files ───────────────────────────────────────────────────────────────
FACE_MODEL_PATH = Path("assets") / "face_landmarker.task"
FACE_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/"
    "face_landmarker/face_landmarker/float16/1/face_landmarker.task"
)
POSE_MODEL_PATH = Path("assets") / "pose_landmarker_lite.task"
POSE_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/"
    "pose_landmarker/pose_landmarker_lite/float16/1/pose_landmarker_lite.task"
)


def ensure_model(model_path: Path, url: str) -> Path:
    """Return *model_path*, downloading it from *url* first if necessary.

    Raises ``RuntimeError`` on network failure so the caller can report it.
    """
    if model_path.exists():
        return model_path

    model_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading %s → %s", model_path.name, model_path)

    def _progress(block_num: int, block_size: int, total_size: int) -> None:
        if total_size > 0:
            pct = min(100, block_num * block_size * 100 // total_size)
            bar = "#" * (pct // 5) + "." * (20 - pct // 5)
            print(f"\r  [{bar}] {pct}%", end="", flush=True)

    try:
        urllib.request.urlretrieve(url, str(model_path), reporthook=_progress)
        print()
        logger.info("Model saved: %s", model_path)
    except OSError as exc:
        model_path.unlink(missing_ok=True)  # remove partial file
        raise RuntimeError(
            f"Failed to download {model_path.name} from:\n{url}\n\n"
            f"Error: {exc}\n\n"
            f"Download it manually and place it at:  {model_path.resolve()}"
        ) from exc
    return model_path


class LandmarkDetector:
    """Runs the face and pose landmarkers on one RGB frame at a time.

    Must be used from a **single thread** – MediaPipe landmarkers are not
    thread-safe.  The controller's frame worker owns this instance.
    """

    def __init__(
        self,
        face_model: Optional[Path] = None,
        pose_model: Optional[Path] = None,
        min_visibility: float = 0.5,
    ) -> None:
        self.min_visibility = min_visibility
        face_path = face_model or ensure_model(FACE_MODEL_PATH, FACE_MODEL_URL)
        pose_path = pose_model or ensure_model(POSE_MODEL_PATH, POSE_MODEL_URL)

        face_options = vision.FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(face_path.resolve())),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=0.5,
            min_face_presence_confidence=0.5,
            min_tracking_confidence=0.5,
            output_face_blendshapes=True,
            output_facial_transformation_matrixes=True,
        )
        pose_options = vision.PoseLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(pose_path.resolve())),
            running_mode=vision.RunningMode.VIDEO,
            num_poses=1,
            min_pose_detection_confidence=0.5,
            min_pose_presence_confidence=0.5,
            min_tracking_confidence=0.5,
        )
        self._face = vision.FaceLandmarker.create_from_options(face_options)
        self._pose = vision.PoseLandmarker.create_from_options(pose_options)
        self._ids = TrackingIds()
        self._start_mono = time.monotonic()
        self._last_ts_ms: int = -1
        logger.info("LandmarkDetector initialised (face=%s, pose=%s)", face_path.name, pose_path.name)

    def process(self, frame_rgb: np.ndarray) -> LandmarkFrame:
        """Detect landmarks in one RGB frame."""
        # Timestamp must be strictly monotonically increasing for VIDEO mode
        ts_ms = int((time.monotonic() - self._start_mono) * 1000)
        ts_ms = max(ts_ms, self._last_ts_ms + 1)
        self._last_ts_ms = ts_ms

        height, width = frame_rgb.shape[:2]
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)
        face_result = self._face.detect_for_video(image, ts_ms)
        pose_result = self._pose.detect_for_video(image, ts_ms)

        face = None
        tracking_id = self._ids.update(bool(face_result.face_landmarks))
        if face_result.face_landmarks:
            blendshapes = face_result.face_blendshapes[0] if face_result.face_blendshapes else None
            transform = (
                face_result.facial_transformation_matrixes[0]
                if face_result.facial_transformation_matrixes
                else None
            )
            face = face_evidence(
                face_result.face_landmarks[0],
                width,
                height,
                blendshapes=blendshapes,
                transform=transform,
                tracking_id=tracking_id,
            )

        pose = None
        if pose_result.pose_landmarks:
            pose = pose_evidence(pose_result.pose_landmarks[0], width, height, self.min_visibility)

        return LandmarkFrame(face=face, pose=pose)

    def close(self) -> None:
        self._face.close()
        self._pose.close()
        logger.debug("LandmarkDetector closed.")
