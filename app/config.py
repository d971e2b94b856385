"""Application-wide configuration with typed fields and sane defaults."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.json")


@dataclass
class Config:
    # Camera
    camera_index: int = 0
    camera_width: int = 640
    camera_height: int = 480
    fps_target: int = 15

    # Landmark detection
    face_model_path: str = ""      # empty → download to assets/
    pose_model_path: str = ""
    min_landmark_visibility: float = 0.5
    head_angle_source: str = "pose"  # "pose" geometry or "face" Euler angles

    # Presence / away detection
    user_away_threshold_ms: float = 3000.0
    absent_frames_threshold: int = 10
    away_confidence_threshold: float = -3.0
    return_frames: int = 2
    return_gap_ms: float = 800.0
    motion_threshold: float = 15.0
    noise_calibration_frames: int = 30

    # Timers
    tick_interval_s: float = 1.0
    away_check_interval_s: float = 10.0
    keepalive_interval_s: float = 30.0

    # Peripheral
    serial_port: str = "/dev/rfcomm0"
    serial_baudrate: int = 115200
    serial_timeout_s: float = 0.5
    connect_on_start: bool = True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path = DEFAULT_CONFIG_PATH) -> None:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(asdict(self), fh, indent=2)
        logger.debug("Config saved to %s", path)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        path = path or DEFAULT_CONFIG_PATH
        if not path.exists():
            return cls()
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not load config (%s); using defaults.", exc)
            return cls()
        if not isinstance(data, dict):
            logger.warning("Config %s is not a JSON object; using defaults.", path)
            return cls()

        known = {f.name for f in fields(cls)}
        cfg = cls()
        for k, v in data.items():
            if k in known:
                setattr(cfg, k, v)
            else:
                logger.debug("Ignoring unknown config key %r", k)
        logger.debug("Config loaded from %s", path)
        return cfg
