"""Threaded webcam capture that always hands out the newest frame."""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class Camera:
    """Reads frames on a background thread and keeps only the latest one,
    so a slow consumer drops frames instead of falling behind.

    Each frame carries a sequence number; :meth:`latest` returns ``None``
    when nothing newer than the caller's last sequence is available.
    """

    def __init__(self, index: int = 0, width: int = 640, height: int = 480, fps: int = 30) -> None:
        self.index = index
        self.requested_size = (width, height)
        self.fps = fps
        self._cap: Optional[cv2.VideoCapture] = None
        self._frame: Optional[np.ndarray] = None
        self._seq = 0
        self._lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open camera at index {self.index}.")
        width, height = self.requested_size
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cap = cap

        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, daemon=True, name="CameraCapture")
        self._thread.start()
        logger.info(
            "Camera started: index=%d  res=%dx%d",
            self.index,
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def stop(self) -> None:
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._cap:
            self._cap.release()
            self._cap = None
        logger.info("Camera stopped.")

    # ------------------------------------------------------------------
    # Frame access
    # ------------------------------------------------------------------

    def latest(self, after_seq: int = 0) -> Optional[tuple[int, np.ndarray]]:
        """Return ``(seq, frame_rgb)`` for the newest frame if its sequence
        number is greater than *after_seq*."""
        with self._lock:
            if self._frame is None or self._seq <= after_seq:
                return None
            seq, frame_bgr = self._seq, self._frame
        return seq, cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _capture_loop(self) -> None:
        assert self._cap is not None
        while self._running:
            ok, frame = self._cap.read()
            if not ok:
                time.sleep(0.005)
                continue
            with self._lock:
                self._frame = frame
                self._seq += 1
