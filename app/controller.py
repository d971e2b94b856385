"""Session lifecycle controller – runs the frame pipeline and the timers in
worker threads and forwards decided commands to the peripheral."""

from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from app.config import Config
from domain.engine import EngineBusyError, MonitorEngine
from domain.models import EvaluationResult, LandmarkFrame
from peripheral.link import PeripheralLink
from peripheral.transport import SerialTransport

logger = logging.getLogger(__name__)

# No new camera frame for this long counts as an empty frame
_FRAME_STALL_S = 1.0


def build_engine(config: Config) -> MonitorEngine:
    return MonitorEngine(
        head_source=config.head_angle_source,
        away_threshold_ms=config.user_away_threshold_ms,
        absent_frames_threshold=config.absent_frames_threshold,
        away_confidence_threshold=config.away_confidence_threshold,
        return_frames=config.return_frames,
        return_gap_ms=config.return_gap_ms,
        motion_threshold=config.motion_threshold,
        noise_calibration_frames=config.noise_calibration_frames,
        away_check_interval_ms=config.away_check_interval_s * 1000.0,
    )


def build_link(config: Config) -> PeripheralLink:
    transport = SerialTransport(
        config.serial_port,
        baudrate=config.serial_baudrate,
        timeout_s=config.serial_timeout_s,
    )
    return PeripheralLink(transport, keepalive_interval_s=config.keepalive_interval_s)


class Controller:
    """Owns the camera, landmark detector, decision engine and peripheral link.

    Three logical tasks run while monitoring: the frame worker (camera →
    detector → engine), the timer (engine tick + keepalive) and the link's
    own writer/reader threads.  Engine results are pushed into a bounded
    queue that the caller polls.
    """

    def __init__(
        self,
        config: Config,
        engine: Optional[MonitorEngine] = None,
        link: Optional[PeripheralLink] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.engine = engine or build_engine(config)
        self.link = link or build_link(config)
        # Commands reach the link inside the engine lock, so frame and timer
        # paths enqueue them in the order they were decided
        self.engine.command_sink = self.link.send
        self.camera = None
        self.detector = None
        self._clock = clock

        self._result_queue: queue.Queue[EvaluationResult] = queue.Queue(maxsize=5)
        self._stop_event = threading.Event()
        self._worker_thread: Optional[threading.Thread] = None
        self._timer_thread: Optional[threading.Thread] = None
        self._monitoring = False
        self._released = False

    # ------------------------------------------------------------------
    # Startup / Shutdown
    # ------------------------------------------------------------------

    def start_camera(self) -> None:
        # Imported here so the engine and link can run without the vision stack
        from vision.camera import Camera
        from vision.landmark_detector import LandmarkDetector

        cfg = self.config
        self.camera = Camera(cfg.camera_index, cfg.camera_width, cfg.camera_height, cfg.fps_target)
        self.camera.start()
        self.detector = LandmarkDetector(
            face_model=Path(cfg.face_model_path) if cfg.face_model_path else None,
            pose_model=Path(cfg.pose_model_path) if cfg.pose_model_path else None,
            min_visibility=cfg.min_landmark_visibility,
        )
        logger.info("Controller: camera + landmark detector ready.")

    def stop_camera(self) -> None:
        if self.camera is not None:
            self.camera.stop()
            self.camera = None
        if self.detector is not None:
            self.detector.close()
            self.detector = None

    def connect_peripheral(self) -> None:
        self.link.connect()

    def release(self) -> None:
        """Stop everything.  Safe to call more than once."""
        if self._released:
            return
        self._released = True
        if self._monitoring:
            self.stop_monitoring()
        self.stop_camera()
        self.link.release()
        self.engine.release()
        logger.info("Controller released.")

    # ------------------------------------------------------------------
    # Monitoring lifecycle
    # ------------------------------------------------------------------

    def start_monitoring(self) -> EvaluationResult:
        result = self.engine.start(self._now_ms())
        self._monitoring = True
        self._start_workers()
        logger.info("Monitoring session started.")
        return result

    def stop_monitoring(self) -> EvaluationResult:
        self._stop_workers()
        self._monitoring = False
        result = self.engine.stop(self._now_ms())
        logger.info("Monitoring session stopped.")
        return result

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    # ------------------------------------------------------------------
    # Pipeline entry points
    # ------------------------------------------------------------------

    def submit_frame(self, frame: LandmarkFrame, now_ms: Optional[float] = None) -> Optional[EvaluationResult]:
        """Evaluate one frame; ``None`` if it was dropped because the engine
        was still busy with the previous one."""
        try:
            result = self.engine.evaluate(frame, self._now_ms() if now_ms is None else now_ms)
        except EngineBusyError:
            logger.debug("Frame dropped – engine busy.")
            return None
        self._publish(result)
        return result

    def tick(self, now_ms: Optional[float] = None) -> EvaluationResult:
        """Timer path: away escalation and keepalive, independent of frames."""
        result = self.engine.tick(self._now_ms() if now_ms is None else now_ms)
        if result.commands or result.transitions or result.raised or result.cleared:
            self._publish(result)
        self.link.maybe_keepalive()
        return result

    def poll_result(self) -> Optional[EvaluationResult]:
        """Non-blocking read from the result queue."""
        try:
            return self._result_queue.get_nowait()
        except queue.Empty:
            return None

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------

    def _start_workers(self) -> None:
        self._stop_event.clear()
        self._timer_thread = threading.Thread(target=self._timer_loop, daemon=True, name="MonitorTimer")
        self._timer_thread.start()
        if self.camera is not None and self.detector is not None:
            self._worker_thread = threading.Thread(
                target=self._worker_loop, daemon=True, name="FrameWorker"
            )
            self._worker_thread.start()

    def _stop_workers(self) -> None:
        self._stop_event.set()
        for thread in (self._worker_thread, self._timer_thread):
            if thread is not None:
                thread.join(timeout=2.0)
        self._worker_thread = None
        self._timer_thread = None

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self.config.tick_interval_s):
            self.tick()

    def _worker_loop(self) -> None:
        assert self.camera is not None
        assert self.detector is not None

        target_interval = 1.0 / max(1, self.config.fps_target)
        last_seq = 0
        last_tick = self._clock()
        last_frame_at = last_tick

        while not self._stop_event.is_set():
            # Throttle to target fps
            elapsed = self._clock() - last_tick
            if elapsed < target_interval:
                time.sleep(target_interval - elapsed)
            last_tick = self._clock()

            latest = self.camera.latest(last_seq)
            if latest is None:
                if last_tick - last_frame_at >= _FRAME_STALL_S:
                    logger.warning("No camera frame for %.1f s.", last_tick - last_frame_at)
                    last_frame_at = last_tick
                    self.submit_frame(LandmarkFrame.empty())
                continue
            last_seq, frame_rgb = latest
            last_frame_at = last_tick

            try:
                frame = self.detector.process(frame_rgb)
            except Exception as exc:  # detector failure reads as an empty frame
                logger.warning("Landmark detection failed: %s", exc)
                frame = LandmarkFrame.empty()

            self.submit_frame(frame)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _publish(self, result: EvaluationResult) -> None:
        try:
            self._result_queue.put_nowait(result)
        except queue.Full:
            pass  # drop result – caller is slower than pipeline

    def _now_ms(self) -> float:
        return self._clock() * 1000.0
