from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, Optional, Protocol, Tuple

import numpy as np

from .alignment import AlignmentCalculator, Transform
from .geometry import FaceDetection, LandmarkSet

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def read(self) -> Tuple[Optional[np.ndarray], float]: ...


class Detector(Protocol):
    def load(self) -> None: ...

    def detect(self, frame: np.ndarray) -> Optional[FaceDetection]: ...


class LoopState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class DetectionLoop:
    """Pulls frames, runs the detector and emits smoothed overlay transforms.

    Cycles run back to back on one worker thread, so at most one detector
    call is in flight. Each session gets its own stop event; the worker checks
    it at the top of every cycle, which lets an in-flight detector call finish
    before the loop winds down.
    """

    def __init__(
        self,
        source: FrameSource,
        detector: Detector,
        calculator: AlignmentCalculator,
        on_transform: Callable[[Transform], Any],
        on_landmarks: Optional[Callable[[LandmarkSet], Any]] = None,
    ) -> None:
        self.source = source
        self.detector = detector
        self.calculator = calculator
        self.on_transform = on_transform
        self.on_landmarks = on_landmarks
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self.cycles = 0
        self.faces = 0
        self.failures = 0

    @property
    def state(self) -> LoopState:
        with self._lock:
            if self._stop_event is not None and not self._stop_event.is_set():
                return LoopState.RUNNING
            return LoopState.IDLE

    @property
    def running(self) -> bool:
        return self.state is LoopState.RUNNING

    def start(self) -> None:
        if self.running:
            logger.info("Detection loop already running")
            return

        # A previous session may still be finishing its last detector call.
        self.join()

        try:
            self.detector.load()
        except Exception:
            logger.error("Model loading failed, detection loop not started")
            raise

        self.calculator.reset()
        self.cycles = 0
        self.faces = 0
        self.failures = 0

        stop_event = threading.Event()
        thread = threading.Thread(target=self._run, args=(stop_event,), name="detection-loop", daemon=True)
        with self._lock:
            self._stop_event = stop_event
            self._thread = thread
        thread.start()
        logger.info("Detection loop started")

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        with self._lock:
            stop_event = self._stop_event
        if stop_event is None or stop_event.is_set():
            return
        stop_event.set()
        logger.info("Detection loop stopping")
        if timeout is not None:
            self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit. Returns False if it is still alive."""
        with self._lock:
            thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _run(self, stop_event: threading.Event) -> None:
        try:
            while self._cycle(stop_event):
                pass
        finally:
            stop_event.set()
        logger.info(
            "Detection loop finished after %d cycles (%d with a face, %d failed)",
            self.cycles,
            self.faces,
            self.failures,
        )

    def _cycle(self, stop_event: threading.Event) -> bool:
        if stop_event.is_set():
            return False
        self.cycles += 1

        frame, _ = self.source.read()
        if frame is None:
            logger.debug("Frame source not ready, skipping cycle")
            return True

        try:
            detection = self.detector.detect(frame)
        except Exception:
            self.failures += 1
            logger.exception("Face detection failed, continuing with next frame")
            return True

        if detection is None:
            return True

        self.faces += 1
        transform = self.calculator.update(detection.landmarks)
        if transform is not None:
            self.on_transform(transform)
        if self.on_landmarks is not None:
            self.on_landmarks(detection.landmarks)
        return True
