from __future__ import annotations

import argparse
import logging
import threading
import time
from collections import deque
from typing import Optional, Sequence

import cv2
import numpy as np

from .alignment import AlignmentCalculator, Transform
from .capture import CameraSource
from .config import RuntimeConfig
from .geometry import LandmarkSet, Point
from .landmarks import DetectorOptions, FaceLandmarkTracker
from .loop import DetectionLoop
from .render import OverlayAsset, OverlayRenderer

logger = logging.getLogger(__name__)

WINDOW_NAME = "Eye Overlay"


class OverlayApp:
    def __init__(
        self,
        config: RuntimeConfig,
        camera: Optional[CameraSource] = None,
        tracker: Optional[FaceLandmarkTracker] = None,
    ) -> None:
        self.config = config
        left_eye = Point(*config.overlay_left_eye)
        right_eye = Point(*config.overlay_right_eye)
        if config.overlay_path:
            asset = OverlayAsset.load(config.overlay_path, left_eye, right_eye)
        else:
            asset = OverlayAsset.placeholder(config.overlay_width, config.overlay_height, left_eye, right_eye)
        self.renderer = OverlayRenderer(asset)
        self.camera = camera or CameraSource(config)
        self.tracker = tracker or FaceLandmarkTracker(
            DetectorOptions(
                min_detection_confidence=config.min_detection_confidence,
                min_tracking_confidence=config.min_tracking_confidence,
                refine_landmarks=config.refine_landmarks,
                model_dir=config.model_dir,
            )
        )
        self.calculator = AlignmentCalculator(
            asset.reference,
            window=config.smoothing_window,
            min_eye_distance=config.min_eye_distance,
        )
        self.loop = DetectionLoop(
            source=self.camera,
            detector=self.tracker,
            calculator=self.calculator,
            on_transform=self._on_transform,
            on_landmarks=self._on_landmarks,
        )
        self.show_overlay = config.show_overlay
        self.show_landmarks = config.show_landmarks
        self._lock = threading.Lock()
        self._transform: Optional[Transform] = None
        self._landmarks: Optional[LandmarkSet] = None
        self._update_times: deque[float] = deque(maxlen=60)
        self.last_error: Optional[str] = None

    def _on_transform(self, transform: Transform) -> None:
        with self._lock:
            self._transform = transform
            self._update_times.append(time.perf_counter())

    def _on_landmarks(self, landmarks: LandmarkSet) -> None:
        with self._lock:
            self._landmarks = landmarks

    def _tracking_rate(self) -> float:
        with self._lock:
            if len(self._update_times) < 2:
                return 0.0
            span = self._update_times[-1] - self._update_times[0]
            count = len(self._update_times)
        if span <= 1e-6:
            return 0.0
        return (count - 1) / span

    def latest(self) -> tuple[Optional[Transform], Optional[LandmarkSet]]:
        with self._lock:
            return self._transform, self._landmarks

    def _clear_session(self) -> None:
        with self._lock:
            self._transform = None
            self._landmarks = None
            self._update_times.clear()

    def start_tracking(self) -> bool:
        """Start the detection loop; a failed model load leaves the app idle."""
        if self.loop.running:
            return True
        # The previous session's last cycle must not write into the new one.
        self.loop.join(self.config.stop_timeout)
        self._clear_session()
        try:
            self.loop.start()
        except Exception as exc:
            logger.exception("Could not start tracking")
            self.last_error = f"start failed: {exc}"
            return False
        self.last_error = None
        return True

    def stop_tracking(self) -> None:
        self.loop.stop(timeout=self.config.stop_timeout)
        self._clear_session()

    def toggle_tracking(self) -> None:
        if self.loop.running:
            self.stop_tracking()
        else:
            self.start_tracking()

    def shutdown(self) -> None:
        self.loop.stop(timeout=None)
        if self.loop.join(self.config.stop_timeout):
            self.tracker.close()
        else:
            # detect() may still be using the model.
            logger.warning("Detection loop still busy after %.1fs, leaving the model open", self.config.stop_timeout)
        self.camera.stop()

    def _draw_status(self, frame: np.ndarray) -> None:
        lines = [
            f"Tracking: {'ON' if self.loop.running else 'OFF'}  ({self._tracking_rate():4.1f} Hz)",
            "Keys: SPACE track | O overlay | L landmarks | Q quit",
        ]
        if self.last_error:
            lines.append(self.last_error)
        y = 20
        for text in lines:
            cv2.putText(frame, text, (8, y), cv2.FONT_HERSHEY_SIMPLEX, 0.45, (10, 10, 10), 3, cv2.LINE_AA)
            cv2.putText(frame, text, (8, y), cv2.FONT_HERSHEY_SIMPLEX, 0.45, (240, 240, 240), 1, cv2.LINE_AA)
            y += 18

    def run(self) -> None:
        self.camera.start()
        if self.config.autostart:
            self.start_tracking()

        try:
            while True:
                frame, _ = self.camera.read()
                if frame is None:
                    time.sleep(0.001)
                    continue

                transform, landmarks = self.latest() if self.loop.running else (None, None)

                output = self.renderer.render(
                    frame,
                    transform,
                    landmarks,
                    show_overlay=self.show_overlay,
                    show_landmarks=self.show_landmarks,
                )
                if output is None:
                    continue
                self._draw_status(output)
                cv2.imshow(WINDOW_NAME, output)

                key = cv2.waitKey(1) & 0xFF
                if key in (ord("q"), 27):
                    break
                if key == ord(" "):
                    self.toggle_tracking()
                if key == ord("o"):
                    self.show_overlay = not self.show_overlay
                if key == ord("l"):
                    self.show_landmarks = not self.show_landmarks

        finally:
            self.shutdown()
            cv2.destroyAllWindows()


def _point_arg(value: str) -> tuple[float, float]:
    try:
        x, y = (float(part) for part in value.split(","))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected X,Y got {value!r}") from exc
    return x, y


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pin an overlay image to the eyes of a face on the webcam.")
    parser.add_argument("--camera-id", type=int, default=0, help="Webcam index.")
    parser.add_argument("--width", type=int, default=480, help="Display width.")
    parser.add_argument("--height", type=int, default=360, help="Display height.")
    parser.add_argument("--target-fps", type=int, default=30, help="Requested camera FPS.")
    parser.add_argument("--mirror", action="store_true", help="Mirror the camera image.")
    parser.add_argument("--overlay", type=str, default="", help="Overlay PNG (alpha channel honoured).")
    parser.add_argument("--left-eye", type=_point_arg, default=(164.0, 55.0), help="Overlay left eye X,Y.")
    parser.add_argument("--right-eye", type=_point_arg, default=(236.0, 55.0), help="Overlay right eye X,Y.")
    parser.add_argument("--window", type=int, default=3, help="Smoothing window length.")
    parser.add_argument("--min-eye-distance", type=float, default=1.0, help="Skip frames whose eyes are closer than this (px).")
    parser.add_argument("--min-confidence", type=float, default=0.5, help="Face detection confidence.")
    parser.add_argument("--refine-landmarks", action="store_true", help="Enable FaceMesh iris refinement.")
    parser.add_argument("--model-dir", type=str, default="", help="Where to cache the landmarker model.")
    parser.add_argument("--autostart", action="store_true", help="Start tracking immediately.")
    parser.add_argument("--stop-timeout", type=float, default=1.0, help="Seconds to wait for the detector when stopping.")
    parser.add_argument("--no-overlay", action="store_true", help="Hide the overlay at startup.")
    parser.add_argument("--no-landmarks", action="store_true", help="Hide debug landmarks at startup.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    return parser


def config_from_args(args: argparse.Namespace) -> RuntimeConfig:
    return RuntimeConfig(
        camera_id=args.camera_id,
        frame_width=args.width,
        frame_height=args.height,
        target_fps=args.target_fps,
        mirror=args.mirror,
        overlay_path=args.overlay or None,
        overlay_left_eye=tuple(args.left_eye),
        overlay_right_eye=tuple(args.right_eye),
        smoothing_window=max(1, args.window),
        min_eye_distance=args.min_eye_distance,
        min_detection_confidence=args.min_confidence,
        min_tracking_confidence=args.min_confidence,
        refine_landmarks=args.refine_landmarks,
        model_dir=args.model_dir or None,
        show_overlay=not args.no_overlay,
        show_landmarks=not args.no_landmarks,
        autostart=args.autostart,
        stop_timeout=args.stop_timeout,
        log_level=args.log_level.upper(),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    config = config_from_args(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app = OverlayApp(config)
    app.run()


if __name__ == "__main__":
    main()
