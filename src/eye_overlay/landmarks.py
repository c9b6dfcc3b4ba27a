from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.request import urlretrieve

import cv2
import mediapipe as mp
import numpy as np

from .geometry import FACEMESH_EYE_CORNERS, FaceDetection, LandmarkSet

logger = logging.getLogger(__name__)


@dataclass
class DetectorOptions:
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    refine_landmarks: bool = False
    model_dir: Optional[str] = None


class FaceLandmarkTracker:
    """Single-face landmark detector backed by MediaPipe.

    Prefers the legacy ``solutions.face_mesh`` API and falls back to the
    Tasks ``FaceLandmarker``, whose model file is fetched on first load.
    Nothing is built until :meth:`load` runs.
    """

    MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/latest/face_landmarker.task"

    def __init__(self, options: Optional[DetectorOptions] = None) -> None:
        self.options = options or DetectorOptions()
        self._backend = "solutions" if self._has_solutions_backend() else "tasks"
        self._face_mesh = None
        self._face_landmarker = None

    @property
    def backend(self) -> str:
        return self._backend

    @property
    def is_loaded(self) -> bool:
        return self._face_mesh is not None or self._face_landmarker is not None

    @staticmethod
    def _has_solutions_backend() -> bool:
        return hasattr(mp, "solutions") and hasattr(mp.solutions, "face_mesh")

    def _model_dir(self) -> Path:
        if self.options.model_dir:
            return Path(self.options.model_dir)
        return Path(__file__).resolve().parents[2] / "models"

    def _ensure_task_model(self) -> Path:
        model_dir = self._model_dir()
        model_dir.mkdir(parents=True, exist_ok=True)
        model_path = model_dir / "face_landmarker.task"
        if model_path.exists():
            return model_path

        logger.info("Downloading face landmarker model to %s", model_path)
        tmp_path = model_dir / "face_landmarker.task.tmp"
        try:
            urlretrieve(self.MODEL_URL, tmp_path)
            tmp_path.replace(model_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
        return model_path

    def load(self) -> None:
        if self.is_loaded:
            return
        if self._backend == "solutions":
            self._face_mesh = mp.solutions.face_mesh.FaceMesh(
                max_num_faces=1,
                refine_landmarks=self.options.refine_landmarks,
                min_detection_confidence=self.options.min_detection_confidence,
                min_tracking_confidence=self.options.min_tracking_confidence,
            )
        else:
            model_path = self._ensure_task_model()
            options = mp.tasks.vision.FaceLandmarkerOptions(
                base_options=mp.tasks.BaseOptions(model_asset_path=str(model_path)),
                running_mode=mp.tasks.vision.RunningMode.IMAGE,
                num_faces=1,
                min_face_detection_confidence=self.options.min_detection_confidence,
                min_face_presence_confidence=self.options.min_detection_confidence,
                min_tracking_confidence=self.options.min_tracking_confidence,
                output_face_blendshapes=False,
                output_facial_transformation_matrixes=False,
            )
            self._face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
        logger.info("Face landmark model loaded (backend=%s)", self._backend)

    @staticmethod
    def _denorm(mesh: object, width: int, height: int) -> np.ndarray:
        coords = np.array([(float(lm.x), float(lm.y)) for lm in mesh], dtype=np.float32)
        coords[:, 0] *= width
        coords[:, 1] *= height
        return coords

    def detect(self, frame_bgr: np.ndarray) -> Optional[FaceDetection]:
        if not self.is_loaded:
            raise RuntimeError("Face landmark model is not loaded")

        height, width = frame_bgr.shape[:2]
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

        if self._backend == "solutions":
            assert self._face_mesh is not None
            result = self._face_mesh.process(frame_rgb)
            if not result.multi_face_landmarks:
                return None
            mesh = result.multi_face_landmarks[0].landmark
        else:
            assert self._face_landmarker is not None
            mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)
            result = self._face_landmarker.detect(mp_image)
            if not result.face_landmarks:
                return None
            mesh = result.face_landmarks[0]

        if len(mesh) < FACEMESH_EYE_CORNERS.required:
            return None

        coords = self._denorm(mesh, width, height)
        x0, y0 = coords.min(axis=0)
        x1, y1 = coords.max(axis=0)
        return FaceDetection(
            bbox=(float(x0), float(y0), float(x1), float(y1)),
            landmarks=LandmarkSet.from_array(coords, corners=FACEMESH_EYE_CORNERS),
        )

    def close(self) -> None:
        if self._face_mesh is not None:
            self._face_mesh.close()
            self._face_mesh = None
        if self._face_landmarker is not None:
            self._face_landmarker.close()
            self._face_landmarker = None
