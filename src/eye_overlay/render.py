from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .alignment import ReferenceConfig, Transform
from .geometry import LandmarkSet, Point

logger = logging.getLogger(__name__)


@dataclass
class OverlayAsset:
    image: np.ndarray  # BGRA
    reference: ReferenceConfig

    @classmethod
    def load(cls, path: str, left_eye: Point, right_eye: Point) -> "OverlayAsset":
        if not Path(path).is_file():
            raise FileNotFoundError(f"Overlay image not found: {path}")
        image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        if image is None:
            raise ValueError(f"Unable to decode overlay image: {path}")
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
        elif image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
        height, width = image.shape[:2]
        logger.info("Loaded overlay %s (%dx%d)", path, width, height)
        return cls(image=image, reference=ReferenceConfig(left_eye, right_eye, width=width, height=height))

    @classmethod
    def placeholder(cls, width: int, height: int, left_eye: Point, right_eye: Point) -> "OverlayAsset":
        """Transparent canvas with a pair of glasses drawn around the eye centers."""
        reference = ReferenceConfig(left_eye, right_eye, width=width, height=height)
        image = np.zeros((height, width, 4), dtype=np.uint8)
        color = (20, 20, 20, 255)
        radius = max(4, int(round(reference.inter_eye_distance * 0.38)))
        thickness = max(2, radius // 6)
        left_px = left_eye.as_int_tuple()
        right_px = right_eye.as_int_tuple()
        cv2.circle(image, left_px, radius, color, thickness, cv2.LINE_AA)
        cv2.circle(image, right_px, radius, color, thickness, cv2.LINE_AA)
        cv2.line(
            image,
            (left_px[0] + radius, left_px[1]),
            (right_px[0] - radius, right_px[1]),
            color,
            thickness,
            cv2.LINE_AA,
        )
        return cls(image=image, reference=reference)


def affine_matrix(transform: Transform, origin: Point) -> np.ndarray:
    """2x3 matrix mapping overlay pixels to frame pixels.

    The overlay's top-left is placed at (translate_x, translate_y), then the
    image is rotated and scaled about ``origin`` (overlay coordinates).
    """
    c = math.cos(transform.rotation) * transform.scale
    s = math.sin(transform.rotation) * transform.scale
    linear = np.array([[c, -s], [s, c]], dtype=np.float64)
    pivot = np.array([origin.x, origin.y], dtype=np.float64)
    offset = np.array([transform.translate_x, transform.translate_y], dtype=np.float64) + pivot - linear @ pivot
    return np.hstack([linear, offset.reshape(2, 1)])


class OverlayRenderer:
    def __init__(self, asset: OverlayAsset) -> None:
        self.asset = asset

    def composite(self, frame: np.ndarray, transform: Transform) -> np.ndarray:
        height, width = frame.shape[:2]
        matrix = affine_matrix(transform, self.asset.reference.origin)
        warped = cv2.warpAffine(
            self.asset.image,
            matrix,
            (width, height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0),
        )
        alpha = warped[:, :, 3:4].astype(np.float32) / 255.0
        blended = warped[:, :, :3].astype(np.float32) * alpha + frame.astype(np.float32) * (1.0 - alpha)
        return np.clip(blended, 0, 255).astype(np.uint8)

    @staticmethod
    def draw_landmarks(frame: np.ndarray, landmarks: LandmarkSet) -> None:
        for point in landmarks:
            cv2.circle(frame, point.as_int_tuple(), 1, (255, 200, 0), -1, cv2.LINE_AA)
        for center in (landmarks.left_eye_center(), landmarks.right_eye_center()):
            cv2.circle(frame, center.as_int_tuple(), 5, (0, 0, 0), -1, cv2.LINE_AA)

    def render(
        self,
        frame: Optional[np.ndarray],
        transform: Optional[Transform],
        landmarks: Optional[LandmarkSet] = None,
        show_overlay: bool = True,
        show_landmarks: bool = False,
    ) -> Optional[np.ndarray]:
        if frame is None:
            return None
        output = frame.copy()
        if show_landmarks and landmarks is not None:
            self.draw_landmarks(output, landmarks)
        if show_overlay and transform is not None:
            output = self.composite(output, transform)
        return output
