from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from .filters import SMOOTHING_WINDOW, SmoothingFilter
from .geometry import LandmarkSet, Point, distance, rotation_angle

logger = logging.getLogger(__name__)

CHANNEL_SCALE = "scale"
CHANNEL_ROTATION = "rotation"
CHANNEL_TOP = "top"
CHANNEL_LEFT = "left"


@dataclass(frozen=True)
class ReferenceConfig:
    """Fixed eye geometry of the overlay asset, in the asset's own pixels."""

    left_eye_center: Point
    right_eye_center: Point
    width: int = 0
    height: int = 0
    inter_eye_distance: float = field(init=False)

    def __post_init__(self) -> None:
        eye_distance = distance(self.left_eye_center, self.right_eye_center)
        if eye_distance <= 0.0:
            raise ValueError("Reference eye centers must not coincide")
        object.__setattr__(self, "inter_eye_distance", eye_distance)

    @property
    def origin(self) -> Point:
        return self.left_eye_center


@dataclass(frozen=True)
class Transform:
    scale: float
    rotation: float
    translate_x: float
    translate_y: float

    @property
    def rotation_degrees(self) -> float:
        return math.degrees(self.rotation)


@dataclass(frozen=True)
class RawAlignment:
    scale: float
    rotation: float
    top: float
    left: float


class AlignmentCalculator:
    """Turns live eye centers into a smoothed overlay Transform.

    The overlay is translated so its reference left eye lands on the live left
    eye, then rotated and scaled around that same reference point.
    """

    def __init__(
        self,
        reference: ReferenceConfig,
        window: int = SMOOTHING_WINDOW,
        min_eye_distance: float = 1.0,
    ) -> None:
        self.reference = reference
        self.window = int(window)
        self.min_eye_distance = float(min_eye_distance)
        self.filter = SmoothingFilter(self.window)

    def reset(self) -> None:
        self.filter = SmoothingFilter(self.window)

    def measure(self, live_left: Point, live_right: Point) -> Optional[RawAlignment]:
        eye_distance = distance(live_left, live_right)
        if eye_distance < self.min_eye_distance:
            logger.debug("Skipping alignment, live eye distance %.3f px is degenerate", eye_distance)
            return None
        return RawAlignment(
            scale=eye_distance / self.reference.inter_eye_distance,
            rotation=rotation_angle(live_left, live_right),
            top=live_left.y - self.reference.left_eye_center.y,
            left=live_left.x - self.reference.left_eye_center.x,
        )

    def align(self, live_left: Point, live_right: Point) -> Optional[Transform]:
        raw = self.measure(live_left, live_right)
        if raw is None:
            return None
        return Transform(
            scale=self.filter.push(CHANNEL_SCALE, raw.scale),
            rotation=self.filter.push(CHANNEL_ROTATION, raw.rotation),
            translate_x=self.filter.push(CHANNEL_LEFT, raw.left),
            translate_y=self.filter.push(CHANNEL_TOP, raw.top),
        )

    def update(self, landmarks: LandmarkSet) -> Optional[Transform]:
        return self.align(landmarks.left_eye_center(), landmarks.right_eye_center())
