from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    @classmethod
    def from_array(cls, values: Sequence[float]) -> "Point":
        return cls(float(values[0]), float(values[1]))

    def as_int_tuple(self) -> tuple[int, int]:
        return int(round(self.x)), int(round(self.y))


def midpoint(a: Point, b: Point) -> Point:
    return Point((a.x + b.x) / 2.0, (a.y + b.y) / 2.0)


def distance(a: Point, b: Point) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def rotation_angle(left: Point, right: Point) -> float:
    """Signed angle of the left->right line against the horizontal, in radians."""
    return math.atan2(right.y - left.y, right.x - left.x)


def eye_center(outer: Point, inner: Point) -> Point:
    # Two-corner approximation, not the contour centroid.
    return midpoint(outer, inner)


@dataclass(frozen=True)
class EyeCornerIndices:
    left_outer: int
    left_inner: int
    right_outer: int
    right_inner: int

    @property
    def required(self) -> int:
        return max(self.left_outer, self.left_inner, self.right_outer, self.right_inner) + 1


# "left" is the eye on the left of the image (the subject's right eye).
FACEMESH_EYE_CORNERS = EyeCornerIndices(left_outer=33, left_inner=133, right_outer=263, right_inner=362)


@dataclass(frozen=True)
class LandmarkSet:
    points: tuple[Point, ...]
    corners: EyeCornerIndices = FACEMESH_EYE_CORNERS

    def __post_init__(self) -> None:
        if len(self.points) < self.corners.required:
            raise ValueError(
                f"LandmarkSet needs at least {self.corners.required} points, got {len(self.points)}"
            )

    @classmethod
    def from_array(cls, array: np.ndarray, corners: EyeCornerIndices = FACEMESH_EYE_CORNERS) -> "LandmarkSet":
        return cls(points=tuple(Point.from_array(row) for row in np.asarray(array)), corners=corners)

    def left_eye_center(self) -> Point:
        return eye_center(self.points[self.corners.left_outer], self.points[self.corners.left_inner])

    def right_eye_center(self) -> Point:
        return eye_center(self.points[self.corners.right_outer], self.points[self.corners.right_inner])

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)


@dataclass(frozen=True)
class FaceDetection:
    bbox: tuple[float, float, float, float]
    landmarks: LandmarkSet
