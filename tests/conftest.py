import pytest

from eye_overlay.alignment import ReferenceConfig
from eye_overlay.geometry import Point


@pytest.fixture
def reference() -> ReferenceConfig:
    return ReferenceConfig(Point(164.0, 55.0), Point(236.0, 55.0), width=400, height=250)
