from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class RuntimeConfig:
    camera_id: int = 0
    frame_width: int = 480
    frame_height: int = 360
    target_fps: int = 30
    mirror: bool = False
    overlay_path: Optional[str] = None
    overlay_width: int = 400
    overlay_height: int = 250
    overlay_left_eye: Tuple[float, float] = (164.0, 55.0)
    overlay_right_eye: Tuple[float, float] = (236.0, 55.0)
    smoothing_window: int = 3
    min_eye_distance: float = 1.0
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    refine_landmarks: bool = False
    model_dir: Optional[str] = None
    show_overlay: bool = True
    show_landmarks: bool = True
    autostart: bool = False
    stop_timeout: float = 1.0
    log_level: str = "INFO"
