import logging
import threading

import pytest

from eye_overlay.alignment import Transform
from eye_overlay.config import RuntimeConfig
from eye_overlay.geometry import Point
from eye_overlay.runner import OverlayApp, build_arg_parser, config_from_args

from fakes import FakeDetector, FakeSource, make_detection, make_landmarks, wait_until

FACE = make_detection(Point(100.0, 200.0), Point(172.0, 200.0))


def build_app(detector, **overrides):
    source = FakeSource()
    app = OverlayApp(RuntimeConfig(**overrides), camera=source, tracker=detector)
    return app, source


def test_default_overlay_geometry():
    config = config_from_args(build_arg_parser().parse_args([]))
    assert config.frame_width == 480
    assert config.frame_height == 360
    assert config.overlay_left_eye == (164.0, 55.0)
    assert config.overlay_right_eye == (236.0, 55.0)
    assert config.smoothing_window == 3
    assert config.min_eye_distance == 1.0
    assert config.stop_timeout == 1.0
    assert not config.refine_landmarks
    assert config.overlay_path is None
    assert config.show_overlay and config.show_landmarks
    assert not config.autostart


def test_cli_overrides():
    args = build_arg_parser().parse_args(
        ["--overlay", "mask.png", "--left-eye", "10,20", "--right-eye", "50,20", "--window", "0",
         "--no-landmarks", "--autostart", "--log-level", "debug", "--min-eye-distance", "4.5",
         "--refine-landmarks", "--stop-timeout", "0.25"]
    )
    config = config_from_args(args)
    assert config.overlay_path == "mask.png"
    assert config.overlay_left_eye == (10.0, 20.0)
    assert config.overlay_right_eye == (50.0, 20.0)
    assert config.smoothing_window == 1
    assert config.min_eye_distance == 4.5
    assert config.refine_landmarks
    assert config.stop_timeout == 0.25
    assert not config.show_landmarks
    assert config.autostart
    assert config.log_level == "DEBUG"


def test_bad_point_argument():
    with pytest.raises(SystemExit):
        build_arg_parser().parse_args(["--left-eye", "oops"])


def test_min_eye_distance_reaches_the_calculator():
    app, _ = build_app(FakeDetector(lambda n: None), min_eye_distance=7.0)
    assert app.calculator.min_eye_distance == 7.0


def test_failed_model_load_keeps_app_idle_and_retryable(caplog):
    detector = FakeDetector(lambda n: None, load_error=RuntimeError("download failed"))
    app, _ = build_app(detector)

    with caplog.at_level(logging.ERROR, logger="eye_overlay.runner"):
        app.toggle_tracking()

    assert not app.loop.running
    assert "download failed" in app.last_error
    assert any("Could not start tracking" in r.getMessage() for r in caplog.records)

    detector.load_error = None
    app.toggle_tracking()
    assert app.loop.running
    assert app.last_error is None
    assert detector.loads == 2

    app.stop_tracking()
    assert not app.loop.running


def test_stop_clears_the_last_pose():
    detector = FakeDetector(lambda n: FACE)
    app, _ = build_app(detector)

    app.start_tracking()
    assert wait_until(lambda: app.latest()[0] is not None)
    app.stop_tracking()

    assert not app.loop.running
    assert app.latest() == (None, None)


def test_start_discards_a_stale_pose():
    app, _ = build_app(FakeDetector(lambda n: None))
    app._on_transform(Transform(2.0, 0.3, 5.0, 6.0))
    app._on_landmarks(make_landmarks(Point(10.0, 10.0), Point(40.0, 10.0)))

    assert app.start_tracking()
    assert app.latest() == (None, None)
    app.stop_tracking()


def test_shutdown_closes_model_once_loop_is_done():
    detector = FakeDetector(lambda n: None)
    app, source = build_app(detector)

    app.start_tracking()
    app.shutdown()

    assert not app.loop.running
    assert detector.closes == 1
    assert source.stopped


def test_shutdown_leaves_busy_model_open():
    entered = threading.Event()
    release = threading.Event()

    def script(n):
        entered.set()
        release.wait(2.0)
        return None

    detector = FakeDetector(script)
    app, source = build_app(detector, stop_timeout=0.05)

    app.start_tracking()
    assert entered.wait(2.0)
    app.shutdown()

    assert detector.closes == 0
    assert source.stopped

    release.set()
    assert app.loop.join(2.0)
