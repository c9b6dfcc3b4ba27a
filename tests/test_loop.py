import logging
import threading
import time

import pytest

from eye_overlay.alignment import AlignmentCalculator, Transform
from eye_overlay.geometry import LandmarkSet, Point
from eye_overlay.loop import DetectionLoop, LoopState

from fakes import FakeDetector, FakeSource, Recorder, make_detection, wait_until

FACE = make_detection(Point(100.0, 200.0), Point(172.0, 200.0))


def build_loop(reference, detector, source=None):
    transforms, landmarks = Recorder(), Recorder()
    loop = DetectionLoop(
        source=source or FakeSource(),
        detector=detector,
        calculator=AlignmentCalculator(reference),
        on_transform=transforms,
        on_landmarks=landmarks,
    )
    return loop, transforms, landmarks


def stop_after(loop_ref, count):
    def on_call(call):
        if call == count:
            loop_ref[0].stop()

    return on_call


def test_initial_state_is_idle(reference):
    loop, _, _ = build_loop(reference, FakeDetector(lambda n: None))
    assert loop.state is LoopState.IDLE
    assert not loop.running


def test_emits_transforms_until_stopped(reference):
    ref = []
    detector = FakeDetector(lambda n: FACE, on_call=stop_after(ref, 5))
    loop, transforms, landmarks = build_loop(reference, detector)
    ref.append(loop)

    loop.start()
    assert loop.join(2.0)

    assert loop.state is LoopState.IDLE
    assert detector.calls == 5
    assert len(transforms.items) == 5
    assert transforms.items[-1] == Transform(scale=1.0, rotation=0.0, translate_x=-64.0, translate_y=145.0)
    assert len(landmarks.items) == 5
    assert all(isinstance(item, LandmarkSet) for item in landmarks.items)

    time.sleep(0.05)
    assert detector.calls == 5
    assert len(transforms.items) == 5


def test_no_face_session_emits_nothing(reference, caplog):
    ref = []
    detector = FakeDetector(lambda n: None, on_call=stop_after(ref, 25))
    loop, transforms, landmarks = build_loop(reference, detector)
    ref.append(loop)

    with caplog.at_level(logging.WARNING):
        loop.start()
        assert loop.join(2.0)

    assert detector.calls == 25
    assert loop.cycles == 25
    assert loop.faces == 0
    assert loop.failures == 0
    assert transforms.items == []
    assert landmarks.items == []
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_detector_failures_do_not_stop_the_loop(reference, caplog):
    ref = []

    def script(n):
        return RuntimeError("boom") if n % 2 else FACE

    detector = FakeDetector(script, on_call=stop_after(ref, 6))
    loop, transforms, _ = build_loop(reference, detector)
    ref.append(loop)

    with caplog.at_level(logging.ERROR, logger="eye_overlay.loop"):
        loop.start()
        assert loop.join(2.0)

    assert detector.calls == 6
    assert loop.failures == 3
    assert len(transforms.items) == 3
    assert sum("Face detection failed" in r.getMessage() for r in caplog.records) == 3


def test_in_flight_cycle_finishes_after_stop(reference):
    entered = threading.Event()
    release = threading.Event()

    def script(n):
        entered.set()
        release.wait(2.0)
        return FACE

    detector = FakeDetector(script)
    loop, transforms, _ = build_loop(reference, detector)

    loop.start()
    assert entered.wait(2.0)
    loop.stop(timeout=None)
    assert loop.state is LoopState.IDLE

    release.set()
    assert loop.join(2.0)
    assert detector.calls == 1
    assert len(transforms.items) == 1

    time.sleep(0.05)
    assert detector.calls == 1
    assert len(transforms.items) == 1


def test_start_is_idempotent(reference):
    release = threading.Event()
    detector = FakeDetector(lambda n: release.wait(2.0) and None)
    loop, _, _ = build_loop(reference, detector)

    loop.start()
    loop.start()
    assert detector.loads == 1
    assert loop.running
    assert wait_until(lambda: detector.calls == 1)

    loop.stop(timeout=None)
    release.set()
    assert loop.join(2.0)
    assert detector.calls == 1


def test_model_load_failure_aborts_start(reference):
    detector = FakeDetector(lambda n: FACE, load_error=RuntimeError("no model"))
    loop, transforms, _ = build_loop(reference, detector)

    with pytest.raises(RuntimeError, match="no model"):
        loop.start()

    assert loop.state is LoopState.IDLE
    assert detector.calls == 0
    assert transforms.items == []


def test_unready_frame_source_skips_cycles(reference):
    source = FakeSource(ready=False)
    detector = FakeDetector(lambda n: FACE)
    loop, transforms, _ = build_loop(reference, detector, source=source)

    loop.start()
    assert wait_until(lambda: source.reads >= 10)
    loop.stop(timeout=2.0)

    assert not loop.running
    assert detector.calls == 0
    assert transforms.items == []


def test_degenerate_eyes_forward_landmarks_only(reference):
    ref = []
    collapsed = make_detection(Point(50.0, 50.0), Point(50.0, 50.0))
    detector = FakeDetector(lambda n: collapsed, on_call=stop_after(ref, 3))
    loop, transforms, landmarks = build_loop(reference, detector)
    ref.append(loop)

    loop.start()
    assert loop.join(2.0)

    assert transforms.items == []
    assert len(landmarks.items) == 3


def test_restart_begins_a_fresh_smoothing_session(reference):
    ref = []
    far = make_detection(Point(0.0, 0.0), Point(144.0, 0.0))
    faces = {"current": far}
    detector = FakeDetector(lambda n: faces["current"], on_call=stop_after(ref, 3))
    loop, transforms, _ = build_loop(reference, detector)
    ref.append(loop)

    loop.start()
    assert loop.join(2.0)
    assert transforms.items[-1].scale == 2.0

    faces["current"] = FACE
    detector.calls = 0
    loop.start()
    assert loop.join(2.0)

    assert detector.loads == 2
    # The first transform of the new session is not averaged with the old one.
    assert transforms.items[3].scale == 1.0
