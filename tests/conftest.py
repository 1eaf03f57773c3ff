import threading
import time

import numpy as np
import pytest

from sensing.config import Settings
from sensing.detector import DetectorHandle, Subject
from sensing.devices import AUDIO, VIDEO, DeviceCapture, StreamHandle


def make_face_landmarks(smile: float = 0.0, gaze_offset: float = 0.0, refined: bool = True) -> np.ndarray:
    """MediaPipe-indexed face, normalized coords, centered in the frame.

    smile: 0 = corners level with the lip line, 0.5 = corners raised half a mouth height.
    gaze_offset: horizontal shift of both irises relative to the nose tip.
    """
    n = 478 if refined else 468
    lm = np.full((n, 3), 0.5, dtype=np.float64)
    lm[:, 2] = 0.0

    lm[1] = (0.50, 0.50, -0.05)          # nose tip
    lm[10] = (0.50, 0.35, -0.02)         # forehead
    lm[152] = (0.50, 0.68, -0.01)        # chin
    lm[33] = (0.40, 0.45, 0.0)           # left eye outer
    lm[133] = (0.46, 0.45, 0.0)          # left eye inner
    lm[362] = (0.54, 0.45, 0.0)          # right eye inner
    lm[263] = (0.60, 0.45, 0.0)          # right eye outer

    lm[0] = (0.50, 0.565, 0.0)           # upper lip top
    lm[17] = (0.50, 0.595, 0.0)          # lower lip bottom
    lm[13] = (0.50, 0.578, 0.0)          # inner upper lip
    lm[14] = (0.50, 0.582, 0.0)          # inner lower lip
    corner_y = 0.58 - smile * 0.03
    lm[61] = (0.445, corner_y, 0.0)
    lm[291] = (0.555, corner_y, 0.0)

    if refined:
        for i in range(468, 473):
            lm[i] = (0.43 + gaze_offset, 0.45, 0.0)
        for i in range(473, 478):
            lm[i] = (0.57 + gaze_offset, 0.45, 0.0)
    return lm


class FakeLandmarkModel:
    """Returns a fixed subject list; optional delay or error per call."""
    def __init__(self, subjects=None, delay: float = 0.0, error: Exception | None = None):
        self.subjects = subjects or []
        self.delay = delay
        self.error = error
        self.calls = 0
        self.closed = False

    def estimate(self, frame):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.subjects)

    def close(self):
        self.closed = True


class FakeCapture(DeviceCapture):
    """DeviceCapture whose handles read synthetic frames / spectra and count track stops."""
    def __init__(self, settings, acquire_delay: float = 0.0, error: Exception | None = None,
                 frequency=None, time_domain=None):
        super().__init__(settings)
        self.acquire_delay = acquire_delay
        self.error = error
        self.frequency = np.full(1024, 100, dtype=np.uint8) if frequency is None else frequency
        self.time_domain = np.full(1024, 128, dtype=np.uint8) if time_domain is None else time_domain
        self.handles = []
        self.stops = {}
        self._lock = threading.Lock()

    def acquire(self, kind, constraints=None):
        if self.acquire_delay:
            time.sleep(self.acquire_delay)
        if self.error is not None:
            raise self.error
        with self._lock:
            idx = len(self.handles)
            self.stops[idx] = 0

        def _stop():
            self.stops[idx] += 1

        if kind == VIDEO:
            handle = StreamHandle(VIDEO, None, [_stop], lambda src: np.zeros((480, 640, 3), dtype=np.uint8))
        else:
            handle = StreamHandle(AUDIO, None, [_stop], lambda src: (self.frequency, self.time_domain),
                                  sample_rate=16000)
        self.handles.append(handle)
        return handle


@pytest.fixture
def settings():
    return Settings(VIDEO_INTERVAL_MS=20, AUDIO_INTERVAL_MS=20, DEVICE="cpu")


@pytest.fixture
def face_landmarks():
    return make_face_landmarks


@pytest.fixture
def centered_subject():
    def _make(score: float = 1.0, **kw):
        return Subject(landmarks=make_face_landmarks(**kw), bounding_box=(0.35, 0.30, 0.30, 0.40), score=score)
    return _make


@pytest.fixture
def detector_for():
    def _make(subjects=None, delay: float = 0.0, error: Exception | None = None, refined: bool = True):
        return DetectorHandle(model=FakeLandmarkModel(subjects, delay, error), refined_landmarks=refined, backend="cpu")
    return _make


@pytest.fixture
def fake_model():
    return FakeLandmarkModel


@pytest.fixture
def fake_capture():
    return FakeCapture


@pytest.fixture
def frame():
    return np.zeros((480, 640, 3), dtype=np.uint8)
