"""
Camera and microphone acquisition.

- DeviceCapture: opens the camera (OpenCV) or microphone (sounddevice) and wraps it in a StreamHandle
- StreamHandle: exclusively owned handle; reads and release are serialized, release is idempotent
- AudioSampler: ring buffer fed by the input-stream callback, exposing analyser-style byte spectra

sounddevice is imported lazily so a host without PortAudio can still import this module.
"""
from __future__ import annotations

import os
import logging
import threading
from typing import Any, Callable, Iterable, Optional

import cv2
import numpy as np

from sensing.config import Settings
from sensing.errors import (
    DeviceCaptureError,
    DeviceNotFound,
    PermissionDenied,
    StartError,
    TransientFrameFailure,
)
from sensing.models import CaptureConstraints

logger = logging.getLogger(__name__)

VIDEO = "video"
AUDIO = "audio"


class StreamHandle:
    """A media handle whose underlying tracks are stopped exactly once."""
    def __init__(self,
                 kind: str,
                 source: Any,
                 tracks: Iterable[Callable[[], None]],
                 reader: Callable[[Any], Any],
                 sample_rate: Optional[int] = None):
        self.kind = kind
        self.source = source
        self.sample_rate = sample_rate
        self._tracks = list(tracks)
        self._reader = reader
        self._lock = threading.Lock()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read(self) -> Any:
        with self._lock:
            if self._released:
                raise TransientFrameFailure(f"{self.kind} stream already released")
            return self._reader(self.source)

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            tracks, self._tracks = self._tracks, []
        for stop in tracks:
            try:
                stop()
            except Exception:
                logger.exception(f"[devices] failed to stop {self.kind} track")
        logger.debug(f"[devices] released {self.kind} stream tracks={len(tracks)}")


class AudioSampler:
    """
    Microphone sample buffer with the byte outputs of a browser analyser node.

    Frequency data: Blackman window, FFT magnitude / fft_size, exponential smoothing
    across calls, dB, then [min_decibels, max_decibels] mapped linearly to [0, 255].
    Time-domain data: 128 * (1 + sample), clamped to [0, 255].
    Both arrays have fft_size / 2 entries.
    """
    def __init__(self,
                 sample_rate: int,
                 fft_size: int = 2048,
                 min_decibels: float = -90.0,
                 max_decibels: float = -10.0,
                 smoothing_time_constant: float = 0.85):
        self.sample_rate = int(sample_rate)
        self.fft_size = int(fft_size)
        self.min_decibels = float(min_decibels)
        self.max_decibels = float(max_decibels)
        self.smoothing = max(0.0, min(1.0, float(smoothing_time_constant)))
        self._window = np.blackman(self.fft_size)
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.frequency_bin_count, dtype=np.float64)
        self._lock = threading.Lock()

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, indata, frames=None, time_info=None, status=None) -> None:
        """sounddevice InputStream callback."""
        if status:
            logger.debug(f"[devices] input stream status={status}")
        samples = np.asarray(indata, dtype=np.float32)
        if samples.ndim > 1:
            samples = samples.mean(axis=1)
        samples = samples.reshape(-1)
        n = samples.shape[0]
        if n == 0:
            return
        with self._lock:
            if n >= self.fft_size:
                self._buffer[:] = samples[-self.fft_size:]
            else:
                self._buffer = np.concatenate([self._buffer[n:], samples])

    def byte_frequency_data(self) -> np.ndarray:
        with self._lock:
            block = self._buffer.astype(np.float64)
        magnitude = np.abs(np.fft.rfft(block * self._window))[: self.frequency_bin_count] / self.fft_size
        with self._lock:
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
            smoothed = self._smoothed.copy()
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(smoothed)
        span = self.max_decibels - self.min_decibels
        scaled = 255.0 * (db - self.min_decibels) / span
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)

    def byte_time_domain_data(self) -> np.ndarray:
        with self._lock:
            block = self._buffer[-self.frequency_bin_count:].astype(np.float64)
        scaled = np.floor(128.0 * (1.0 + block))
        return np.clip(scaled, 0, 255).astype(np.uint8)


def _read_camera(cap) -> np.ndarray:
    ok, frame = cap.read()
    if not ok or frame is None:
        raise TransientFrameFailure("camera returned no frame")
    return frame


def _read_sampler(sampler: AudioSampler) -> tuple[np.ndarray, np.ndarray]:
    return sampler.byte_frequency_data(), sampler.byte_time_domain_data()


def classify_audio_error(err: Exception) -> StartError:
    """Map a PortAudio error message onto the start-error taxonomy."""
    msg = str(err)
    low = msg.lower()
    if any(k in low for k in ("permission", "access denied", "not permitted", "not authorized")):
        return PermissionDenied(AUDIO, msg)
    if any(k in low for k in ("invalid device", "device unavailable", "no default", "-9996", "-9985")):
        return DeviceNotFound(AUDIO, msg)
    return DeviceCaptureError(AUDIO, msg)


class DeviceCapture:
    """Acquires and releases camera / microphone handles."""
    def __init__(self, settings: Settings, video_factory: Optional[Callable[[int], Any]] = None):
        self.s = settings
        self._video_factory = video_factory

    def default_constraints(self) -> CaptureConstraints:
        return CaptureConstraints(
            width=self.s.VIDEO_WIDTH,
            height=self.s.VIDEO_HEIGHT,
            frame_rate=self.s.VIDEO_FPS,
            sample_rate=self.s.AUDIO_SAMPLE_RATE,
            channels=self.s.AUDIO_CHANNELS,
        )

    def acquire(self, kind: str, constraints: Optional[CaptureConstraints] = None) -> StreamHandle:
        c = constraints or self.default_constraints()
        logger.debug(f"[devices] acquire kind={kind} constraints={c.model_dump()}")
        if kind == VIDEO:
            return self._open_video(c)
        if kind == AUDIO:
            return self._open_audio(c)
        raise ValueError(f"Unknown device kind: {kind}")

    def release(self, handle: Optional[StreamHandle]) -> None:
        if handle is not None:
            handle.release()

    # ---- video ----
    def _open_video(self, c: CaptureConstraints) -> StreamHandle:
        idx = self.s.CAMERA_INDEX
        factory = self._video_factory or cv2.VideoCapture
        try:
            cap = factory(idx)
        except Exception as e:
            raise DeviceCaptureError(VIDEO, str(e)) from e

        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            node = f"/dev/video{idx}"
            if os.path.exists(node) and not os.access(node, os.R_OK):
                raise PermissionDenied(VIDEO, f"{node} is not readable")
            raise DeviceNotFound(VIDEO, f"camera index {idx} could not be opened")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, c.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, c.height)
        cap.set(cv2.CAP_PROP_FPS, c.frame_rate)
        logger.info(f"[devices] camera {idx} opened ({c.width}x{c.height}@{c.frame_rate})")
        return StreamHandle(VIDEO, cap, [cap.release], _read_camera)

    # ---- audio ----
    def _open_audio(self, c: CaptureConstraints) -> StreamHandle:
        import sounddevice as sd

        try:
            sd.query_devices(kind="input")
        except (ValueError, sd.PortAudioError) as e:
            raise DeviceNotFound(AUDIO, str(e)) from e

        sampler = AudioSampler(
            sample_rate=c.sample_rate,
            fft_size=self.s.FFT_SIZE,
            min_decibels=self.s.MIN_DECIBELS,
            max_decibels=self.s.MAX_DECIBELS,
            smoothing_time_constant=self.s.SMOOTHING_TIME_CONSTANT,
        )
        stream = None
        try:
            stream = sd.InputStream(
                callback=sampler.push,
                channels=c.channels,
                samplerate=c.sample_rate,
                blocksize=self.s.FFT_SIZE // 4,
            )
            stream.start()
        except Exception as e:
            if stream is not None:
                stream.close()
            if isinstance(e, sd.PortAudioError):
                raise classify_audio_error(e) from e
            raise DeviceCaptureError(AUDIO, str(e)) from e

        actual_rate = int(getattr(stream, "samplerate", c.sample_rate) or c.sample_rate)
        sampler.sample_rate = actual_rate

        def _stop_stream():
            stream.stop()
            stream.close()

        logger.info(f"[devices] microphone opened sr={actual_rate} channels={c.channels}")
        return StreamHandle(AUDIO, sampler, [_stop_stream], _read_sampler, sample_rate=actual_rate)
