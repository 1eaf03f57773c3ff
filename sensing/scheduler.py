"""
Periodic analysis loops.

PeriodicTask fires a callback on fixed deadlines of the running asyncio loop and
can be cancelled at any time; its LivenessToken tells in-flight work whether the
owner is still interested.

AnalysisScheduler (one per modality):
  start(on_result) : acquire the device (+ detector for video), then poll;
                     False if stop() won the race with setup
  each tick        : skip if the previous extraction is still running (drop, never queue),
                     else extract in a worker thread, keep the last result,
                     call on_result and record latency
  stop()           : cancel the timer, release the stream, discard late results
"""
from __future__ import annotations

import time
import asyncio
import logging
from typing import Any, Callable, Optional

from sensing.detector import DetectorCache, DetectorHandle
from sensing.devices import AUDIO, VIDEO, DeviceCapture, StreamHandle
from sensing.errors import AlreadyRunning, TransientFrameFailure
from sensing.audio import AudioFeatureExtractor, fallback_result
from sensing.video import VideoFeatureExtractor, no_subject_result
from sensing.models import (
    AudioAnalysisResult,
    CaptureConstraints,
    SchedulerState,
    VideoAnalysisResult,
)
from sensing.telemetry import PerformanceTelemetry

logger = logging.getLogger(__name__)


class LivenessToken:
    """Flips to dead exactly once, when its owner stops."""
    def __init__(self):
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def revoke(self) -> None:
        self._alive = False


class PeriodicTask:
    """Calls `callback` every `period_s` seconds on the running loop until cancelled."""
    def __init__(self, period_s: float, callback: Callable[[], None], name: str = "periodic"):
        self.period_s = float(period_s)
        self.name = name
        self.fires = 0
        self.token: Optional[LivenessToken] = None
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> LivenessToken:
        if self.running:
            raise RuntimeError(f"{self.name} already started")
        self.token = LivenessToken()
        self._task = asyncio.get_running_loop().create_task(self._run(self.token), name=self.name)
        return self.token

    def cancel(self) -> None:
        if self.token is not None:
            self.token.revoke()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, token: LivenessToken) -> None:
        loop = asyncio.get_running_loop()
        next_t = loop.time() + self.period_s
        while token.alive:
            await asyncio.sleep(max(0.0, next_t - loop.time()))
            if not token.alive:
                break
            self.fires += 1
            try:
                self._callback()
            except Exception:
                logger.exception(f"[scheduler] {self.name} callback failed")
            next_t += self.period_s
            now = loop.time()
            if next_t < now:
                # fell behind: drop the missed deadlines instead of bursting
                next_t = now + self.period_s


class AnalysisScheduler:
    """Base polling loop enforcing at most one extraction in flight."""
    modality = "analysis"
    result_type: type = object

    def __init__(self,
                 device_capture: DeviceCapture,
                 telemetry: PerformanceTelemetry,
                 period_s: float,
                 constraints: Optional[CaptureConstraints] = None,
                 clock: Callable[[], float] = time.perf_counter):
        self.device_capture = device_capture
        self.telemetry = telemetry
        self.period_s = float(period_s)
        self.constraints = constraints
        self.state = SchedulerState.IDLE
        self.last_result: Any = None
        self.ticks = 0
        self.extractions = 0
        self.skipped = 0
        self.delivered = 0
        self._clock = clock
        self._token: Optional[LivenessToken] = None
        self._timer: Optional[PeriodicTask] = None
        self._handle: Optional[StreamHandle] = None
        self._on_result: Optional[Callable[[Any], None]] = None
        self._in_flight = False
        self._pending: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.state in (SchedulerState.STARTING, SchedulerState.POLLING)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # ---- lifecycle ----
    async def start(self, on_result: Callable[[Any], None]) -> bool:
        """Returns True once polling, False if stop() ran before setup finished."""
        if self.running:
            raise AlreadyRunning(self.modality)
        token = LivenessToken()
        self._token = token
        self._on_result = on_result
        self.state = SchedulerState.STARTING
        logger.debug(f"[scheduler] {self.modality} starting")

        try:
            handle = await self._prepare()
        except BaseException:
            if not token.alive:
                logger.debug(f"[scheduler] {self.modality} setup failed after stop; ignoring")
                return False
            self.state = SchedulerState.STOPPED
            self._token = None
            raise

        if not token.alive:
            # stop() ran while we were acquiring; nothing may leak
            self.device_capture.release(handle)
            logger.debug(f"[scheduler] {self.modality} stopped during setup; released stream")
            return False

        self._handle = handle
        self._timer = PeriodicTask(self.period_s, self._on_tick, name=f"{self.modality}-ticker")
        self._timer.start()
        self.state = SchedulerState.POLLING
        logger.info(f"[scheduler] {self.modality} polling every {self.period_s * 1000:.0f}ms")
        return True

    def stop(self) -> None:
        if self._token is not None:
            self._token.revoke()
            self._token = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        handle, self._handle = self._handle, None
        if handle is not None:
            self.device_capture.release(handle)
        if self.state != SchedulerState.STOPPED:
            logger.info(f"[scheduler] {self.modality} stopped ticks={self.ticks} "
                        f"extractions={self.extractions} skipped={self.skipped}")
        self.last_result = None
        self._on_result = None
        self.state = SchedulerState.STOPPED

    # ---- ticks ----
    def _on_tick(self) -> None:
        self.ticks += 1
        if self._in_flight:
            self.skipped += 1
            logger.debug(f"[scheduler] {self.modality} tick {self.ticks} dropped (extraction in flight)")
            return
        token, handle = self._token, self._handle
        if token is None or handle is None:
            return
        self._in_flight = True
        self.extractions += 1
        self._pending = asyncio.get_running_loop().create_task(self._extract(token, handle))

    async def _extract(self, token: LivenessToken, handle: StreamHandle) -> None:
        t0 = self._clock()
        try:
            result = await asyncio.to_thread(self._sample, handle)
        except Exception:
            logger.exception(f"[scheduler] {self.modality} extraction crashed; using fallback")
            result = self._fallback()
        finally:
            self._in_flight = False
        elapsed_ms = (self._clock() - t0) * 1000.0

        if not token.alive:
            logger.debug(f"[scheduler] {self.modality} discarding result finished after stop")
            return
        if not isinstance(result, self.result_type):
            logger.error(f"[scheduler] {self.modality} extractor returned {type(result).__name__}; using fallback")
            result = self._fallback()

        self.telemetry.record(elapsed_ms)
        self.last_result = result
        callback = self._on_result
        if callback is None:
            return
        try:
            callback(result)
            self.delivered += 1
        except Exception:
            logger.exception(f"[scheduler] {self.modality} on_result callback failed")

    # ---- modality hooks ----
    async def _prepare(self) -> StreamHandle:
        raise NotImplementedError

    def _sample(self, handle: StreamHandle) -> Any:
        raise NotImplementedError

    def _fallback(self) -> Any:
        raise NotImplementedError


class VideoAnalysisScheduler(AnalysisScheduler):
    modality = VIDEO
    result_type = VideoAnalysisResult

    def __init__(self,
                 device_capture: DeviceCapture,
                 detector_cache: DetectorCache,
                 extractor: VideoFeatureExtractor,
                 telemetry: PerformanceTelemetry,
                 period_s: float = 0.5,
                 constraints: Optional[CaptureConstraints] = None,
                 clock: Callable[[], float] = time.perf_counter):
        super().__init__(device_capture, telemetry, period_s, constraints, clock)
        self.detector_cache = detector_cache
        self.extractor = extractor
        self._detector: Optional[DetectorHandle] = None

    async def _prepare(self) -> StreamHandle:
        handle = await asyncio.to_thread(self.device_capture.acquire, VIDEO, self.constraints)
        try:
            self._detector = await self.detector_cache.initialize()
        except BaseException:
            self.device_capture.release(handle)
            raise
        return handle

    def _sample(self, handle: StreamHandle) -> VideoAnalysisResult:
        try:
            frame = handle.read()
        except TransientFrameFailure as e:
            logger.warning(f"[scheduler] video frame unavailable: {e}")
            return no_subject_result()
        return self.extractor.analyze(frame, self._detector)

    def _fallback(self) -> VideoAnalysisResult:
        return no_subject_result()


class AudioAnalysisScheduler(AnalysisScheduler):
    modality = AUDIO
    result_type = AudioAnalysisResult

    def __init__(self,
                 device_capture: DeviceCapture,
                 extractor: AudioFeatureExtractor,
                 telemetry: PerformanceTelemetry,
                 period_s: float = 0.3,
                 constraints: Optional[CaptureConstraints] = None,
                 clock: Callable[[], float] = time.perf_counter):
        super().__init__(device_capture, telemetry, period_s, constraints, clock)
        self.extractor = extractor

    async def _prepare(self) -> StreamHandle:
        return await asyncio.to_thread(self.device_capture.acquire, AUDIO, self.constraints)

    def _sample(self, handle: StreamHandle) -> AudioAnalysisResult:
        try:
            freq, td = handle.read()
        except TransientFrameFailure as e:
            logger.warning(f"[scheduler] audio sample unavailable: {e}")
            return fallback_result()
        return self.extractor.analyze(freq, td, handle.sample_rate)

    def _fallback(self) -> AudioAnalysisResult:
        return fallback_result()
