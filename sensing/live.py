# sensing/live.py
"""
Live (real-time) analysis session.

LiveAnalyzer owns everything one session needs and hands it to the schedulers:
- one DetectorCache (landmark model built once, reused by every video tick)
- one PerformanceTelemetry per modality
- at most one video and one audio AnalysisScheduler, created on start, dropped on stop

Polling periods come from Settings (500ms video, 300ms audio by default).
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sensing.audio import AudioFeatureExtractor
from sensing.config import Settings
from sensing.detector import DetectorCache
from sensing.devices import AUDIO, VIDEO, DeviceCapture
from sensing.errors import AlreadyRunning
from sensing.models import (
    AudioAnalysisResult,
    LiveStatus,
    ModalityStatus,
    PerformanceMetrics,
    SchedulerState,
    VideoAnalysisResult,
)
from sensing.scheduler import AnalysisScheduler, AudioAnalysisScheduler, VideoAnalysisScheduler
from sensing.telemetry import PerformanceTelemetry
from sensing.video import VideoFeatureExtractor

logger = logging.getLogger(__name__)


class LiveAnalyzer:
    """Start/stop surface for live video and audio analysis."""
    def __init__(self,
                 settings: Settings,
                 device_capture: Optional[DeviceCapture] = None,
                 detector_cache: Optional[DetectorCache] = None,
                 video_extractor: Optional[VideoFeatureExtractor] = None,
                 audio_extractor: Optional[AudioFeatureExtractor] = None):
        self.s = settings
        self.device_capture = device_capture or DeviceCapture(settings)
        self.detector_cache = detector_cache or DetectorCache(settings)
        self.video_extractor = video_extractor or VideoFeatureExtractor()
        self.audio_extractor = audio_extractor or AudioFeatureExtractor()
        self.telemetry = {VIDEO: PerformanceTelemetry(), AUDIO: PerformanceTelemetry()}
        self._video: Optional[VideoAnalysisScheduler] = None
        self._audio: Optional[AudioAnalysisScheduler] = None

    # ---- video ----
    async def start_video_analysis(self, on_result: Callable[[VideoAnalysisResult], None]) -> bool:
        if self._video is not None and self._video.running:
            raise AlreadyRunning(VIDEO)
        scheduler = VideoAnalysisScheduler(
            self.device_capture,
            self.detector_cache,
            self.video_extractor,
            self.telemetry[VIDEO],
            period_s=self.s.video_interval_s,
            constraints=self.device_capture.default_constraints(),
        )
        self._video = scheduler
        try:
            started = await scheduler.start(on_result)
        except Exception:
            if self._video is scheduler:
                self._video = None
            raise
        if not started and self._video is scheduler:
            self._video = None
        return started

    def stop_video_analysis(self) -> None:
        if self._video is not None:
            self._video.stop()
            self._video = None

    # ---- audio ----
    async def start_audio_analysis(self, on_result: Callable[[AudioAnalysisResult], None]) -> bool:
        if self._audio is not None and self._audio.running:
            raise AlreadyRunning(AUDIO)
        scheduler = AudioAnalysisScheduler(
            self.device_capture,
            self.audio_extractor,
            self.telemetry[AUDIO],
            period_s=self.s.audio_interval_s,
            constraints=self.device_capture.default_constraints(),
        )
        self._audio = scheduler
        try:
            started = await scheduler.start(on_result)
        except Exception:
            if self._audio is scheduler:
                self._audio = None
            raise
        if not started and self._audio is scheduler:
            self._audio = None
        return started

    def stop_audio_analysis(self) -> None:
        if self._audio is not None:
            self._audio.stop()
            self._audio = None

    def stop(self) -> None:
        self.stop_video_analysis()
        self.stop_audio_analysis()

    # ---- queries ----
    def get_performance_metrics(self, modality: str) -> PerformanceMetrics:
        if modality not in self.telemetry:
            raise ValueError(f"Unknown modality: {modality}")
        return self.telemetry[modality].snapshot()

    def is_ready(self) -> bool:
        return self.detector_cache.is_ready()

    def is_running(self, modality: str) -> bool:
        if modality not in self.telemetry:
            raise ValueError(f"Unknown modality: {modality}")
        scheduler = self._video if modality == VIDEO else self._audio
        return scheduler is not None and scheduler.running

    def status(self) -> LiveStatus:
        return LiveStatus(
            ready=self.is_ready(),
            detector_state=self.detector_cache.state,
            detector_error=self.detector_cache.failure_reason,
            video=self._modality_status(self._video, VIDEO),
            audio=self._modality_status(self._audio, AUDIO),
            last_video=self._video.last_result if self._video is not None else None,
            last_audio=self._audio.last_result if self._audio is not None else None,
        )

    def _modality_status(self, scheduler: Optional[AnalysisScheduler], modality: str) -> ModalityStatus:
        metrics = self.telemetry[modality].snapshot()
        if scheduler is None:
            return ModalityStatus(running=False, state=SchedulerState.IDLE, metrics=metrics)
        return ModalityStatus(
            running=scheduler.running,
            state=scheduler.state,
            ticks=scheduler.ticks,
            extractions=scheduler.extractions,
            skipped=scheduler.skipped,
            metrics=metrics,
        )
