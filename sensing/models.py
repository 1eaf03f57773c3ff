"""
Pydantic data models for sensing results and status.
"""
from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, Field
from typing import Annotated, List, Optional

Unit = Annotated[float, Field(ge=0.0, le=1.0)]


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


class EmotionalState(BaseModel):
    joy: Unit
    sadness: Unit
    anger: Unit
    fear: Unit
    surprise: Unit
    neutral: Unit

    @classmethod
    def blend(cls, joy: float, sadness: float, anger: float, fear: float, surprise: float) -> "EmotionalState":
        """Clamp the five affect terms and floor neutral at 0.1."""
        joy, sadness, anger, fear, surprise = (clamp01(v) for v in (joy, sadness, anger, fear, surprise))
        neutral = clamp01(max(0.1, 1.0 - (joy + sadness + anger + fear + surprise)))
        return cls(joy=joy, sadness=sadness, anger=anger, fear=fear, surprise=surprise, neutral=neutral)

    @classmethod
    def neutral_state(cls) -> "EmotionalState":
        return cls(joy=0.0, sadness=0.0, anger=0.0, fear=0.0, surprise=0.0, neutral=1.0)

    def dominant(self) -> str:
        scores = self.model_dump()
        return max(scores, key=scores.get)


class HeadPose(BaseModel):
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0


class EyeGaze(BaseModel):
    x: float = 0.0
    y: float = 0.0


class VideoAnalysisResult(BaseModel):
    facial_expression: EmotionalState
    attentiveness: Unit
    environmental_context: List[str] = Field(default_factory=list)
    face_detected: bool = False
    head_pose: HeadPose = Field(default_factory=HeadPose)
    eye_gaze: EyeGaze = Field(default_factory=EyeGaze)


class AudioAnalysisResult(BaseModel):
    sentiment: Unit
    toxicity: Unit
    emotional_tone: EmotionalState
    volume: Unit
    clarity: Unit
    pitch: Unit


class PerformanceMetrics(BaseModel):
    count: int = Field(default=0, ge=0)
    avg_ms: float = Field(default=0.0, ge=0.0)
    min_ms: float = Field(default=0.0, ge=0.0)
    max_ms: float = Field(default=0.0, ge=0.0)
    last_ms: float = Field(default=0.0, ge=0.0)


class DetectorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class SchedulerState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    POLLING = "polling"
    STOPPED = "stopped"


class CaptureConstraints(BaseModel):
    width: int = Field(default=640, gt=0)
    height: int = Field(default=480, gt=0)
    frame_rate: int = Field(default=30, gt=0)
    sample_rate: int = Field(default=16000, gt=0)
    channels: int = Field(default=1, gt=0)


class ModalityStatus(BaseModel):
    running: bool
    state: SchedulerState
    ticks: int = 0
    extractions: int = 0
    skipped: int = 0
    metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)


class LiveStatus(BaseModel):
    ready: bool
    detector_state: DetectorState
    detector_error: Optional[str] = None
    video: ModalityStatus
    audio: ModalityStatus
    last_video: Optional[VideoAnalysisResult] = None
    last_audio: Optional[AudioAnalysisResult] = None
