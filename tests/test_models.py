import pytest
from pydantic import ValidationError

from sensing.models import (
    AudioAnalysisResult,
    EmotionalState,
    LiveStatus,
    ModalityStatus,
    PerformanceMetrics,
    SchedulerState,
    DetectorState,
    VideoAnalysisResult,
    clamp01,
)


def test_clamp01():
    assert clamp01(-0.5) == 0.0
    assert clamp01(1.7) == 1.0
    assert clamp01(0.25) == 0.25


def test_emotional_state_blend_clamps_and_floors_neutral():
    e = EmotionalState.blend(joy=1.4, sadness=-0.2, anger=0.3, fear=0.0, surprise=0.0)
    assert e.joy == 1.0
    assert e.sadness == 0.0
    assert e.neutral == pytest.approx(0.1)

    calm = EmotionalState.blend(joy=0.1, sadness=0.1, anger=0.0, fear=0.0, surprise=0.0)
    assert calm.neutral == pytest.approx(0.8)
    assert calm.dominant() == "neutral"


def test_emotional_state_neutral_state():
    n = EmotionalState.neutral_state()
    assert n.neutral == 1.0
    assert n.joy == n.sadness == n.anger == n.fear == n.surprise == 0.0
    assert n.dominant() == "neutral"


def test_emotional_state_rejects_out_of_range():
    with pytest.raises(ValidationError):
        EmotionalState(joy=1.5, sadness=0, anger=0, fear=0, surprise=0, neutral=0)


def test_results_and_status():
    tone = EmotionalState.neutral_state()
    v = VideoAnalysisResult(facial_expression=tone, attentiveness=0.4, environmental_context=["indoor"])
    a = AudioAnalysisResult(sentiment=0.5, toxicity=0.0, emotional_tone=tone, volume=0.2, clarity=0.3, pitch=0.1)
    st = LiveStatus(
        ready=True,
        detector_state=DetectorState.READY,
        video=ModalityStatus(running=True, state=SchedulerState.POLLING, metrics=PerformanceMetrics(count=2, avg_ms=3.0)),
        audio=ModalityStatus(running=False, state=SchedulerState.IDLE),
        last_video=v,
        last_audio=a,
    )
    body = st.model_dump(mode="json")
    assert body["detector_state"] == "ready"
    assert body["video"]["state"] == "polling"
    assert body["video"]["metrics"]["count"] == 2
    assert body["last_video"]["face_detected"] is False
    assert body["last_video"]["head_pose"] == {"yaw": 0.0, "pitch": 0.0, "roll": 0.0}

    with pytest.raises(ValidationError):
        VideoAnalysisResult(facial_expression=tone, attentiveness=1.2)
