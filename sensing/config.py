"""
Configuration for the live sensing pipeline.
"""
from pydantic import BaseModel
import os

class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    DEVICE: str = (os.getenv("DEVICE", "gpu") or "gpu")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # camera
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    VIDEO_WIDTH: int = int(os.getenv("VIDEO_WIDTH", "640"))
    VIDEO_HEIGHT: int = int(os.getenv("VIDEO_HEIGHT", "480"))
    VIDEO_FPS: int = int(os.getenv("VIDEO_FPS", "30"))

    # microphone / analyser
    AUDIO_SAMPLE_RATE: int = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))
    AUDIO_CHANNELS: int = int(os.getenv("AUDIO_CHANNELS", "1"))
    FFT_SIZE: int = int(os.getenv("FFT_SIZE", "2048"))
    MIN_DECIBELS: float = float(os.getenv("MIN_DECIBELS", "-90"))
    MAX_DECIBELS: float = float(os.getenv("MAX_DECIBELS", "-10"))
    SMOOTHING_TIME_CONSTANT: float = float(os.getenv("SMOOTHING_TIME_CONSTANT", "0.85"))

    # polling periods
    VIDEO_INTERVAL_MS: int = int(os.getenv("VIDEO_INTERVAL_MS", "500"))
    AUDIO_INTERVAL_MS: int = int(os.getenv("AUDIO_INTERVAL_MS", "300"))

    # landmark model
    MIN_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_DETECTION_CONFIDENCE", "0.5"))
    MIN_TRACKING_CONFIDENCE: float = float(os.getenv("MIN_TRACKING_CONFIDENCE", "0.5"))

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize DEVICE: strip comments/extra words, lower-case, validate
        dev = (self.DEVICE or "gpu").strip().split()[0].lower()
        if dev in ("cuda", "opencl"):
            dev = "gpu"
        if dev not in ("cpu", "gpu"):
            dev = "cpu"
        object.__setattr__(self, "DEVICE", dev)
        # analyser nodes only accept power-of-two FFT sizes in [32, 32768]
        fft = int(self.FFT_SIZE)
        if fft < 32 or fft > 32768 or (fft & (fft - 1)) != 0:
            fft = 2048
        object.__setattr__(self, "FFT_SIZE", fft)

    @property
    def video_interval_s(self) -> float:
        return max(1, self.VIDEO_INTERVAL_MS) / 1000.0

    @property
    def audio_interval_s(self) -> float:
        return max(1, self.AUDIO_INTERVAL_MS) / 1000.0
