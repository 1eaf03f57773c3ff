"""
REST endpoints for live sensing control.
"""
import logging

from fastapi import APIRouter, HTTPException

from sensing.config import Settings
from sensing.errors import (
    AlreadyRunning,
    DeviceNotFound,
    ModelUnavailable,
    PermissionDenied,
    StartError,
)
from sensing.live import LiveAnalyzer
from sensing.models import AudioAnalysisResult, LiveStatus, VideoAnalysisResult

router = APIRouter()
settings = Settings()
live_analyzer = LiveAnalyzer(settings)
logger = logging.getLogger(__name__)


def _start_error_status(err: StartError) -> int:
    if isinstance(err, PermissionDenied):
        return 403
    if isinstance(err, DeviceNotFound):
        return 404
    if isinstance(err, ModelUnavailable):
        return 503
    return 500


def _log_video(result: VideoAnalysisResult) -> None:
    logger.debug(f"[api] video attentiveness={result.attentiveness:.2f} "
                 f"dominant={result.facial_expression.dominant()} context={result.environmental_context}")


def _log_audio(result: AudioAnalysisResult) -> None:
    logger.debug(f"[api] audio volume={result.volume:.2f} sentiment={result.sentiment:.2f} "
                 f"toxicity={result.toxicity:.2f}")


@router.post("/live/video/start")
async def live_video_start():
    """
    Open the camera, build (or reuse) the landmark model and start polling.

    Returns:
        dict: {"status": "started"}, {"status": "already_running"}, or
              {"status": "stopped"} when a stop request won the race with setup.
    """
    try:
        started = await live_analyzer.start_video_analysis(_log_video)
    except AlreadyRunning:
        return {"status": "already_running"}
    except StartError as e:
        logger.error(f"[api] video start failed: {e}")
        raise HTTPException(status_code=_start_error_status(e), detail=str(e))
    return {"status": "started" if started else "stopped"}


@router.post("/live/video/stop")
async def live_video_stop():
    if not live_analyzer.is_running("video"):
        return {"status": "not_running"}
    live_analyzer.stop_video_analysis()
    return {"status": "stopped"}


@router.post("/live/audio/start")
async def live_audio_start():
    try:
        started = await live_analyzer.start_audio_analysis(_log_audio)
    except AlreadyRunning:
        return {"status": "already_running"}
    except StartError as e:
        logger.error(f"[api] audio start failed: {e}")
        raise HTTPException(status_code=_start_error_status(e), detail=str(e))
    return {"status": "started" if started else "stopped"}


@router.post("/live/audio/stop")
async def live_audio_stop():
    if not live_analyzer.is_running("audio"):
        return {"status": "not_running"}
    live_analyzer.stop_audio_analysis()
    return {"status": "stopped"}


@router.get("/live/status", response_model=LiveStatus)
async def live_status():
    return live_analyzer.status()


@router.get("/live/metrics")
async def live_metrics():
    """Rolling extraction latency per modality."""
    return {
        "video": live_analyzer.get_performance_metrics("video").model_dump(),
        "audio": live_analyzer.get_performance_metrics("audio").model_dump(),
    }
