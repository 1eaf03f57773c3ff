"""
Landmark model construction and memoization.

DetectorCache builds the face landmark model once per session:
  1. numeric backend: OpenCL when DEVICE=gpu and available, otherwise CPU
  2. full model: single subject, refined (iris) landmarks
  3. reduced fallback: single subject, no refined landmarks
If both builds fail the cache latches FAILED and re-raises the same ModelUnavailable.

MediaPipe is imported lazily; the builder is injectable so tests run without it.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

import cv2
import numpy as np

from sensing.config import Settings
from sensing.errors import ModelUnavailable
from sensing.models import DetectorState

logger = logging.getLogger(__name__)


@dataclass
class Subject:
    """One detected face, landmarks normalized to [0,1] (x, y, z) in frame coordinates."""
    landmarks: np.ndarray
    bounding_box: Tuple[float, float, float, float]  # (x, y, w, h), normalized
    score: float = 1.0


class LandmarkModel(Protocol):
    def estimate(self, frame: np.ndarray) -> List[Subject]: ...
    def close(self) -> None: ...


LandmarkModelBuilder = Callable[[bool, Settings], LandmarkModel]


class MediaPipeLandmarkModel:
    """
    FaceMesh wrapped as a LandmarkModel.

    FaceMesh is not re-entrant, so estimate() holds a lock. MediaPipe reports no
    per-face confidence; every subject gets score 1.0.
    """
    def __init__(self, refine_landmarks: bool, settings: Settings):
        import mediapipe as mp

        self.refine_landmarks = refine_landmarks
        self._lock = threading.Lock()
        self._mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=refine_landmarks,
            min_detection_confidence=settings.MIN_DETECTION_CONFIDENCE,
            min_tracking_confidence=settings.MIN_TRACKING_CONFIDENCE,
        )

    def estimate(self, frame: np.ndarray) -> List[Subject]:
        if frame is None or frame.size == 0:
            return []
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        with self._lock:
            results = self._mesh.process(rgb)
        subjects: List[Subject] = []
        for face in results.multi_face_landmarks or []:
            pts = np.array([[p.x, p.y, p.z] for p in face.landmark], dtype=np.float32)
            x0, y0 = float(np.min(pts[:, 0])), float(np.min(pts[:, 1]))
            x1, y1 = float(np.max(pts[:, 0])), float(np.max(pts[:, 1]))
            subjects.append(Subject(landmarks=pts, bounding_box=(x0, y0, x1 - x0, y1 - y0), score=1.0))
        return subjects

    def close(self) -> None:
        with self._lock:
            self._mesh.close()


def build_face_mesh(refine_landmarks: bool, settings: Settings) -> LandmarkModel:
    return MediaPipeLandmarkModel(refine_landmarks, settings)


def ensure_backend(settings: Settings) -> str:
    """Prefer OpenCL acceleration, fall back to CPU. Returns the backend name."""
    if settings.DEVICE == "gpu":
        try:
            if cv2.ocl.haveOpenCL():
                cv2.ocl.setUseOpenCL(True)
                if cv2.ocl.useOpenCL():
                    return "opencl"
        except cv2.error:
            logger.warning("[detector] OpenCL probe failed; using CPU")
    cv2.ocl.setUseOpenCL(False)
    return "cpu"


@dataclass(frozen=True)
class DetectorHandle:
    """Immutable reference to a ready landmark model."""
    model: LandmarkModel = field(compare=False)
    refined_landmarks: bool
    backend: str

    def estimate(self, frame: np.ndarray) -> List[Subject]:
        return self.model.estimate(frame)


def _close_model(handle: DetectorHandle) -> None:
    try:
        handle.model.close()
    except Exception:
        logger.exception("[detector] failed to close landmark model")


class DetectorCache:
    """Lazily builds, memoizes and shares the session's landmark model."""
    def __init__(self,
                 settings: Settings,
                 builder: Optional[LandmarkModelBuilder] = None,
                 backend_probe: Optional[Callable[[Settings], str]] = None):
        self.s = settings
        self._builder = builder or build_face_mesh
        self._probe = backend_probe or ensure_backend
        self._state = DetectorState.UNINITIALIZED
        self._handle: Optional[DetectorHandle] = None
        self._error: Optional[ModelUnavailable] = None
        self._pending: Optional[asyncio.Future] = None
        self._generation = 0
        self.build_attempts = 0

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def handle(self) -> Optional[DetectorHandle]:
        return self._handle

    @property
    def failure_reason(self) -> Optional[str]:
        return str(self._error) if self._error is not None else None

    def is_ready(self) -> bool:
        return self._state == DetectorState.READY

    async def initialize(self, force: bool = False) -> DetectorHandle:
        if force:
            self.reset()
        if self._state == DetectorState.READY and self._handle is not None:
            return self._handle
        if self._state == DetectorState.FAILED and self._error is not None:
            raise self._error
        if self._pending is None:
            self._state = DetectorState.INITIALIZING
            self._pending = asyncio.ensure_future(self._build(self._generation))
        # shield so one cancelled caller does not abort the shared build
        return await asyncio.shield(self._pending)

    def reset(self) -> None:
        """Forced re-init: drop the model (or the latched failure) and start over."""
        # any build still pending belongs to the old generation and will not commit
        self._generation += 1
        if self._handle is not None:
            _close_model(self._handle)
        self._handle = None
        self._error = None
        self._pending = None
        self._state = DetectorState.UNINITIALIZED
        logger.info("[detector] reset to uninitialized")

    async def _build(self, generation: int) -> DetectorHandle:
        try:
            backend = await asyncio.to_thread(self._probe, self.s)
        except Exception:
            logger.exception("[detector] backend probe failed; using CPU")
            backend = "cpu"
        logger.debug(f"[detector] backend={backend}")

        try:
            handle = await self._construct(True, backend)
        except Exception as full_err:
            logger.warning(f"[detector] full landmark model failed ({full_err}); trying reduced model")
            try:
                handle = await self._construct(False, backend)
            except Exception as reduced_err:
                if generation != self._generation:
                    logger.info("[detector] superseded build failed; waiting for the current build")
                    return await self.initialize()
                self._error = ModelUnavailable(
                    "Landmark model unavailable: "
                    f"full model failed ({full_err}); reduced model failed ({reduced_err})"
                )
                self._error.__cause__ = reduced_err
                self._state = DetectorState.FAILED
                self._pending = None
                logger.error(f"[detector] {self._error}")
                raise self._error

        if generation != self._generation:
            # reset() ran while this build was pending: the newer build owns the cache
            logger.info("[detector] discarding superseded landmark model")
            _close_model(handle)
            return await self.initialize()

        self._handle = handle
        self._state = DetectorState.READY
        self._pending = None
        logger.info(f"[detector] ready refined_landmarks={handle.refined_landmarks} backend={backend}")
        return handle

    async def _construct(self, refined: bool, backend: str) -> DetectorHandle:
        self.build_attempts += 1
        model = await asyncio.to_thread(self._builder, refined, self.s)
        return DetectorHandle(model=model, refined_landmarks=refined, backend=backend)
