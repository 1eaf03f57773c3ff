"""
Per-frame video features from face landmarks.

For one frame:
  - no subject   -> neutral state, attentiveness 0, ["no_face_detected"]
  - one or more  -> first subject only: emotion from mouth/eye geometry,
                    attentiveness from iris-vs-nose deviation, context tags,
                    head pose and eye gaze
  - any failure  -> the same neutral no-subject result (never raises from analyze)

Landmark indices follow the MediaPipe face mesh (468 points, 478 with refined iris).
"""
from __future__ import annotations

import math
import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from sensing.detector import DetectorHandle, Subject
from sensing.errors import TransientFrameFailure
from sensing.models import EmotionalState, EyeGaze, HeadPose, VideoAnalysisResult, clamp01

logger = logging.getLogger(__name__)

NOSE_TIP = 1
FOREHEAD = 10
CHIN = 152
LIP_TOP, LIP_BOTTOM = 0, 17
INNER_LIP_TOP, INNER_LIP_BOTTOM = 13, 14
MOUTH_LEFT, MOUTH_RIGHT = 61, 291
LEFT_EYE_OUTER, LEFT_EYE_INNER = 33, 133
RIGHT_EYE_INNER, RIGHT_EYE_OUTER = 362, 263
LEFT_IRIS = list(range(468, 473))
RIGHT_IRIS = list(range(473, 478))
BASE_LANDMARKS = 468
REFINED_LANDMARKS = 478

NO_FACE_TAG = "no_face_detected"


@dataclass
class FacialScoringPolicy:
    """Heuristic geometry-to-affect coefficients. Placeholders, not a validated classifier."""
    smile_gain: float = 2.0
    sadness_weight: float = 0.3
    surprise_baseline: float = 0.55
    surprise_gain: float = 2.5
    anger_weight: float = 0.3
    fear_fraction: float = 0.3
    gaze_gain: float = 5.0

    # context buckets
    high_resolution_width: int = 1280
    medium_resolution_width: int = 640
    close_area: float = 0.20
    medium_area: float = 0.05
    center_tolerance: float = 0.2
    well_lit_score: float = 0.85
    moderate_lighting_score: float = 0.6

    def emotion(self, smile: float, openness: float) -> EmotionalState:
        joy = smile
        sadness = self.sadness_weight * (1.0 - smile)
        surprise = (openness - self.surprise_baseline) * self.surprise_gain
        anger = self.anger_weight * (1.0 - openness)
        fear = self.fear_fraction * clamp01(surprise)
        return EmotionalState.blend(joy=joy, sadness=sadness, anger=anger, fear=fear, surprise=surprise)


def no_subject_result() -> VideoAnalysisResult:
    return VideoAnalysisResult(
        facial_expression=EmotionalState.neutral_state(),
        attentiveness=0.0,
        environmental_context=[NO_FACE_TAG],
        face_detected=False,
    )


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


class VideoFeatureExtractor:
    """Turns one frame plus a ready detector into a VideoAnalysisResult."""
    def __init__(self, policy: FacialScoringPolicy | None = None):
        self.policy = policy or FacialScoringPolicy()

    def analyze(self, frame: np.ndarray, detector: DetectorHandle) -> VideoAnalysisResult:
        try:
            return self.extract(frame, detector)
        except TransientFrameFailure as e:
            logger.warning(f"[video] frame skipped: {e}")
        except Exception:
            logger.exception("[video] frame extraction failed; using neutral fallback")
        return no_subject_result()

    def extract(self, frame: np.ndarray, detector: DetectorHandle) -> VideoAnalysisResult:
        if frame is None or getattr(frame, "ndim", 0) < 2 or frame.size == 0:
            raise TransientFrameFailure("empty frame")

        subjects = detector.estimate(frame)
        if not subjects:
            return no_subject_result()

        subject = subjects[0]
        lm = np.asarray(subject.landmarks, dtype=np.float64)
        if lm.ndim != 2 or lm.shape[0] < BASE_LANDMARKS or lm.shape[1] < 2:
            raise TransientFrameFailure(f"unexpected landmark shape {lm.shape}")
        score = clamp01(subject.score)

        h, w = frame.shape[:2]
        return VideoAnalysisResult(
            facial_expression=self.emotion(lm),
            attentiveness=self.attentiveness(lm, score),
            environmental_context=self.context(subject, w, h, score),
            face_detected=True,
            head_pose=self.head_pose(lm),
            eye_gaze=self.eye_gaze(lm),
        )

    # ---- features ----
    def emotion(self, lm: np.ndarray) -> EmotionalState:
        corner_mid_y = (lm[MOUTH_LEFT, 1] + lm[MOUTH_RIGHT, 1]) / 2.0
        center_y = (lm[INNER_LIP_TOP, 1] + lm[INNER_LIP_BOTTOM, 1]) / 2.0
        mouth_height = max(abs(lm[LIP_BOTTOM, 1] - lm[LIP_TOP, 1]), 1e-6)
        # image y grows downward: corners above the lip center means a smile
        smile = clamp01((center_y - corner_mid_y) / mouth_height * self.policy.smile_gain)

        mouth_width = _dist(lm[MOUTH_LEFT], lm[MOUTH_RIGHT])
        eye_distance = max(_dist(lm[LEFT_EYE_OUTER], lm[RIGHT_EYE_OUTER]), 1e-6)
        openness = mouth_width / eye_distance
        return self.policy.emotion(smile, openness)

    def attentiveness(self, lm: np.ndarray, score: float) -> float:
        iris_x = float(np.mean(self._iris_points(lm)[:, 0]))
        deviation = abs(iris_x - lm[NOSE_TIP, 0])
        return clamp01((1.0 - deviation * self.policy.gaze_gain) * score)

    def context(self, subject: Subject, width: int, height: int, score: float) -> List[str]:
        p = self.policy
        tags: List[str] = []

        if width >= p.high_resolution_width:
            tags.append("high_resolution")
        elif width >= p.medium_resolution_width:
            tags.append("medium_resolution")
        else:
            tags.append("low_resolution")

        bx, by, bw, bh = (float(v) for v in subject.bounding_box)
        area = clamp01(max(bw, 0.0) * max(bh, 0.0))
        if area >= p.close_area:
            tags.append("close_distance")
        elif area >= p.medium_area:
            tags.append("medium_distance")
        else:
            tags.append("far_distance")

        cx, cy = bx + bw / 2.0, by + bh / 2.0
        if abs(cx - 0.5) < p.center_tolerance and abs(cy - 0.5) < p.center_tolerance:
            tags.append("centered")
        else:
            tags.append("off_center")

        if score >= p.well_lit_score:
            tags.append("well_lit")
        elif score >= p.moderate_lighting_score:
            tags.append("moderate_lighting")
        else:
            tags.append("poor_lighting")

        tags.append("indoor")
        return tags

    def head_pose(self, lm: np.ndarray) -> HeadPose:
        nose, le, re = lm[NOSE_TIP], lm[LEFT_EYE_OUTER], lm[RIGHT_EYE_OUTER]
        top, chin = lm[FOREHEAD], lm[CHIN]
        nose_z = nose[2] if lm.shape[1] > 2 and nose[2] != 0 else 1.0
        top_z = top[2] if lm.shape[1] > 2 and top[2] != 0 else 1.0
        yaw = math.degrees(math.atan2(nose[0] - (le[0] + re[0]) / 2.0, nose_z))
        pitch = math.degrees(math.atan2(top[1] - chin[1], top_z))
        roll = math.degrees(math.atan2(re[1] - le[1], re[0] - le[0]))
        return HeadPose(yaw=yaw, pitch=pitch, roll=roll)

    def eye_gaze(self, lm: np.ndarray) -> EyeGaze:
        if lm.shape[0] < REFINED_LANDMARKS:
            return EyeGaze()
        left, right = lm[LEFT_IRIS[0]], lm[RIGHT_IRIS[0]]
        return EyeGaze(x=float((left[0] + right[0]) / 2.0), y=float((left[1] + right[1]) / 2.0))

    @staticmethod
    def _iris_points(lm: np.ndarray) -> np.ndarray:
        if lm.shape[0] >= REFINED_LANDMARKS:
            return lm[LEFT_IRIS + RIGHT_IRIS]
        # reduced model has no iris points; eye-corner centroid stands in
        return lm[[LEFT_EYE_OUTER, LEFT_EYE_INNER, RIGHT_EYE_INNER, RIGHT_EYE_OUTER]]
