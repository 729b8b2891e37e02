from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np


class PoseLandmark(IntEnum):
    """BlazePose 33-landmark topology."""

    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


NUM_LANDMARKS = len(PoseLandmark)


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0


@dataclass(frozen=True)
class PoseFrame:
    """
    One pose detection result.

    - landmarks: 33 normalized landmarks (x/y in [0, 1] image space)
    - world_landmarks: optional 33 world-space landmarks (meters, hip-centred)
    """

    landmarks: Sequence[Landmark]
    world_landmarks: Optional[Sequence[Landmark]] = None

    def get(self, idx: int, *, world: bool = False) -> Optional[Landmark]:
        source = self.world_landmarks if world else self.landmarks
        if source is None or idx >= len(source):
            return None
        return source[idx]

    @classmethod
    def from_dicts(
        cls,
        landmarks: Sequence[Mapping[str, float]],
        world_landmarks: Optional[Sequence[Mapping[str, float]]] = None,
    ) -> "PoseFrame":
        """Build a frame from JSON-style dicts ({x, y, z?, visibility?})."""
        norm = _pad([_landmark_from_dict(d) for d in landmarks])
        world = None
        if world_landmarks:
            world = _pad([_landmark_from_dict(d) for d in world_landmarks])
        return cls(landmarks=norm, world_landmarks=world)

    def to_dicts(self) -> Dict[str, Optional[List[Dict[str, float]]]]:
        def dump(seq: Optional[Sequence[Landmark]]) -> Optional[List[Dict[str, float]]]:
            if seq is None:
                return None
            return [{"x": lm.x, "y": lm.y, "z": lm.z, "visibility": lm.visibility} for lm in seq]

        return {"landmarks": dump(self.landmarks), "world_landmarks": dump(self.world_landmarks)}


def _landmark_from_dict(d: Mapping[str, float]) -> Landmark:
    return Landmark(
        x=float(d.get("x", 0.0)),
        y=float(d.get("y", 0.0)),
        z=float(d.get("z", 0.0) or 0.0),
        visibility=float(d.get("visibility", 1.0)),
    )


def _pad(landmarks: List[Landmark]) -> List[Landmark]:
    # Missing trailing landmarks are kept as invisible placeholders so indices stay fixed
    if len(landmarks) > NUM_LANDMARKS:
        return landmarks[:NUM_LANDMARKS]
    while len(landmarks) < NUM_LANDMARKS:
        landmarks.append(Landmark(x=float("nan"), y=float("nan"), z=float("nan"), visibility=0.0))
    return landmarks


class PoseBackend:
    """
    Single-person pose backend using MediaPipe BlazePose.

    - Keeps the model warm-loaded after construction
    - Accepts BGR frames (as from OpenCV)
    - Returns a PoseFrame with normalized landmarks and, when available, world landmarks
    - Returns None if no person is detected (callers treat it as "no update")
    """

    NUM_LANDMARKS = NUM_LANDMARKS

    def __init__(
        self,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        pose_model: Optional[object] = None,
        smooth_landmarks: bool = False,
    ) -> None:
        """
        If pose_model is provided, it must expose a .process(np.ndarray[R,G,B]) -> result
        where result.pose_landmarks is either None or an object with a .landmark list
        whose items have .x, .y, .z and .visibility. result.pose_world_landmarks is optional.

        smooth_landmarks defaults to False because smoothing is done by our own one-euro filters.
        """
        self._external_model = pose_model is not None
        if pose_model is not None:
            self._pose = pose_model
        else:
            try:
                import mediapipe as mp  # type: ignore
            except Exception as exc:  # pragma: no cover - exercised only when mediapipe missing
                raise ImportError(
                    "mediapipe is required for PoseBackend. Install with `pip install formscore[pose]`"
                ) from exc

            self._pose = mp.solutions.pose.Pose(
                model_complexity=model_complexity,
                enable_segmentation=False,
                smooth_landmarks=smooth_landmarks,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )

    def close(self) -> None:
        """Release underlying resources."""
        if self._external_model:
            return
        close_fn = getattr(self._pose, "close", None)
        if callable(close_fn):
            close_fn()

    def __enter__(self) -> "PoseBackend":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def infer(self, frame_bgr: np.ndarray) -> Optional[PoseFrame]:
        """Run single-person pose detection on a BGR image frame."""
        if not isinstance(frame_bgr, np.ndarray) or frame_bgr.ndim < 2:
            raise ValueError("frame_bgr must be an HxWxC numpy array")

        # Convert BGR (OpenCV) -> RGB without requiring cv2
        if frame_bgr.ndim == 3 and frame_bgr.shape[2] >= 3:
            frame_rgb = np.ascontiguousarray(frame_bgr[..., 2::-1])
        else:
            frame_rgb = frame_bgr

        result = self._pose.process(frame_rgb)
        if result is None:
            return None

        landmarks = _read_landmarks(getattr(result, "pose_landmarks", None), clamp=True)
        if landmarks is None:
            return None
        world = _read_landmarks(getattr(result, "pose_world_landmarks", None), clamp=False)
        return PoseFrame(landmarks=landmarks, world_landmarks=world)


def _read_landmarks(container: Optional[object], *, clamp: bool) -> Optional[List[Landmark]]:
    items = getattr(container, "landmark", None) if container is not None else None
    if not items:
        return None

    out: List[Landmark] = []
    for lm in list(items)[:NUM_LANDMARKS]:
        x = float(getattr(lm, "x", 0.0))
        y = float(getattr(lm, "y", 0.0))
        z = float(getattr(lm, "z", 0.0))
        vis = float(getattr(lm, "visibility", 0.0))
        vis = 0.0 if np.isnan(vis) else max(0.0, min(1.0, vis))
        if clamp:
            x = 0.0 if np.isnan(x) else max(0.0, min(1.0, x))
            y = 0.0 if np.isnan(y) else max(0.0, min(1.0, y))
        out.append(Landmark(x=x, y=y, z=z, visibility=vis))
    return _pad(out)
