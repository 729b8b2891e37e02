from __future__ import annotations

import math

import numpy as np
import pytest

from pose.backend import NUM_LANDMARKS, Landmark, PoseBackend, PoseFrame, PoseLandmark


class _Lm:
    def __init__(self, x: float, y: float, z: float = 0.0, visibility: float = 1.0) -> None:
        self.x = x
        self.y = y
        self.z = z
        self.visibility = visibility


class _Landmarks:
    def __init__(self, count: int, scale: float = 1.0) -> None:
        self.landmark = [_Lm(x=scale * i / count, y=scale * i / count, z=-0.1) for i in range(count)]


class _Result:
    def __init__(self, pose_landmarks, pose_world_landmarks=None) -> None:
        self.pose_landmarks = pose_landmarks
        self.pose_world_landmarks = pose_world_landmarks


class _FakePose:
    def __init__(self, result) -> None:
        self.result = result
        self.seen = None

    def process(self, frame_rgb):
        assert isinstance(frame_rgb, np.ndarray)
        self.seen = frame_rgb
        return self.result


def _dummy_frame(h: int = 64, w: int = 64) -> np.ndarray:
    # BGR dummy frame
    return np.zeros((h, w, 3), dtype=np.uint8)


def test_infer_with_valid_landmarks():
    backend = PoseBackend(pose_model=_FakePose(_Result(_Landmarks(33))))
    frame = backend.infer(_dummy_frame())
    assert isinstance(frame, PoseFrame)
    assert len(frame.landmarks) == NUM_LANDMARKS
    assert frame.world_landmarks is None
    for lm in frame.landmarks:
        assert 0.0 <= lm.x <= 1.0
        assert 0.0 <= lm.y <= 1.0
        assert 0.0 <= lm.visibility <= 1.0
    assert frame.get(PoseLandmark.LEFT_KNEE).x == pytest.approx(25 / 33)


def test_infer_converts_bgr_to_rgb():
    model = _FakePose(_Result(_Landmarks(33)))
    image = _dummy_frame()
    image[..., 0] = 255  # blue channel
    PoseBackend(pose_model=model).infer(image)
    assert model.seen[0, 0, 2] == 255
    assert model.seen[0, 0, 0] == 0


def test_infer_no_pose_returns_none():
    assert PoseBackend(pose_model=_FakePose(_Result(None))).infer(_dummy_frame()) is None
    assert PoseBackend(pose_model=_FakePose(None)).infer(_dummy_frame()) is None


def test_infer_partial_pads_with_invisible_landmarks():
    frame = PoseBackend(pose_model=_FakePose(_Result(_Landmarks(10)))).infer(_dummy_frame())
    assert len(frame.landmarks) == NUM_LANDMARKS
    padded = frame.landmarks[10:]
    assert len(padded) == 23
    assert all(lm.visibility == 0.0 and math.isnan(lm.x) for lm in padded)


def test_infer_reads_world_landmarks_without_clamping():
    result = _Result(_Landmarks(33, scale=1.5), _Landmarks(33, scale=-0.5))
    frame = PoseBackend(pose_model=_FakePose(result)).infer(_dummy_frame())
    assert max(lm.x for lm in frame.landmarks) == 1.0
    assert frame.world_landmarks is not None
    assert frame.get(32, world=True).x < 0.0


def test_infer_rejects_bad_input():
    backend = PoseBackend(pose_model=_FakePose(_Result(None)))
    with pytest.raises(ValueError):
        backend.infer(np.zeros(5))
    with pytest.raises(ValueError):
        backend.infer([[0, 0], [0, 0]])


def test_close_leaves_external_model_alone():
    class _Closable(_FakePose):
        closed = False

        def close(self):
            self.closed = True

    model = _Closable(None)
    with PoseBackend(pose_model=model):
        pass
    assert not model.closed


def test_frame_dict_round_trip_pads_short_input():
    frame = PoseFrame.from_dicts([{"x": 0.2, "y": 0.3}], world_landmarks=[{"x": 0.1, "y": -0.2, "z": 0.05}])
    assert len(frame.landmarks) == NUM_LANDMARKS
    assert frame.landmarks[0] == Landmark(x=0.2, y=0.3, z=0.0, visibility=1.0)
    assert frame.landmarks[1].visibility == 0.0
    assert frame.get(0, world=True).z == pytest.approx(0.05)
    dumped = frame.to_dicts()
    assert dumped["landmarks"][0] == {"x": 0.2, "y": 0.3, "z": 0.0, "visibility": 1.0}
    assert len(dumped["world_landmarks"]) == NUM_LANDMARKS
