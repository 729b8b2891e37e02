from __future__ import annotations

import math

import pytest

from pose.backend import Landmark
from pose.smoothing import (
    SMOOTHER_PRESETS,
    LandmarkSmoother,
    OneEuroFilter,
    SmootherConfig,
    smoothing_factor,
)


def test_smoothing_factor_matches_closed_form():
    # r = 2*pi*cutoff*dt = 1 -> alpha = 0.5
    assert smoothing_factor(1.0 / (2.0 * math.pi), 1.0) == pytest.approx(0.5)
    assert smoothing_factor(0.0, 1.0) == 0.0


def test_first_sample_is_returned_unchanged():
    f = OneEuroFilter(min_cutoff=1.0, beta=0.5)
    assert not f.initialized
    assert f.filter(0.0, 42.0) == 42.0
    assert f.initialized
    assert f.value == 42.0


@pytest.mark.parametrize("eps", [0.0, 1e-6, 0.5])
def test_non_increasing_timestamp_returns_previous_output(eps):
    f = OneEuroFilter(min_cutoff=1.0, beta=0.1)
    f.filter(0.0, 0.0)
    prev = f.filter(0.1, 10.0)
    assert f.filter(0.1 - eps, 1000.0) == prev
    # state untouched by the rejected sample
    assert f.value == prev


def test_constant_input_converges():
    f = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    f.filter(0.0, 0.0)
    out = None
    for i in range(1, 300):
        out = f.filter(i / 30.0, 5.0)
    assert out == pytest.approx(5.0, abs=1e-6)


def test_higher_beta_follows_fast_motion_more_closely():
    slow = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    fast = OneEuroFilter(min_cutoff=1.0, beta=1.0)
    for f in (slow, fast):
        f.filter(0.0, 0.0)
    a = b = 0.0
    for i in range(1, 6):
        a = slow.filter(i / 30.0, i * 10.0)
        b = fast.filter(i / 30.0, i * 10.0)
    assert abs(50.0 - b) < abs(50.0 - a)


@pytest.mark.parametrize("kwargs", [{"min_cutoff": -1.0}, {"beta": -0.1}, {"d_cutoff": 0.0}])
def test_invalid_parameters_raise(kwargs):
    with pytest.raises(ValueError):
        OneEuroFilter(**kwargs)


def test_reset_reinitializes():
    f = OneEuroFilter()
    f.filter(0.0, 1.0)
    f.filter(0.1, 2.0)
    f.reset()
    assert f.value is None
    assert f.filter(5.0, 9.0) == 9.0


def test_presets_cover_expected_names():
    assert set(SMOOTHER_PRESETS) == {"ULTRA_SMOOTH", "SMOOTH", "RESPONSIVE", "MINIMAL"}
    assert SMOOTHER_PRESETS["SMOOTH"] == SmootherConfig(min_cutoff=1.0, beta=0.5)


def test_landmark_smoother_keeps_visibility_and_passes_invalid_through():
    s = LandmarkSmoother(num_landmarks=2)
    first = s.update(0.0, [Landmark(0.1, 0.2, 0.0, 0.7), Landmark(float("nan"), 0.0, 0.0, 0.0)])
    assert first[0] == Landmark(0.1, 0.2, 0.0, 0.7)
    assert math.isnan(first[1].x)

    second = s.update(33.0, [Landmark(0.3, 0.2, 0.0, 0.4), Landmark(0.5, 0.5, 0.0, 0.9)])
    assert 0.1 < second[0].x < 0.3
    assert second[0].visibility == 0.4
    # the NaN frame never initialized landmark 1, so its first finite value comes through as is
    assert second[1].x == 0.5


def test_landmark_smoother_rejects_wrong_length():
    s = LandmarkSmoother(num_landmarks=3)
    with pytest.raises(ValueError):
        s.update(0.0, [Landmark(0.0, 0.0)])
