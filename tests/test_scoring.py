from __future__ import annotations

import pytest

from analysis.metrics import MetricsSnapshot
from analysis.rep_counter import RepEvent
from scoring.engine import (
    ComponentScore,
    ScoringEngine,
    score_component,
    weighted_total,
)
from scoring.feedback import (
    GENERIC_SUCCESS,
    INFO,
    SUCCESS,
    WARNING,
    component_feedback,
    select_feedback,
    summary_feedback,
)
from scoring.profile import (
    ProfileError,
    ScoringRule,
    get_builtin_profile,
    load_profile,
    profile_from_record,
)


RANGE = ScoringRule(kind="range", ideal=(80.0, 110.0), hard=(70.0, 150.0))


def test_range_curve():
    assert score_component(RANGE, 90.0) == (100.0, "ok")
    assert score_component(RANGE, 70.0) == (0.0, "too_low")
    assert score_component(RANGE, 150.0) == (0.0, "too_high")

    s75, status = score_component(RANGE, 75.0)
    assert 0.0 < s75 < 100.0
    assert status == "low"
    assert score_component(RANGE, 78.0)[0] > s75
    assert score_component(RANGE, 130.0) == (pytest.approx(50.0), "high")


def test_max_and_min_curves():
    rule_max = ScoringRule(kind="max", ideal=(0.0, 25.0), hard=(0.0, 45.0))
    assert score_component(rule_max, 10.0) == (100.0, "ok")
    assert score_component(rule_max, 35.0) == (pytest.approx(50.0), "high")
    assert score_component(rule_max, 50.0) == (0.0, "too_high")

    rule_min = ScoringRule(kind="min", ideal=(170.0, 180.0), hard=(160.0, 180.0))
    assert score_component(rule_min, 175.0) == (100.0, "ok")
    assert score_component(rule_min, 165.0) == (pytest.approx(50.0), "low")
    assert score_component(rule_min, 150.0) == (0.0, "too_low")


def test_missing_value_is_reported_not_scored():
    assert score_component(RANGE, None) == (None, "missing")


def test_degenerate_rule_does_not_divide_by_zero():
    rule = ScoringRule(kind="max", ideal=(0.0, 10.0), hard=(0.0, 10.0))
    assert score_component(rule, 10.0) == (100.0, "ok")
    assert score_component(rule, 10.5) == (0.0, "too_high")


def _comp(weight, score):
    return ComponentScore(
        key="k", metric_key="m", value=None, score=score, scaled_score=score,
        weight=weight, status="ok" if score is not None else "missing",
    )


def test_weighted_total_ignores_missing_components():
    assert weighted_total([_comp(0.6, 80.0), _comp(0.4, None)]) == pytest.approx(80.0)
    assert weighted_total([_comp(0.75, 100.0), _comp(0.25, 60.0)]) == pytest.approx(90.0)
    assert weighted_total([_comp(0.4, None)]) is None
    assert weighted_total([_comp(0.0, 70.0)]) is None


def _profile(**overrides):
    metric = {
        "metric_key": "knee_angle",
        "key": "depth",
        "weight": 0.6,
        "max_score": 50,
        "aggregation": "p05",
        "rule": {"kind": "range", "ideal": [80, 110], "hard": [70, 150]},
        "phases": ["mid", "bottom"],
    }
    metric.update(overrides)
    return {
        "exercise_code": "side_squat",
        "metrics": [
            metric,
            {
                "metric_key": "rep_interval_ms",
                "key": "tempo",
                "weight": 0.4,
                "aggregation": "last",
                "rule": {"kind": "range", "ideal": [800, 2500], "hard": [400, 5000]},
            },
        ],
    }


def test_score_rep_uses_accumulators_and_scales():
    engine = ScoringEngine(load_profile(_profile()))
    accs = engine.build_accumulators()
    for v in (120.0, 95.0, 92.0):
        for acc in accs:
            acc.update(MetricsSnapshot(values={"knee_angle": v}, phase="bottom"))

    result = engine.score_rep(accs, RepEvent(1, 1200.0, None, 900.0, 400.0, None))
    depth, tempo = result.components
    assert depth.status == "ok" and depth.score == 100.0
    assert depth.scaled_score == pytest.approx(50.0)
    assert tempo.status == "missing" and tempo.score is None
    assert result.total == pytest.approx(100.0)
    assert result.rep_index == 1
    assert result.feedback.type == SUCCESS
    assert result.to_dict()["components"][0]["key"] == "depth"


def test_score_rep_rejects_mismatched_accumulators():
    engine = ScoringEngine(load_profile(_profile()))
    with pytest.raises(ValueError):
        engine.score_rep([], RepEvent(1, 0.0, None, 0.0, 0.0, None))


def test_score_frame_marks_phase_gated_components_skipped():
    engine = ScoringEngine(load_profile(_profile()))
    frame = engine.score_frame(MetricsSnapshot(values={"knee_angle": 170.0}, phase="standing"))
    assert [c.status for c in frame.components] == ["skipped", "missing"]
    assert frame.total is None

    frame = engine.score_frame(MetricsSnapshot(values={"knee_angle": 130.0}, phase="mid"))
    assert frame.components[0].status == "high"
    assert frame.total == pytest.approx(50.0)


class _C:
    def __init__(self, key, score, status):
        self.key, self.score, self.status = key, score, status


def test_feedback_selection():
    assert select_feedback("side_squat", [_C("depth", 95.0, "ok")]).message == GENERIC_SUCCESS

    fb = select_feedback("side_squat", [_C("depth", 90.0, "ok"), _C("torso_lean", 60.0, "high")])
    assert fb.type == INFO
    assert "upright" in fb.message

    fb = select_feedback("side_squat", [_C("depth", 20.0, "too_high"), _C("tempo", None, "missing")])
    assert fb.type == WARNING
    assert "deeper" in fb.message or "Sit down" in fb.message

    fb = select_feedback("lunge", [_C("balance", 30.0, "low")])
    assert fb.type == WARNING and fb.message


def test_feedback_follows_exercise_aliases():
    assert component_feedback("squat", "torso_lean", "high") == component_feedback("side_squat", "torso_lean", "high")
    assert component_feedback("pushup", "body_line", "low") == "Straighten your body a bit more."
    assert component_feedback("Push-Up", "body_line", "low") == "Straighten your body a bit more."
    assert component_feedback("jumping_jack", "depth", "low") is None

    profile = load_profile(
        {
            "exercise_code": "squat",
            "metrics": [
                {
                    "metric_key": "torso_angle",
                    "key": "torso_lean",
                    "weight": 1.0,
                    "rule": {"kind": "max", "ideal": [0, 25], "hard": [0, 45]},
                }
            ],
        }
    )
    frame = ScoringEngine(profile).score_frame(MetricsSnapshot(values={"torso_angle": 35.0}, phase="mid"))
    assert "upright" in frame.components[0].feedback


def test_summary_feedback_bands():
    assert summary_feedback(95.0, 10).startswith("Perfect")
    assert summary_feedback(95.0, 10).endswith("10 reps completed!")
    assert summary_feedback(65.0, 0).startswith("Not bad")
    assert summary_feedback(None, 0).startswith("Your form needs work")


@pytest.mark.parametrize(
    "overrides",
    [
        {"rule": {"kind": "range", "ideal": [120, 110], "hard": [70, 150]}},
        {"rule": {"kind": "range", "ideal": [60, 110], "hard": [70, 150]}},
        {"rule": {"kind": "curve", "ideal": [80, 110], "hard": [70, 150]}},
        {"aggregation": "median"},
        {"weight": -0.1},
        {"max_score": 0},
    ],
)
def test_invalid_profiles_fail_at_load(overrides):
    with pytest.raises(ProfileError):
        load_profile(_profile(**overrides))


def test_unknown_exercise_in_profile():
    data = _profile()
    data["exercise_code"] = "jumping_jack"
    with pytest.raises(ProfileError):
        load_profile(data)


def test_duplicate_component_keys_rejected():
    data = _profile()
    data["metrics"][1]["key"] = "depth"
    with pytest.raises(ProfileError):
        load_profile(data)


def test_unmapped_metric_only_warns(caplog):
    profile = load_profile(_profile(metric_key="elbow_flare"))
    assert profile.metrics[0].metric_key == "elbow_flare"
    assert "unmapped metric" in caplog.text


def test_profile_from_database_record():
    record = {
        "scoring_profile_id": 7,
        "name": "Squat v2",
        "exercise": {"code": "side_squat"},
        "scoring_profile_metric": [
            {
                "weight": "0.7",
                "max_score": 70,
                "rule": {"kind": "range", "ideal": [80, 110], "hard": [70, 150], "agg": "p05", "phases": ["bottom"]},
                "metric": {"metric_id": 1, "key": "knee_angle", "title": "Knee depth"},
            },
            {
                "weight": 0.3,
                "rule": {"kind": "max", "ideal": [0, 25], "hard": [0, 45], "agg": "p95"},
                "metric": {"metric_id": 2, "key": "torso_angle", "title": "Torso"},
            },
        ],
    }
    profile = profile_from_record(record)
    assert profile.scoring_profile_id == 7
    assert profile.metric_keys == ["knee_angle", "torso_angle"]
    first, second = profile.metrics
    assert first.weight == pytest.approx(0.7)
    assert first.aggregation == "p05" and first.phases == ("bottom",)
    assert first.metric_id == 1 and first.label == "Knee depth"
    assert second.max_score == 100.0
    assert second.component_key == "torso_angle"


def test_record_without_rule_kind_is_an_error():
    record = {
        "exercise_code": "push_up",
        "scoring_profile_metric": [{"weight": 1, "rule": {}, "metric": {"key": "elbow_angle"}}],
    }
    with pytest.raises(ProfileError):
        profile_from_record(record)


def test_builtin_profiles():
    squat = get_builtin_profile("side_squat")
    assert [m.component_key for m in squat.metrics] == ["depth", "hip_hinge", "torso_lean", "knee_forward", "tempo"]
    assert get_builtin_profile("squat").exercise_code == "side_squat"
    assert get_builtin_profile("pushup").exercise_code == "push_up"
    assert squat.pattern().code == "squat"
    with pytest.raises(ProfileError):
        get_builtin_profile("lunge")
    with pytest.raises(ProfileError):
        get_builtin_profile("jumping_jack")
