import math

import pytest

from core.insights import ResultsAggregator, compute_insights, compute_steps, scaling_exponent
from core.models import DepthJob


def _job(depth, snr, exp=300.0):
    return DepthJob(f"N{depth}", depth, total_exposure_s=depth * exp, snr=snr)


def _sqrt_series(depths, k=2.0):
    return [_job(d, k * math.sqrt(d)) for d in depths]


def test_fewer_than_two_results_gives_no_insights():
    assert compute_insights([]) is None
    assert compute_insights([_job(8, 5.0)]) is None


def test_diminishing_returns_first_step_below_threshold():
    results = [_job(10, 10.0), _job(20, 12.0), _job(40, 12.8), _job(80, 13.0)]
    ins = compute_insights(results, 10.0)
    assert [s["improvementPct"] for s in ins.steps] == pytest.approx([20.0, 6.6666667, 1.5625])
    assert ins.diminishing_returns_label == "N40"
    assert ins.diminishing_returns_5pct_label == "N80"
    assert ins.anomalies == []


def test_no_diminishing_returns_when_all_steps_above_threshold():
    ins = compute_insights([_job(10, 10.0), _job(20, 15.0)], 10.0)
    assert ins.diminishing_returns_label is None
    assert "not reached" in ins.summary


def test_anomaly_for_snr_drop():
    ins = compute_insights([_job(10, 10.0), _job(20, 9.0), _job(40, 12.0)])
    assert [a["label"] for a in ins.anomalies] == ["N20"]
    assert "ANOMALIES DETECTED" in ins.summary


def test_zero_snr_step_is_undefined():
    steps = compute_steps([_job(10, 0.0), _job(20, 3.0)])
    assert steps[0]["improvementPct"] is None
    assert steps[0]["gainPerHour"] is None


def test_scaling_exponent_of_ideal_sqrt_series():
    results = _sqrt_series([8, 16, 32, 64])
    assert scaling_exponent(results) == pytest.approx(0.5)
    ins = compute_insights(results)
    assert "close to ideal sqrt(N)" in ins.summary
    assert ins.projection["projection2x"]["depth"] == 128
    assert ins.projection["projection2x"]["gainPct"] == pytest.approx((math.sqrt(2) - 1) * 100)
    assert ins.projection["category"] == "strong"


def test_scaling_exponent_needs_three_points():
    assert scaling_exponent(_sqrt_series([8, 16])) is None


def test_gain_per_hour_stop_after_two_slow_steps():
    # 300 s subs: each step adds a lot of time for little gain
    results = [_job(10, 10.0), _job(100, 20.0), _job(200, 20.2), _job(400, 20.3), _job(800, 20.35)]
    stop = compute_insights(results).gain_per_hour_stop
    assert stop["stopLabel"] == "N100"


def test_gain_per_hour_stop_defaults_to_deepest():
    results = [_job(1, 10.0, exp=60), _job(2, 14.0, exp=60), _job(3, 17.0, exp=60)]
    assert compute_insights(results).gain_per_hour_stop["stopLabel"] == "N3"


def test_recommended_range():
    results = [_job(10, 50.0), _job(20, 91.0), _job(40, 96.0), _job(80, 100.0)]
    rng = compute_insights(results).recommended_range
    assert rng["min"] == "N20"
    assert rng["max"] == "N40"


def test_aggregator_keeps_ascending_order():
    agg = ResultsAggregator()
    agg.add(_job(8, 5.0))
    assert not agg.can_graph
    agg.add(_job(16, 7.0))
    assert agg.can_graph
    assert len(agg) == 2
    with pytest.raises(ValueError):
        agg.add(_job(12, 6.0))
    assert agg.insights().steps[0]["toLabel"] == "N16"


def test_insights_to_dict_keys():
    d = compute_insights(_sqrt_series([8, 16, 32])).to_dict()
    assert {"steps", "diminishingReturns", "scalingExponent", "summary"} <= set(d)
