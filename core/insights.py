# core/insights.py – Result aggregation and diminishing-returns insights

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy import stats

from core.models import DepthJob
from utils.formatting import format_time

__all__ = [
    "ResultsAggregator",
    "Insights",
    "compute_insights",
    "compute_steps",
    "scaling_exponent",
]

ANOMALY_DROP_PCT = -1.0
FIXED_THRESHOLD_PCT = 5.0
GAIN_PER_HOUR_THRESHOLD = 2.0
GAIN_PER_HOUR_CONFIRM_STEPS = 2


@dataclass
class Insights:
    threshold_pct: float
    steps: List[Dict[str, Any]] = field(default_factory=list)
    diminishing_returns_label: Optional[str] = None
    diminishing_returns_5pct_label: Optional[str] = None
    anomalies: List[Dict[str, str]] = field(default_factory=list)
    gain_per_hour_stop: Optional[Dict[str, Any]] = None
    scaling_exponent: Optional[float] = None
    projection: Optional[Dict[str, Any]] = None
    recommended_range: Optional[Dict[str, Any]] = None
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thresholdPct": self.threshold_pct,
            "steps": self.steps,
            "diminishingReturns": self.diminishing_returns_label,
            "diminishingReturns5pct": self.diminishing_returns_5pct_label,
            "anomalies": self.anomalies,
            "gainPerHourStop": self.gain_per_hour_stop,
            "scalingExponent": self.scaling_exponent,
            "projection": self.projection,
            "recommendedRange": self.recommended_range,
            "summary": self.summary,
        }


class ResultsAggregator:
    """Collect measured jobs in ascending depth order."""

    def __init__(self, threshold_pct: float = 10.0) -> None:
        self.threshold_pct = float(threshold_pct)
        self._results: List[DepthJob] = []

    def add(self, job: DepthJob) -> None:
        if self._results and job.depth <= self._results[-1].depth:
            raise ValueError(
                f"Depth {job.depth} added after {self._results[-1].depth}"
            )
        self._results.append(job)

    @property
    def results(self) -> List[DepthJob]:
        return list(self._results)

    @property
    def can_graph(self) -> bool:
        return len(self._results) >= 2

    def insights(self) -> Optional[Insights]:
        return compute_insights(self._results, self.threshold_pct)

    def __len__(self) -> int:
        return len(self._results)


# ───────────────────────────── helpers


def compute_steps(results: Sequence[DepthJob]) -> List[Dict[str, Any]]:
    """Relative SNR change and time efficiency for each consecutive pair."""
    steps: List[Dict[str, Any]] = []
    for prev, curr in zip(results[:-1], results[1:]):
        if prev.snr == 0:
            logging.warning(
                "SNR of %s is zero, improvement to %s undefined", prev.label, curr.label
            )
            pct = None
        else:
            pct = (curr.snr - prev.snr) / prev.snr * 100.0
        delta_hours = (curr.total_exposure_s - prev.total_exposure_s) / 3600.0
        gain_per_hour = None
        t10 = None
        if pct is not None and delta_hours > 0:
            gain_per_hour = pct / delta_hours
            if pct > 0:
                t10 = delta_hours * (10.0 / pct)
        steps.append(
            {
                "fromLabel": prev.label,
                "toLabel": curr.label,
                "improvementPct": pct,
                "deltaHours": delta_hours,
                "gainPerHour": gain_per_hour,
                "t10Hours": t10,
            }
        )
    return steps


def _first_below(steps: Sequence[Dict[str, Any]], threshold: float) -> Optional[str]:
    for step in steps:
        pct = step["improvementPct"]
        if pct is not None and pct < threshold:
            return step["toLabel"]
    return None


def _gain_per_hour_stop(
    results: Sequence[DepthJob], steps: Sequence[Dict[str, Any]]
) -> Dict[str, Any]:
    below = 0
    stop_label = results[-1].label
    for i, step in enumerate(steps, start=1):
        gph = step["gainPerHour"]
        if gph is None:
            continue
        if gph < GAIN_PER_HOUR_THRESHOLD:
            below += 1
            if below >= GAIN_PER_HOUR_CONFIRM_STEPS:
                stop_label = results[max(0, i - GAIN_PER_HOUR_CONFIRM_STEPS)].label
                break
        else:
            below = 0
    return {
        "stopLabel": stop_label,
        "threshold": GAIN_PER_HOUR_THRESHOLD,
        "confirmSteps": GAIN_PER_HOUR_CONFIRM_STEPS,
    }


def scaling_exponent(results: Sequence[DepthJob]) -> Optional[float]:
    """Slope of log(SNR) against log(depth); ideal shot-noise scaling gives 0.5."""
    pts = [(r.depth, r.snr) for r in results if r.depth > 0 and r.snr > 0]
    if len(pts) < 3:
        return None
    x = np.log([p[0] for p in pts])
    y = np.log([p[1] for p in pts])
    if np.ptp(x) == 0:
        return None
    slope = float(stats.linregress(x, y).slope)
    return slope if math.isfinite(slope) else None


def _projection(
    results: Sequence[DepthJob], steps: Sequence[Dict[str, Any]], exponent: Optional[float]
) -> Optional[Dict[str, Any]]:
    if exponent is None:
        return None
    last_pct = steps[-1]["improvementPct"]
    if last_pct is None:
        return None
    last = results[-1]
    if last.snr <= 0:
        return None
    per_sub = last.total_exposure_s / last.depth if last.depth else 0.0
    category = "strong" if last_pct >= 10 else ("modest" if last_pct >= 2 else "weak")

    def project(factor: int) -> Dict[str, Any]:
        snr = last.snr * factor**exponent
        extra_time = last.total_exposure_s * (factor - 1)
        return {
            "depth": last.depth * factor,
            "snr": snr,
            "gainPct": (snr - last.snr) / last.snr * 100.0,
            "totalTime": last.total_exposure_s * factor,
            "additionalTime": extra_time,
            "additionalSubs": math.ceil(extra_time / per_sub) if per_sub > 0 else None,
        }

    return {
        "category": category,
        "lastImprovementPct": last_pct,
        "currentDepth": last.depth,
        "currentSNR": last.snr,
        "exposurePerSub": per_sub,
        "projection2x": project(2),
        "projection3x": project(3),
    }


def _recommended_range(results: Sequence[DepthJob]) -> Optional[Dict[str, Any]]:
    max_snr = max(r.snr for r in results)
    if max_snr <= 0:
        return None
    r90 = next(r for r in results if r.snr >= 0.90 * max_snr)
    r95 = next(r for r in results if r.snr >= 0.95 * max_snr)
    return {
        "min": r90.label,
        "max": r95.label,
        "minExposure": r90.total_exposure_s,
        "maxExposure": r95.total_exposure_s,
    }


def _summary(results: Sequence[DepthJob], ins: Insights) -> str:
    lines = ["SNR ANALYSIS INSIGHTS", "=====================", ""]

    exp = ins.scaling_exponent
    if exp is not None:
        if 0.45 <= exp <= 0.55:
            note = " (close to ideal sqrt(N) behavior)"
        elif exp < 0.3:
            note = " (much slower than sqrt(N))"
        elif exp < 0.45:
            note = " (slower than sqrt(N))"
        elif exp > 0.6:
            note = " (faster than sqrt(N) - unusual)"
        else:
            note = ""
        lines.append(f"Scaling exponent: {exp:.2f}{note}")
        if exp < 0.45 or exp > 0.6:
            lines.append(
                "  Warning: exponent deviates from sqrt(t); check ROI placement or correlated noise"
            )
        lines.append("")

    lines.append("Improvement per step:")
    for step in ins.steps:
        pct = step["improvementPct"]
        pct_str = "n/a" if pct is None else f"{pct:+.1f}%"
        gph = step["gainPerHour"]
        gph_str = "--" if gph is None else f"{gph:.1f}%/hr"
        lines.append(f"  {step['fromLabel']} -> {step['toLabel']}: {pct_str} ({gph_str})")
    lines.append("")

    if ins.diminishing_returns_label:
        lines.append(
            f"Diminishing returns (<{ins.threshold_pct:g}% gain): {ins.diminishing_returns_label}"
        )
    else:
        lines.append(f"Diminishing returns (<{ins.threshold_pct:g}% gain): not reached")

    stop = ins.gain_per_hour_stop
    if stop:
        idx = next(i for i, r in enumerate(results) if r.label == stop["stopLabel"])
        deepest = idx == len(results) - 1
        lines.append(
            f"Recommended stop depth: {stop['stopLabel']} "
            f"({format_time(results[idx].total_exposure_s)})"
            + (" (deepest analyzed)" if deepest else "")
        )
    lines.append("")

    proj = ins.projection
    if proj and proj["category"] in ("strong", "modest"):
        title = (
            "ADDITIONAL INTEGRATION RECOMMENDED:"
            if proj["category"] == "strong"
            else "MODEST GAINS POSSIBLE:"
        )
        lines.append(title)
        lines.append(f"  Last step gain: {proj['lastImprovementPct']:.1f}%")
        for key, name in (("projection2x", "Doubling"), ("projection3x", "Tripling")):
            p = proj[key]
            lines.append(
                f"  {name} integration ({format_time(p['totalTime'])} total): "
                f"projected SNR {p['snr']:.2f} (+{p['gainPct']:.1f}%)"
            )
    else:
        lines.append("INTEGRATION STATUS:")
        lines.append(
            "  Diminishing returns reached - additional integration may not be cost-effective"
        )

    if ins.anomalies:
        lines.append("")
        lines.append("ANOMALIES DETECTED:")
        for a in ins.anomalies:
            lines.append(f"  - {a['label']}: {a['issue']}")

    return "\n".join(lines)


# ───────────────────────────── public api


def compute_insights(
    results: Sequence[DepthJob], threshold_pct: float = 10.0
) -> Optional[Insights]:
    """Derive diminishing-returns insight; ``None`` with fewer than two results."""
    if len(results) < 2:
        logging.info("Insufficient data for insights (need at least 2 depths)")
        return None

    steps = compute_steps(results)
    ins = Insights(threshold_pct=float(threshold_pct), steps=steps)
    ins.diminishing_returns_label = _first_below(steps, float(threshold_pct))
    ins.diminishing_returns_5pct_label = _first_below(steps, FIXED_THRESHOLD_PCT)
    for step in steps:
        pct = step["improvementPct"]
        if pct is not None and pct < ANOMALY_DROP_PCT:
            ins.anomalies.append(
                {
                    "label": step["toLabel"],
                    "issue": f"SNR decreased by {abs(pct):.1f}% - possible bad subs",
                }
            )
    ins.gain_per_hour_stop = _gain_per_hour_stop(results, steps)
    ins.scaling_exponent = scaling_exponent(results)
    ins.projection = _projection(results, steps, ins.scaling_exponent)
    ins.recommended_range = _recommended_range(results)
    ins.summary = _summary(results, ins)
    return ins
