# core/depth_planner.py – Integration depth planning and exposure accumulation

from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from typing import List, Optional, Sequence

from core.errors import CustomDepthError, DepthStrategyError
from core.models import AnalysisConfig, DepthJob, DepthStrategy, Subframe

__all__ = [
    "PRESET_OSC_DEPTHS",
    "generate_preset_osc",
    "generate_doubling",
    "generate_fibonacci",
    "generate_logarithmic",
    "parse_custom_depths",
    "plan_integration_depths",
    "plan_from_config",
    "accumulate_exposures",
]

PRESET_OSC_DEPTHS = (12, 24, 48, 96, 192, 384, 720)
LOG_STEPS = 7

_LEADING_INT = re.compile(r"[+-]?\d+")

# ───────────────────────────── strategies


def generate_preset_osc(max_subs: int) -> List[int]:
    """Preset OSC depths 12, 24, 48, ... up to ``max_subs``."""
    result = [d for d in PRESET_OSC_DEPTHS if d <= max_subs]
    if not result and max_subs >= 8:
        result.append(min(max_subs, 12))
    return result


def generate_doubling(max_subs: int) -> List[int]:
    """Doubling sequence 8, 16, 32, ..."""
    result: List[int] = []
    depth = 8
    while depth <= max_subs:
        result.append(depth)
        depth *= 2
    if not result and max_subs >= 4:
        result.append(min(max_subs, 8))
    return result


def generate_fibonacci(max_subs: int) -> List[int]:
    """Fibonacci recurrence seeded with (8, 13)."""
    result: List[int] = []
    a, b = 8, 13
    if max_subs >= 8:
        result.append(8)
    while b <= max_subs:
        result.append(b)
        a, b = b, a + b
    return result


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def generate_logarithmic(max_subs: int, steps: int = LOG_STEPS) -> List[int]:
    """``steps`` depths spaced evenly in log space between min(8, N) and N."""
    min_depth = min(8, max_subs)
    if min_depth < 1:
        return []
    if max_subs < min_depth:
        return [max_subs]

    log_min = math.log(min_depth)
    log_max = math.log(max_subs)
    step = (log_max - log_min) / (steps - 1)

    result: List[int] = []
    for i in range(steps):
        depth = _round_half_up(math.exp(log_min + i * step))
        if (not result or depth > result[-1]) and depth <= max_subs:
            result.append(depth)
    return result


def parse_custom_depths(custom_list: Optional[str], max_subs: int) -> List[int]:
    """Parse a comma separated depth list.

    Invalid or non-positive entries are dropped with a warning, values above
    ``max_subs`` are clamped, duplicates removed and the result sorted.
    """
    if custom_list is None or not str(custom_list).strip():
        raise CustomDepthError("Custom depth list is empty", custom_depths=custom_list)

    depths: List[int] = []
    for part in str(custom_list).split(","):
        token = part.strip()
        match = _LEADING_INT.match(token)
        value = int(match.group()) if match else None
        if value is None or value <= 0:
            logging.warning("Invalid custom depth value: %r", part)
            continue
        if value > max_subs:
            logging.warning(
                "Custom depth %d exceeds available subs (%d), clamping",
                value,
                max_subs,
            )
            value = max_subs
        if value not in depths:
            depths.append(value)

    if not depths:
        raise CustomDepthError(
            "No valid custom depths found", custom_depths=custom_list
        )
    return sorted(depths)


_GENERATORS = {
    DepthStrategy.PRESET_OSC: generate_preset_osc,
    DepthStrategy.DOUBLING: generate_doubling,
    DepthStrategy.FIBONACCI: generate_fibonacci,
    DepthStrategy.LOGARITHMIC: generate_logarithmic,
}

# ───────────────────────────── public api


def plan_integration_depths(
    strategy: str,
    max_subs: int,
    custom_list: Optional[str] = None,
    include_full_depth: bool = True,
) -> List[DepthJob]:
    """Return the ordered jobs for one depth sweep.

    Parameters
    ----------
    strategy : str
        One of ``preset_osc``, ``doubling``, ``fibonacci``, ``logarithmic``
        or ``custom``.
    max_subs : int
        Number of subframes available.
    custom_list : str, optional
        Comma separated depths for the ``custom`` strategy.
    include_full_depth : bool
        Ensure a final job integrating all ``max_subs`` frames.
    """
    try:
        kind = DepthStrategy(strategy)
    except ValueError:
        raise DepthStrategyError(
            f"Unknown depth strategy: {strategy}", strategy=strategy
        ) from None

    max_subs = int(max_subs)
    if kind is DepthStrategy.CUSTOM:
        depths = parse_custom_depths(custom_list, max_subs)
    else:
        depths = _GENERATORS[kind](max_subs)

    if not depths and max_subs >= 1:
        logging.warning(
            "Strategy %s yields no depth for %d subs, using all subs",
            kind.value,
            max_subs,
        )
        depths = [max_subs]

    if include_full_depth and max_subs > 0 and max_subs not in depths:
        depths.append(max_subs)
    depths = sorted(set(depths))

    return [DepthJob(label=f"N{d}", depth=d) for d in depths]


def plan_from_config(config: AnalysisConfig) -> List[DepthJob]:
    return plan_integration_depths(
        config.strategy,
        config.max_subs,
        config.custom_depths,
        config.include_full_depth,
    )


def accumulate_exposures(
    jobs: Sequence[DepthJob], subframes: Sequence[Subframe]
) -> List[DepthJob]:
    """Return copies of ``jobs`` with the cumulative exposure of each depth.

    Depths beyond the number of subframes only count the frames available.
    """
    out: List[DepthJob] = []
    for job in jobs:
        total = sum(float(s.exposure_s) for s in subframes[: job.depth])
        out.append(replace(job, total_exposure_s=total))
    return out
