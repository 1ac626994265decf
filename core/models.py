# core/models.py – Value types shared by the planning and measurement stages

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = [
    "DepthStrategy",
    "Subframe",
    "Rectangle",
    "ROIPair",
    "RegionStats",
    "SNRMetrics",
    "DepthJob",
    "JobFailure",
    "AnalysisConfig",
]


class DepthStrategy(str, Enum):
    PRESET_OSC = "preset_osc"
    DOUBLING = "doubling"
    FIBONACCI = "fibonacci"
    LOGARITHMIC = "logarithmic"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Subframe:
    """One calibrated exposure, in acquisition order."""

    path: Optional[Path]
    exposure_s: float
    filter_name: str = ""
    date_obs: str = ""


@dataclass(frozen=True)
class Rectangle:
    """Pixel rectangle, ``x1``/``y1`` exclusive."""

    x0: int
    y0: int
    x1: int
    y1: int

    def __post_init__(self) -> None:
        if self.x1 <= self.x0 or self.y1 <= self.y0:
            raise ValueError(
                f"Degenerate rectangle ({self.x0},{self.y0})-({self.x1},{self.y1})"
            )

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    def to_dict(self) -> Dict[str, int]:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rectangle":
        return cls(int(data["x0"]), int(data["y0"]), int(data["x1"]), int(data["y1"]))


@dataclass(frozen=True)
class ROIPair:
    background: Rectangle
    foreground: Rectangle

    def __post_init__(self) -> None:
        if self.background == self.foreground:
            raise ValueError("Background and foreground ROIs must differ")

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "background": self.background.to_dict(),
            "foreground": self.foreground.to_dict(),
        }


@dataclass(frozen=True)
class RegionStats:
    median: float
    sigma: float


@dataclass(frozen=True)
class SNRMetrics:
    bg_median: float
    bg_sigma: float
    fg_median: float
    fg_sigma: float
    snr: float


# JSON key for each DepthJob field
_JOB_KEYS = {
    "label": "label",
    "depth": "depth",
    "total_exposure_s": "totalExposureSeconds",
    "integration_time_s": "integrationTimeSeconds",
    "star_removal_time_s": "starRemovalTimeSeconds",
    "stretch_time_s": "stretchTimeSeconds",
    "bg_median": "bgMedian",
    "bg_sigma": "bgSigma",
    "fg_median": "fgMedian",
    "fg_sigma": "fgSigma",
    "snr": "snr",
}


@dataclass(frozen=True)
class DepthJob:
    """One integration depth of a sweep.

    Jobs are never mutated: the planner creates them with ``label``/``depth``
    only, and every later stage derives a new instance with
    :func:`dataclasses.replace`.
    """

    label: str
    depth: int
    total_exposure_s: float = 0.0
    integration_time_s: float = 0.0
    star_removal_time_s: float = 0.0
    stretch_time_s: float = 0.0
    bg_median: float = 0.0
    bg_sigma: float = 0.0
    fg_median: float = 0.0
    fg_sigma: float = 0.0
    snr: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in _JOB_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DepthJob":
        kwargs: Dict[str, Any] = {}
        for attr, key in _JOB_KEYS.items():
            if key in data:
                kwargs[attr] = data[key]
        kwargs["label"] = str(kwargs["label"])
        kwargs["depth"] = int(kwargs["depth"])
        for attr in _JOB_KEYS:
            if attr not in ("label", "depth") and attr in kwargs:
                kwargs[attr] = float(kwargs[attr])
        return cls(**kwargs)


@dataclass(frozen=True)
class JobFailure:
    """A depth that could not be measured; recorded as a gap in the output."""

    label: str
    depth: int
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "depth": self.depth,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class AnalysisConfig:
    strategy: DepthStrategy | str
    max_subs: int
    custom_depths: Optional[str] = None
    include_full_depth: bool = True
    diminishing_threshold_pct: float = 10.0
