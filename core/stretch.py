# core/stretch.py – Automatic screen-transfer stretch applied before measurement

"""Automatic nonlinear stretch (STF style).

Every integration depth is stretched with parameters computed from its own
statistics so that the background median lands on the same target level.
All depths are therefore measured under identical contrast, which makes the
resulting SNR values comparable with each other. Because the transform is
nonlinear the SNR is a comparative index across depths, not a calibrated
photometric quantity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

__all__ = [
    "StretchParams",
    "mtf",
    "compute_auto_stretch",
    "apply_stretch",
    "auto_stretch",
]

SHADOWS_CLIP = -2.8
TARGET_BACKGROUND = 0.25


@dataclass(frozen=True)
class StretchParams:
    shadow_clip: float
    midtone_balance: float
    highlight_clip: float = 1.0
    output_shadow: float = 0.0
    output_highlight: float = 1.0


def mtf(m: float, x):
    """Midtones transfer function ``((m-1)x) / ((2m-1)x - m)``.

    Maps 0 to 0, 1 to 1 and ``m`` to 0.5. Accepts scalars or arrays.
    """
    x_arr = np.asarray(x, dtype=np.float64)
    denom = (2.0 * m - 1.0) * x_arr - m
    with np.errstate(divide="ignore", invalid="ignore"):
        y = np.where(denom != 0, (m - 1.0) * x_arr / denom, 0.5)
    y = np.where(x_arr <= 0.0, 0.0, y)
    y = np.where(x_arr >= 1.0, 1.0, y)
    if np.ndim(y) == 0:
        return float(y)
    return y


def _channels(image: np.ndarray) -> List[np.ndarray]:
    if image.ndim == 2:
        return [image]
    if image.ndim == 3:
        return [image[..., c] for c in range(image.shape[2])]
    raise ValueError(f"Unsupported image shape: {image.shape}")


def compute_auto_stretch(
    image: np.ndarray,
    *,
    shadows_clip: float = SHADOWS_CLIP,
    target_background: float = TARGET_BACKGROUND,
) -> List[StretchParams]:
    """Return per-channel stretch parameters for ``image`` in [0, 1]."""
    params: List[StretchParams] = []
    for plane in _channels(np.asarray(image)):
        vals = plane[np.isfinite(plane)]
        if vals.size == 0:
            params.append(StretchParams(shadow_clip=0.0, midtone_balance=0.5))
            continue
        median = float(np.median(vals))
        mad = float(np.median(np.abs(vals - median)))
        c0 = float(np.clip(median + shadows_clip * mad, 0.0, 1.0))
        xm = (median - c0) / (1.0 - c0) if c0 < 1.0 else 0.0
        if xm <= 0.0:
            # flat channel: nothing to balance
            m = 0.5
        else:
            m = float(mtf(target_background, xm))
        params.append(StretchParams(shadow_clip=c0, midtone_balance=m))
    return params


def apply_stretch(image: np.ndarray, params: List[StretchParams]) -> np.ndarray:
    """Apply the shadow/midtone/highlight transform to ``image`` in place."""
    planes = _channels(image)
    if len(planes) != len(params):
        raise ValueError(
            f"{len(params)} stretch channels for an image with {len(planes)}"
        )
    for plane, p in zip(planes, params):
        span = max(p.highlight_clip - p.shadow_clip, 1e-12)
        x = np.clip((plane - p.shadow_clip) / span, 0.0, 1.0)
        y = mtf(p.midtone_balance, x)
        plane[...] = p.output_shadow + y * (p.output_highlight - p.output_shadow)
    return image


def auto_stretch(image: np.ndarray) -> List[StretchParams]:
    params = compute_auto_stretch(image)
    apply_stretch(image, params)
    return params
