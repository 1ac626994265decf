# core/integrator.py – Default integration engine (average combine with rejection)

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Sequence

import numpy as np

from core.errors import ImageNotFoundError
from core.loader import load_frame
from core.models import Subframe

__all__ = [
    "REJECTION_ALGORITHMS",
    "select_rejection",
    "percentile_clip",
    "winsorized_sigma_clip",
    "integrate_stack",
    "integrate_subframes",
    "make_integrator",
]

REJECTION_ALGORITHMS = ("None", "PercentileClip", "WinsorizedSigmaClip")

# ───────────────────────────── rejection


def select_rejection(algorithm: str, depth: int) -> str:
    """Resolve ``Auto`` to a concrete rejection algorithm for ``depth`` frames."""
    if algorithm == "Auto":
        if depth < 15:
            logging.debug("Auto rejection: PercentileClip (depth < 15)")
            return "PercentileClip"
        logging.debug("Auto rejection: WinsorizedSigmaClip (depth >= 15)")
        return "WinsorizedSigmaClip"
    if algorithm in REJECTION_ALGORITHMS:
        return algorithm
    logging.warning(
        "Unknown rejection algorithm '%s', using WinsorizedSigmaClip", algorithm
    )
    return "WinsorizedSigmaClip"


def percentile_clip(stack: np.ndarray, low: float, high: float) -> np.ndarray:
    """Reject pixels deviating from the stack median by more than a fraction of it."""
    med = np.median(stack, axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        lo = (med - stack) / med
        hi = (stack - med) / med
    reject = (lo > low) | (hi > high)
    return np.where(reject & (med != 0), np.nan, stack)


def winsorized_sigma_clip(
    stack: np.ndarray, sigma_low: float, sigma_high: float, *, max_iter: int = 10
) -> np.ndarray:
    """Iterative sigma clipping with a winsorized (1.5 sigma) noise estimate."""
    data = stack.astype(np.float32, copy=True)
    for _ in range(max_iter):
        med = np.nanmedian(data, axis=0)
        sigma = np.nanstd(data, axis=0)
        wins = np.clip(data, med - 1.5 * sigma, med + 1.5 * sigma)
        sigma_w = 1.134 * np.nanstd(wins, axis=0)
        reject = (data < med - sigma_low * sigma_w) | (data > med + sigma_high * sigma_w)
        reject &= sigma_w > 0
        if not np.any(reject):
            break
        data[reject] = np.nan
    return data


def integrate_stack(
    stack: np.ndarray, rejection: str = "None", params: Mapping[str, Any] | None = None
) -> np.ndarray:
    """Average combine ``stack`` (N,H,W[,C]) after rejection."""
    params = params or {}
    n = stack.shape[0]
    if n == 1 or rejection == "None":
        return np.mean(stack, axis=0, dtype=np.float64).astype(np.float32)
    if rejection == "PercentileClip":
        data = percentile_clip(
            stack,
            float(params.get("percentile_low", 0.27)),
            float(params.get("percentile_high", 0.13)),
        )
    else:
        data = winsorized_sigma_clip(
            stack,
            float(params.get("sigma_low", 4.0)),
            float(params.get("sigma_high", 3.0)),
        )
    out = np.nanmean(data, axis=0)
    # every sample rejected: fall back to the plain mean
    fallback = np.mean(stack, axis=0)
    return np.where(np.isfinite(out), out, fallback).astype(np.float32)


# ───────────────────────────── public api


def integrate_subframes(
    subframes: Sequence[Subframe], cfg: Mapping[str, Any] | None = None
) -> np.ndarray:
    """Load and integrate ``subframes`` using the ``integration`` config section."""
    if not subframes:
        raise ImageNotFoundError("No subframes to integrate")
    icfg: Dict[str, Any] = dict((cfg or {}).get("integration", {}))
    frames = [load_frame(s.path) for s in subframes]
    shape = frames[0].shape
    for sub, frame in zip(subframes, frames):
        if frame.shape != shape:
            raise ImageNotFoundError(
                "Subframe geometry differs from the first frame",
                path=str(sub.path),
                shape=frame.shape,
                expected=shape,
            )
    stack = np.stack(frames)
    rejection = select_rejection(str(icfg.get("rejection", "Auto")), len(frames))
    logging.info("Integrating %d frames (rejection=%s)", len(frames), rejection)
    return integrate_stack(stack, rejection, icfg)


def make_integrator(
    cfg: Mapping[str, Any] | None = None,
) -> Callable[[Sequence[Subframe]], np.ndarray]:
    """Return ``integrate(subframes) -> image`` bound to ``cfg``."""

    def integrate(subframes: Sequence[Subframe]) -> np.ndarray:
        return integrate_subframes(subframes, cfg)

    return integrate
