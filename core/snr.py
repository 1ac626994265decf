# core/snr.py – ROI statistics and SNR measurement

from __future__ import annotations

import logging
import math

import numpy as np

from core.errors import SNRError
from core.models import Rectangle, RegionStats, SNRMetrics

__all__ = ["measure_region", "compute_snr", "measure_snr"]


def measure_region(image: np.ndarray, rect: Rectangle) -> RegionStats:
    """Median and standard deviation of ``image`` inside ``rect``.

    The rectangle is clipped to the image bounds first. Colour images pool
    the samples of all channels.
    """
    image = np.asarray(image)
    h, w = image.shape[:2]
    x0, y0 = max(rect.x0, 0), max(rect.y0, 0)
    x1, y1 = min(rect.x1, w), min(rect.y1, h)
    if x1 <= x0 or y1 <= y0:
        raise SNRError(
            "ROI does not overlap the image",
            rect=rect.to_dict(),
            shape=tuple(image.shape),
        )
    if (x0, y0, x1, y1) != (rect.x0, rect.y0, rect.x1, rect.y1):
        logging.debug("ROI %s clipped to image bounds", rect.to_dict())
    crop = image[y0:y1, x0:x1]
    vals = crop[np.isfinite(crop)]
    if vals.size == 0:
        raise SNRError("ROI holds no finite samples", rect=rect.to_dict())
    median = float(np.median(vals))
    sigma = float(np.std(vals, ddof=1)) if vals.size > 1 else 0.0
    return RegionStats(median=median, sigma=sigma)


def compute_snr(background: RegionStats, foreground: RegionStats) -> float:
    """``(fg median - bg median) / fg sigma``; negative values are kept."""
    if foreground.sigma == 0:
        raise SNRError(
            "Foreground noise is zero, SNR undefined",
            fg_median=foreground.median,
            bg_median=background.median,
        )
    snr = (foreground.median - background.median) / foreground.sigma
    if not math.isfinite(snr):
        raise SNRError("Non-finite SNR", snr=snr, fg_sigma=foreground.sigma)
    return snr


def measure_snr(
    image: np.ndarray, background: Rectangle, foreground: Rectangle
) -> SNRMetrics:
    bg = measure_region(image, background)
    fg = measure_region(image, foreground)
    snr = compute_snr(bg, fg)
    return SNRMetrics(
        bg_median=bg.median,
        bg_sigma=bg.sigma,
        fg_median=fg.median,
        fg_sigma=fg.sigma,
        snr=snr,
    )
