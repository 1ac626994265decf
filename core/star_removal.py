# core/star_removal.py – Star removal collaborators

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np
from scipy import ndimage

__all__ = ["StarRemover", "morphological_star_removal", "get_star_remover"]

StarRemover = Callable[[np.ndarray], np.ndarray]


def morphological_star_removal(image: np.ndarray, size: int = 7) -> np.ndarray:
    """Suppress point sources with a grey opening of ``size`` pixels."""
    size = max(int(size), 3)
    footprint = (size, size) if image.ndim == 2 else (size, size, 1)
    return ndimage.grey_opening(image, size=footprint).astype(image.dtype, copy=False)


def get_star_remover(
    method: Optional[str], *, enabled: bool = True, size: int = 7
) -> Optional[StarRemover]:
    """Return a star remover for ``method`` or ``None`` when disabled."""
    if not enabled or method is None:
        return None
    name = str(method).lower()
    if name in ("none", ""):
        return None
    if name == "morphology":
        return lambda img: morphological_star_removal(img, size)
    logging.warning("Star removal method '%s' not available, skipping", method)
    return None
