# utils/roi.py – ImageJ ROI set reading and background/foreground providers

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import roifile  # type: ignore

from core.errors import ROIMissingError
from core.loader import load_frame
from core.models import Rectangle, ROIPair
from utils.formatting import format_rect

__all__ = [
    "BACKGROUND",
    "FOREGROUND",
    "load_named_rois",
    "roi_file_for_group",
    "FileROIProvider",
    "InteractiveROIProvider",
    "StaticROIProvider",
    "AutoROIProvider",
    "detect_auto_rois",
]

BACKGROUND = "BG"
FOREGROUND = "FG"

ConfirmFn = Callable[[ROIPair, str], bool]
InstructFn = Callable[[Optional[Path], Path, str], bool]


def load_named_rois(path: Path | str) -> Dict[str, Rectangle]:
    """ImageJ ROI zip (or .roi) → {NAME: Rectangle}; unnamed ROIs are ignored."""
    path = Path(path)
    if not path.exists():
        return {}
    rz = roifile.roiread(str(path))
    if not isinstance(rz, list):
        rz = [rz]
    rects: Dict[str, Rectangle] = {}
    for r in rz:
        name = str(getattr(r, "name", "") or "").strip().upper()
        if not name:
            continue
        try:
            rects[name] = Rectangle(int(r.left), int(r.top), int(r.right), int(r.bottom))
        except ValueError as exc:
            logging.warning("Ignoring ROI '%s' in %s: %s", name, path.name, exc)
    return rects


def roi_file_for_group(roi_file: Path, group: str) -> Path:
    """Prefer ``rois_<group>.zip`` next to ``roi_file`` when it exists."""
    if group:
        candidate = roi_file.with_name(f"{roi_file.stem}_{group}{roi_file.suffix}")
        if candidate.exists():
            return candidate
    return roi_file


class FileROIProvider:
    """Look up the "BG" and "FG" rectangles in an ImageJ ROI set."""

    needs_reference = False

    def __init__(self, roi_file: Path | str) -> None:
        self.roi_file = Path(roi_file)

    def lookup(self, group: str = "") -> Optional[ROIPair]:
        path = roi_file_for_group(self.roi_file, group)
        rois = load_named_rois(path)
        bg, fg = rois.get(BACKGROUND), rois.get(FOREGROUND)
        if bg is None or fg is None:
            return None
        if bg == fg:
            logging.warning("BG and FG ROIs in %s are identical, ignoring them", path.name)
            return None
        pair = ROIPair(background=bg, foreground=fg)
        logging.info("BG ROI: %s", format_rect(bg))
        logging.info("FG ROI: %s", format_rect(fg))
        return pair

    def provide(self, reference: Optional[np.ndarray | Path] = None, group: str = "") -> ROIPair:
        pair = self.lookup(group)
        if pair is None:
            raise ROIMissingError(
                "Background/foreground ROIs not found; create rectangles named "
                "BG and FG and rerun",
                roi_file=str(roi_file_for_group(self.roi_file, group)),
                group=group,
            )
        return pair


class InteractiveROIProvider(FileROIProvider):
    """Confirm existing ROIs with the operator or ask them to draw new ones.

    ``confirm(pair, group)`` returns True to accept the found ROIs.
    ``instruct(reference, roi_file, group)`` blocks until the operator
    answers; either answer ends the run since the ROIs must be drawn first.
    """

    needs_reference = True

    def __init__(
        self, roi_file: Path | str, confirm: ConfirmFn, instruct: InstructFn
    ) -> None:
        super().__init__(roi_file)
        self._confirm = confirm
        self._instruct = instruct

    def provide(self, reference: Optional[np.ndarray | Path] = None, group: str = "") -> ROIPair:
        pair = self.lookup(group)
        if pair is not None and self._confirm(pair, group):
            return pair
        roi_file = roi_file_for_group(self.roi_file, group)
        ref_path = reference if isinstance(reference, Path) else None
        if self._instruct(ref_path, roi_file, group):
            raise ROIMissingError(
                "Create rectangles named BG and FG on the reference image, then rerun",
                roi_file=str(roi_file),
                group=group,
            )
        raise ROIMissingError("ROI selection cancelled", roi_file=str(roi_file), group=group)


class StaticROIProvider:
    """Always return the same ROIs (headless runs and tests)."""

    needs_reference = False

    def __init__(self, pair: ROIPair) -> None:
        self.pair = pair

    def lookup(self, group: str = "") -> Optional[ROIPair]:
        return self.pair

    def provide(self, reference: Optional[np.ndarray | Path] = None, group: str = "") -> ROIPair:
        return self.pair


# ───────────────────────────── automatic detection

AUTO_TILE_SIZE = 96
MIN_TILES = 10
# (min, max) multiples of the typical tile sigma, tried in order
FG_CRITERIA = ((2.5, 4.0), (2.0, 5.0), (1.5, 6.0), (1.0, 8.0))


def _tile_stats(image: np.ndarray, tile_size: int) -> List[Dict[str, Any]]:
    h, w = image.shape[:2]
    tiles = []
    for y in range(0, h - tile_size + 1, tile_size):
        for x in range(0, w - tile_size + 1, tile_size):
            vals = image[y : y + tile_size, x : x + tile_size]
            vals = vals[np.isfinite(vals)]
            if vals.size < 2:
                continue
            tiles.append(
                {
                    "rect": Rectangle(x, y, x + tile_size, y + tile_size),
                    "median": float(np.median(vals)),
                    "sigma": float(np.std(vals, ddof=1)),
                    "max": float(np.max(vals)),
                }
            )
    return tiles


def detect_auto_rois(image: np.ndarray, tile_size: int = AUTO_TILE_SIZE) -> Optional[ROIPair]:
    """Pick background and faint-signal tiles on a linear [0, 1] master.

    The background level is the 25th percentile of the tile medians and the
    typical noise the median tile sigma. BG is the quiet, star-free tile
    closest to that level. FG is the tile with most signal above it, skipping
    the brightest 2 % of tiles and near-saturated ones, with the noise limits
    relaxed step by step until a candidate appears. Returns ``None`` when no
    usable pair is found.
    """
    image = np.asarray(image, dtype=np.float32)
    tile_size = int(tile_size)
    h, w = image.shape[:2]
    if w < tile_size * 3 or h < tile_size * 3:
        logging.warning("Auto ROI: image %dx%d too small for tile size %d", w, h, tile_size)
        return None

    tiles = _tile_stats(image, tile_size)
    if len(tiles) < MIN_TILES:
        logging.warning("Auto ROI: too few tiles (%d), need %d", len(tiles), MIN_TILES)
        return None

    medians = sorted(t["median"] for t in tiles)
    sigmas = sorted(t["sigma"] for t in tiles)
    bg_level = medians[int(len(medians) * 0.25)]
    bg_sigma = sigmas[int(len(sigmas) * 0.5)]
    exclude_above = medians[int(len(medians) * 0.98)]
    logging.info("Auto ROI: background %.6f, sigma %.6f", bg_level, bg_sigma)

    bg_candidates = [t for t in tiles if t["sigma"] <= bg_sigma * 2.5 and t["max"] <= 0.5]
    if not bg_candidates:
        logging.warning("Auto ROI: no suitable background tile")
        return None
    bg_tile = min(bg_candidates, key=lambda t: abs(t["median"] - bg_level))

    fg_candidates: List[Tuple[float, Dict[str, Any]]] = []
    for min_sigma, max_sigma in FG_CRITERIA:
        threshold = bg_level + min_sigma * bg_sigma
        for t in tiles:
            if t["median"] < threshold or t["median"] > exclude_above:
                continue
            if t["max"] > 0.98 or t["sigma"] > bg_sigma * max_sigma:
                continue
            score = (t["median"] - bg_level) / (bg_sigma or 1e-6)
            if t["max"] > 0.7:
                score *= 0.8
            fg_candidates.append((score, t))
        if fg_candidates:
            logging.info(
                "Auto ROI: %d FG candidates at %.1f sigma", len(fg_candidates), min_sigma
            )
            break
    if not fg_candidates:
        logging.warning("Auto ROI: no foreground tile above the background")
        return None

    ranked = [t for _, t in sorted(fg_candidates, key=lambda c: -c[0])]
    ranked = [t for t in ranked if t["rect"] != bg_tile["rect"]]
    if not ranked:
        logging.warning("Auto ROI: BG and FG fall on the same tile")
        return None
    pair = ROIPair(background=bg_tile["rect"], foreground=ranked[0]["rect"])
    logging.info("Auto BG ROI: %s", format_rect(pair.background))
    logging.info("Auto FG ROI: %s", format_rect(pair.foreground))
    return pair


class AutoROIProvider:
    """Detect ROIs on the reference master, deferring to ``fallback`` on failure."""

    needs_reference = True

    def __init__(self, fallback, tile_size: int = AUTO_TILE_SIZE) -> None:
        self.fallback = fallback
        self.tile_size = int(tile_size)

    def lookup(self, group: str = "") -> Optional[ROIPair]:
        return None

    def provide(self, reference: Optional[np.ndarray | Path] = None, group: str = "") -> ROIPair:
        if reference is not None:
            image = load_frame(reference) if isinstance(reference, Path) else reference
            pair = detect_auto_rois(image, self.tile_size)
            if pair is not None:
                return pair
        logging.warning("Auto ROI detection failed, falling back to %s", type(self.fallback).__name__)
        return self.fallback.provide(reference, group)
