# core/loader.py – Subframe discovery and frame loading (TIFF / FITS)

from __future__ import annotations

import fnmatch
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

import numpy as np
import tifffile
from astropy.io import fits

from core.errors import ImageNotFoundError
from core.models import Subframe

__all__ = [
    "parse_pattern",
    "scan_subframes",
    "group_by_filter",
    "load_frame",
    "save_frame",
]

TIFF_EXTS = {".tif", ".tiff"}
FITS_EXTS = {".fits", ".fit", ".fts"}

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def parse_pattern(pattern: str) -> List[str]:
    """Split ``"*_c_r.fits;*.tif"`` into glob patterns."""
    return [p.strip() for p in str(pattern).split(";") if p.strip()]


def _collect_frames(folder: Path, patterns: List[str]) -> List[Path]:
    """Return sorted files below *folder* matching any of *patterns*."""
    pats = [p.lower() for p in patterns]
    return sorted(
        p
        for p in folder.rglob("*")
        if p.is_file() and any(fnmatch.fnmatch(p.name.lower(), pat) for pat in pats)
    )


def _mtime_iso(path: Path) -> str:
    ts = path.stat().st_mtime
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def _fits_metadata(path: Path) -> Dict[str, object]:
    header = fits.getheader(path)
    exposure = header.get("EXPTIME", header.get("EXPOSURE", 0.0))
    return {
        "exposure": float(exposure or 0.0),
        "filter": str(header.get("FILTER", "") or "").strip(),
        "date_obs": str(header.get("DATE-OBS", "") or "").strip(),
    }


def _to_float01(a: np.ndarray) -> np.ndarray:
    """Return float32 copy scaled to [0, 1]; float data above 1 is read as 16-bit ADU."""
    a = np.asarray(a)
    if a.dtype.kind in "ui":
        mx = float(np.iinfo(a.dtype).max)
        return a.astype(np.float32) / (mx if mx > 0 else 1.0)
    out = a.astype(np.float32)
    if out.size and float(np.nanmax(out)) > 1.0:
        out /= 65535.0
    return out


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def scan_subframes(
    folder: Path | str, pattern: str, *, default_exposure_s: float = 0.0
) -> List[Subframe]:
    """Find subframes in *folder* and return them in acquisition order.

    FITS frames take exposure, filter and date from their header. TIFF frames
    carry no such metadata and use ``default_exposure_s``. Frames without a
    positive exposure are skipped.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise ImageNotFoundError("Input directory not found", input_dir=str(folder))

    files = _collect_frames(folder, parse_pattern(pattern))
    logging.info("Found %d files matching pattern %s", len(files), pattern)

    subs: List[Subframe] = []
    for path in files:
        try:
            if path.suffix.lower() in FITS_EXTS:
                meta = _fits_metadata(path)
            else:
                meta = {"exposure": float(default_exposure_s), "filter": "", "date_obs": ""}
        except (OSError, ValueError) as exc:
            logging.warning("Skipping %s (failed to read metadata: %s)", path.name, exc)
            continue
        if meta["exposure"] <= 0:
            logging.warning("Skipping %s (no exposure time)", path.name)
            continue
        subs.append(
            Subframe(
                path=path,
                exposure_s=float(meta["exposure"]),
                filter_name=str(meta["filter"]),
                date_obs=str(meta["date_obs"]) or _mtime_iso(path),
            )
        )

    subs.sort(key=lambda s: s.date_obs)
    logging.info("Found %d subframes", len(subs))
    return subs


def group_by_filter(subframes: List[Subframe]) -> Dict[str, List[Subframe]]:
    """Group subframes by filter name, keeping acquisition order."""
    groups: Dict[str, List[Subframe]] = {}
    for sub in subframes:
        groups.setdefault(sub.filter_name or "Unknown", []).append(sub)
    for name, subs in groups.items():
        logging.info("  %s: %d subframes", name, len(subs))
    return groups


def load_frame(path: Path | str) -> np.ndarray:
    """Load one frame as float32 in [0, 1], shape ``(H,W)`` or ``(H,W,C)``."""
    path = Path(path)
    if not path.is_file():
        raise ImageNotFoundError("Image not found", path=str(path))
    if path.suffix.lower() in FITS_EXTS:
        try:
            data = fits.getdata(path)
        except (OSError, ValueError, TypeError) as exc:
            raise ImageNotFoundError(
                "Failed to read image", path=str(path), reason=str(exc)
            ) from exc
        if data is None:
            raise ImageNotFoundError("FITS file has no image data", path=str(path))
        if data.ndim == 3 and data.shape[0] in (1, 3):
            data = np.moveaxis(data, 0, -1)
    else:
        try:
            data = tifffile.imread(str(path))
        except (OSError, ValueError) as exc:
            raise ImageNotFoundError(
                "Failed to read image", path=str(path), reason=str(exc)
            ) from exc
    return _to_float01(np.squeeze(data))


def save_frame(path: Path | str, image: np.ndarray) -> Path:
    """Write *image* as float32 TIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tifffile.imwrite(path, np.asarray(image, dtype=np.float32))
    return path
