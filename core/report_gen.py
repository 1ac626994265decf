# core/report_gen.py – CSV / JSON / text export of sweep results

from __future__ import annotations

import csv
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from core.errors import ErrorKind
from core.insights import Insights
from core.models import DepthJob, JobFailure, ROIPair
from utils.config import APP_VERSION

__all__ = [
    "CSV_HEADER",
    "write_results_csv",
    "write_results_json",
    "load_results_json",
    "save_insights_txt",
    "export_results",
    "log_results_table",
]

CSV_HEADER = [
    "label",
    "nSubs",
    "totalExposure_s",
    "intTime_s",
    "starRemovalTime_s",
    "stretchTime_s",
    "bgMedian",
    "fgMedian",
    "fgSigma",
    "snr",
]

# ──────────────────────────────────────────────── helpers


def _csv_row(job: DepthJob) -> List[str]:
    return [
        job.label,
        str(job.depth),
        f"{job.total_exposure_s:.1f}",
        f"{job.integration_time_s:.2f}",
        f"{job.star_removal_time_s:.2f}",
        f"{job.stretch_time_s:.2f}",
        f"{job.bg_median:.8f}",
        f"{job.fg_median:.8f}",
        f"{job.fg_sigma:.8f}",
        f"{job.snr:.4f}",
    ]


def _write_if_enabled(flag: bool, path: Path, writer: Callable[[Path], None]) -> Optional[Path]:
    """Run ``writer`` when enabled; a write failure is logged and swallowed."""
    if not flag:
        return None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        writer(path)
    except OSError as exc:
        logging.error("%s: failed to write %s: %s", ErrorKind.IO.value, path, exc)
        return None
    logging.info("Written: %s", path)
    return path


# ──────────────────────────────────────────────── public api


def write_results_csv(results: Sequence[DepthJob], path: Path) -> None:
    with Path(path).open("w", newline="", encoding="utf-8") as fh:
        w = csv.writer(fh)
        w.writerow(CSV_HEADER)
        for job in results:
            w.writerow(_csv_row(job))


def write_results_json(
    results: Sequence[DepthJob],
    rois: ROIPair,
    insights: Optional[Insights],
    settings: Mapping[str, Any],
    path: Path,
    *,
    failures: Sequence[JobFailure] = (),
) -> None:
    data = {
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "settings": dict(settings),
        "rois": rois.to_dict(),
        "results": [job.to_dict() for job in results],
        "insights": insights.to_dict() if insights is not None else None,
        "failures": [f.to_dict() for f in failures],
    }
    Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")


def load_results_json(path: Path | str) -> Tuple[List[DepthJob], Dict[str, Any]]:
    """Read a results JSON back into jobs plus the raw envelope."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [DepthJob.from_dict(r) for r in data.get("results", [])], data


def save_insights_txt(insights: Insights, path: Path) -> None:
    Path(path).write_text(insights.summary + "\n", encoding="utf-8")


def export_results(
    results: Sequence[DepthJob],
    rois: ROIPair,
    insights: Optional[Insights],
    settings: Mapping[str, Any],
    data_dir: Path,
    cfg: Mapping[str, Any],
    *,
    suffix: str = "",
    failures: Sequence[JobFailure] = (),
) -> Dict[str, Path]:
    """Write every enabled output format; one failing format does not stop the rest."""
    out_cfg = cfg.get("output", {})
    data_dir = Path(data_dir)
    written: Dict[str, Path] = {}

    csv_path = _write_if_enabled(
        bool(out_cfg.get("csv", True)),
        data_dir / f"snr_results{suffix}.csv",
        lambda p: write_results_csv(results, p),
    )
    if csv_path:
        written["csv"] = csv_path

    json_path = _write_if_enabled(
        bool(out_cfg.get("json", True)),
        data_dir / f"snr_results{suffix}.json",
        lambda p: write_results_json(
            results, rois, insights, settings, p, failures=failures
        ),
    )
    if json_path:
        written["json"] = json_path

    if insights is not None:
        txt_path = _write_if_enabled(
            bool(out_cfg.get("insights", True)),
            data_dir / f"insights{suffix}.txt",
            lambda p: save_insights_txt(insights, p),
        )
        if txt_path:
            written["insights"] = txt_path
    return written


def log_results_table(results: Sequence[DepthJob]) -> None:
    """Log a fixed-width summary of the sweep."""
    header = f"{'Label':<10} {'N Subs':>8} {'Total Exp':>12} {'bgMedian':>12} {'fgMedian':>12} {'fgSigma':>12} {'SNR':>10}"
    logging.info("=== RESULTS SUMMARY ===")
    logging.info(header)
    logging.info("-" * len(header))
    for r in results:
        logging.info(
            "%-10s %8d %11.1fs %12.6f %12.6f %12.6f %10.2f",
            r.label,
            r.depth,
            r.total_exposure_s,
            r.bg_median,
            r.fg_median,
            r.fg_sigma,
            r.snr,
        )
    logging.info(
        "Note: SNR is measured on stretched data and compares depths; "
        "it is not an absolute image quality score."
    )
