# core/pipeline.py – Depth sweep pipeline (plan → integrate → stretch → measure → export)

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

__all__ = [
    "SweepResult",
    "output_dirs",
    "measure_job",
    "run_depth_sweep",
    "run_pipeline",
    "pipeline_lock",
]

from utils.logger import log_memory_usage, apply_logging_config
import utils.config as cfgutil
from core.depth_planner import accumulate_exposures, plan_from_config
from core.errors import ImageNotFoundError, SNRError
from core.insights import Insights, ResultsAggregator
from core.integrator import make_integrator
from core.loader import group_by_filter, save_frame, scan_subframes
from core.models import DepthJob, JobFailure, ROIPair, Subframe
from core.plotting import render_graphs
from core.report_gen import export_results, log_results_table
from core.snr import measure_snr
from core.star_removal import StarRemover, get_star_remover
from core.stretch import auto_stretch
from utils.formatting import format_time
from utils.roi import AutoROIProvider, FileROIProvider, InteractiveROIProvider

Integrator = Callable[[Sequence[Subframe]], np.ndarray]
GraphRenderer = Callable[[Sequence[DepthJob], Path, str, str], Any]

pipeline_lock = threading.Lock()


@dataclass
class SweepResult:
    group: str
    rois: Optional[ROIPair] = None
    results: List[DepthJob] = field(default_factory=list)
    failures: List[JobFailure] = field(default_factory=list)
    insights: Optional[Insights] = None
    outputs: Dict[str, Any] = field(default_factory=dict)


# ───────────────────────────── helpers


def output_dirs(project: Path, cfg: Dict[str, Any]) -> Dict[str, Path]:
    """Create ``<output_dir>/SNRAnalysis/{data,graphs,integrations,previews}``."""
    base = Path(project) / cfg.get("output", {}).get("output_dir", "output") / "SNRAnalysis"
    dirs = {"base": base}
    for name in ("data", "graphs", "integrations", "previews"):
        dirs[name] = base / name
        dirs[name].mkdir(parents=True, exist_ok=True)
    return dirs


def _suffix(group: str, multi: bool) -> str:
    return f"_{group}" if multi and group else ""


def _default_roi_provider(project: Path, cfg: Dict[str, Any]):
    roi_cfg = cfg.get("roi", {})
    roi_file = Path(project) / roi_cfg.get("file", "rois.zip")
    if roi_cfg.get("interactive", False):
        from gui.roi_prompt import confirm_rois, show_roi_instructions

        provider = InteractiveROIProvider(roi_file, confirm_rois, show_roi_instructions)
    else:
        provider = FileROIProvider(roi_file)
    mode = str(roi_cfg.get("mode", "manual")).lower()
    if mode == "auto":
        return AutoROIProvider(provider, int(roi_cfg.get("tile_size", 96)))
    if mode != "manual":
        logging.warning("Unknown ROI mode '%s', using manual ROIs", mode)
    return provider


def _resolve_rois(
    roi_provider,
    subframes: Sequence[Subframe],
    integrate: Integrator,
    dirs: Dict[str, Path],
    cfg: Dict[str, Any],
    group: str,
    suffix: str,
) -> ROIPair:
    """Ask the provider for ROIs.

    A full-depth reference master is integrated first when the provider works
    on it (auto detection, operator prompts) or has no ROIs stored yet.
    """
    reference: Optional[np.ndarray | Path] = None
    if getattr(roi_provider, "needs_reference", False) or roi_provider.lookup(group) is None:
        logging.info("Creating reference master from %d subframes", len(subframes))
        reference = integrate(subframes)
        if cfg.get("roi", {}).get("write_reference", True):
            reference = save_frame(
                dirs["integrations"] / f"ref_master{suffix}.tif", reference
            )
            logging.info("Reference master written: %s", reference)
    return roi_provider.provide(reference, group)


# ───────────────────────────── per job


def measure_job(
    job: DepthJob,
    subframes: Sequence[Subframe],
    rois: ROIPair,
    integrate: Integrator,
    remove_stars: Optional[StarRemover] = None,
    preview_path: Optional[Path] = None,
) -> DepthJob:
    """Integrate the first ``job.depth`` frames and measure the stretched result."""
    t0 = time.perf_counter()
    image = np.array(integrate(subframes[: job.depth]), dtype=np.float32)
    integration_time = time.perf_counter() - t0

    star_time = 0.0
    if remove_stars is not None:
        t0 = time.perf_counter()
        starless = remove_stars(image)
        star_time = time.perf_counter() - t0
        if starless is None:
            logging.warning("Star removal failed for %s, measuring with stars", job.label)
        else:
            image = np.array(starless, dtype=np.float32)

    t0 = time.perf_counter()
    auto_stretch(image)
    stretch_time = time.perf_counter() - t0

    if preview_path is not None:
        save_frame(preview_path, image)

    m = measure_snr(image, rois.background, rois.foreground)
    return replace(
        job,
        integration_time_s=integration_time,
        star_removal_time_s=star_time,
        stretch_time_s=stretch_time,
        bg_median=m.bg_median,
        bg_sigma=m.bg_sigma,
        fg_median=m.fg_median,
        fg_sigma=m.fg_sigma,
        snr=m.snr,
    )


def _log_timings(job: DepthJob) -> None:
    logging.info(
        "%s timings: integration %s, star removal %s, stretch %s",
        job.label,
        format_time(job.integration_time_s),
        format_time(job.star_removal_time_s),
        format_time(job.stretch_time_s),
    )


# ───────────────────────────── sweep


def run_depth_sweep(
    jobs: Sequence[DepthJob],
    subframes: Sequence[Subframe],
    rois: ROIPair,
    cfg: Dict[str, Any],
    dirs: Dict[str, Path],
    *,
    group: str = "",
    suffix: str = "",
    integrate: Integrator,
    remove_stars: Optional[StarRemover] = None,
    render_graph: Optional[GraphRenderer] = None,
    on_job_done: Optional[Callable[[], None]] = None,
    status: Optional[Callable[[str], None]] = None,
) -> SweepResult:
    """Measure ``jobs`` in ascending depth and export the results of one group.

    A job failing with :class:`ImageNotFoundError` or :class:`SNRError` is
    logged, recorded as a :class:`JobFailure` and left out of the results.
    """
    out_cfg = cfg.get("output", {})
    threshold = float(cfg.get("insights", {}).get("diminishing_threshold_pct", 10.0))
    aggregator = ResultsAggregator(threshold)
    sweep = SweepResult(group=group, rois=rois)

    for i, job in enumerate(jobs, start=1):
        msg = f"[{i}/{len(jobs)}] Integrating {job.label} ({job.depth} subs)"
        logging.info(msg)
        if status:
            status(msg)
        preview = (
            dirs["previews"] / f"{job.label}{suffix}.tif"
            if out_cfg.get("keep_intermediate_images", False)
            else None
        )
        try:
            done = measure_job(job, subframes, rois, integrate, remove_stars, preview)
        except (ImageNotFoundError, SNRError) as exc:
            logging.error("%s: %s failed: %s", exc.kind.value, job.label, exc)
            sweep.failures.append(
                JobFailure(job.label, job.depth, exc.kind.value, str(exc))
            )
        else:
            logging.info(
                "%s: bg=%.6f fg=%.6f sigma=%.6f SNR=%.4f",
                done.label,
                done.bg_median,
                done.fg_median,
                done.fg_sigma,
                done.snr,
            )
            if out_cfg.get("log_timings", True):
                _log_timings(done)
            aggregator.add(done)
        if on_job_done:
            on_job_done()
        log_memory_usage(f"after {job.label}: ")

    sweep.results = aggregator.results
    sweep.insights = aggregator.insights()
    if sweep.results:
        log_results_table(sweep.results)
    if sweep.insights is not None:
        for line in sweep.insights.summary.splitlines():
            logging.info(line)

    sweep.outputs = dict(
        export_results(
            sweep.results,
            rois,
            sweep.insights,
            cfgutil.settings_snapshot(cfg),
            dirs["data"],
            cfg,
            suffix=suffix,
            failures=sweep.failures,
        )
    )

    if out_cfg.get("graph", True) and render_graph is not None:
        if aggregator.can_graph:
            title = group if suffix else ""
            try:
                sweep.outputs["graphs"] = render_graph(
                    sweep.results, dirs["graphs"], suffix, title
                )
            except (OSError, ValueError) as exc:
                logging.error("Graph generation failed for %s: %s", group or "sweep", exc)
        else:
            logging.warning("Need at least 2 data points to generate graph")
    return sweep


# ───────────────────────────── top level


def run_pipeline(
    project: Path,
    cfg: Dict[str, Any],
    *,
    progress: Optional[Callable[[int], None]] = None,
    status: Optional[Callable[[str], None]] = None,
    subframes: Optional[Sequence[Subframe]] = None,
    integrate: Optional[Integrator] = None,
    remove_stars: Optional[StarRemover] = None,
    roi_provider=None,
    render_graph: Optional[GraphRenderer] = render_graphs,
) -> Dict[str, SweepResult]:
    """Run the depth analysis for every filter group of ``project``.

    Collaborators default to the built-in implementations configured from
    ``cfg`` and can be replaced by callers. All sweeps are planned before
    any frame is integrated, so planning errors abort the run without work.
    """
    project = Path(project)
    apply_logging_config(cfg)
    logging.info("Pipeline start: %s", project)
    with pipeline_lock:
        try:
            log_memory_usage("start: ")
            if progress:
                progress(0)
            inp = cfg.get("input", {})
            if subframes is None:
                if status:
                    status("Scanning subframes...")
                subframes = scan_subframes(
                    project / inp.get("input_dir", "lights"),
                    inp.get("file_pattern", "*.fits;*.tif"),
                    default_exposure_s=float(inp.get("default_exposure_s", 0.0)),
                )
            if not subframes:
                raise ImageNotFoundError(
                    "No valid subframes found",
                    input_dir=str(project / inp.get("input_dir", "lights")),
                )

            multi = bool(inp.get("analyze_all_filters", False))
            groups = group_by_filter(list(subframes)) if multi else {"": list(subframes)}

            plans: List[Tuple[str, List[Subframe], List[DepthJob]]] = []
            for group, subs in groups.items():
                config = cfgutil.analysis_config(cfg, len(subs))
                jobs = accumulate_exposures(plan_from_config(config), subs)
                logging.info(
                    "%sPlanned depths: %s",
                    f"{group}: " if group else "",
                    ", ".join(str(j.depth) for j in jobs),
                )
                plans.append((group, subs, jobs))

            if integrate is None:
                integrate = make_integrator(cfg)
            if remove_stars is None:
                sr = cfg.get("star_removal", {})
                remove_stars = get_star_remover(
                    sr.get("method", "none"),
                    enabled=bool(sr.get("enabled", False)),
                    size=int(sr.get("size", 7)),
                )
            if roi_provider is None:
                roi_provider = _default_roi_provider(project, cfg)
            dirs = output_dirs(project, cfg)

            total = sum(len(jobs) for _, _, jobs in plans)
            done = 0

            def _job_done() -> None:
                nonlocal done
                done += 1
                if progress:
                    progress(int(100 * done / total))

            sweeps: Dict[str, SweepResult] = {}
            for group, subs, jobs in plans:
                suffix = _suffix(group, multi)
                if group:
                    logging.info("=== Filter %s: %d subframes ===", group, len(subs))
                rois = _resolve_rois(roi_provider, subs, integrate, dirs, cfg, group, suffix)
                sweeps[group] = run_depth_sweep(
                    jobs,
                    subs,
                    rois,
                    cfg,
                    dirs,
                    group=group,
                    suffix=suffix,
                    integrate=integrate,
                    remove_stars=remove_stars,
                    render_graph=render_graph,
                    on_job_done=_job_done,
                    status=status,
                )

            if progress:
                progress(100)
            logging.info("Pipeline completed")
            log_memory_usage("pipeline end: ")
            return sweeps
        except Exception as e:  # pragma: no cover - log path
            logging.exception("Pipeline error: %s", e)
            raise
