# core/plotting.py – SNR vs integration time graphs

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence
import logging

import matplotlib

matplotlib.use("Agg")  # no GUI backend; graphs are only written to disk
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
import numpy as np

from core.insights import compute_steps
from core.models import DepthJob
from utils.logger import log_memory_usage

__all__ = [
    "plot_snr_vs_integration",
    "plot_gain_per_hour",
    "render_graphs",
]


def _validate_finite(arr: Sequence[float], name: str) -> np.ndarray:
    """Return ``arr`` as array if it is non-empty and finite."""
    arr = np.asarray(arr, dtype=float)
    if arr.size == 0:
        raise ValueError(f"{name} is empty")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains non-finite values")
    return arr


def _title(base: str, title: str) -> str:
    return f"{base} - {title}" if title else base


def plot_snr_vs_integration(
    results: Sequence[DepthJob],
    output_dir: Path,
    label_suffix: str = "",
    title: str = "",
    *,
    return_fig: bool = False,
) -> Path | Figure:
    """Plot SNR against cumulative integration time with an ideal √t reference."""
    if len(results) < 2:
        raise ValueError("Need at least 2 data points to generate graph")
    output_path = Path(output_dir) / f"snr_graph{label_suffix}.png"
    logging.info("plot_snr_vs_integration: output=%s", output_path)
    log_memory_usage("plot start: ")

    hours = _validate_finite([r.total_exposure_s / 3600.0 for r in results], "time")
    snr = _validate_finite([r.snr for r in results], "snr")

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(hours, snr, marker="o", linestyle="-", color="tab:blue", label="Measured SNR")
    for r, x, y in zip(results, hours, snr):
        ax.annotate(r.label, (x, y), textcoords="offset points", xytext=(0, 8), ha="center", fontsize=8)

    if hours[0] > 0 and snr[0] > 0:
        ideal = snr[0] * np.sqrt(hours / hours[0])
        ax.plot(hours, ideal, linestyle="--", color="k", label="Ideal √t")

    ax.set_xlabel("Integration Time (h)")
    ax.set_ylabel("SNR")
    ax.set_title(_title("SNR vs Integration Depth Analysis", title))
    ax.grid(True)
    ax.legend()
    fig.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path)
    log_memory_usage("plot end: ")
    if return_fig:
        return fig
    plt.close(fig)
    return output_path


def plot_gain_per_hour(
    results: Sequence[DepthJob],
    output_dir: Path,
    label_suffix: str = "",
    title: str = "",
    *,
    return_fig: bool = False,
) -> Path | Figure | None:
    """Bar chart of SNR gain per hour for every depth step."""
    steps = [s for s in compute_steps(results) if s["gainPerHour"] is not None]
    if not steps:
        logging.info("No gain/hr data to plot")
        return None
    output_path = Path(output_dir) / f"gain_per_hour{label_suffix}.png"

    labels = [f"{s['fromLabel']}→{s['toLabel']}" for s in steps]
    gains = _validate_finite([s["gainPerHour"] for s in steps], "gain per hour")

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar(labels, gains, color="tab:green")
    ax.axhline(2.0, color="r", linestyle="--", label="2 %/hr")
    ax.set_xlabel("Depth step")
    ax.set_ylabel("SNR gain (%/hr)")
    ax.set_title(_title("SNR Gain per Hour", title))
    ax.grid(True, axis="y")
    ax.legend()
    plt.setp(ax.get_xticklabels(), rotation=45, ha="right")
    fig.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path)
    if return_fig:
        return fig
    plt.close(fig)
    return output_path


def render_graphs(
    results: Sequence[DepthJob],
    output_dir: Path,
    label_suffix: str = "",
    title: str = "",
) -> List[Path]:
    """Write every graph for one sweep and return their paths."""
    paths: List[Path] = [plot_snr_vs_integration(results, output_dir, label_suffix, title)]
    gain = plot_gain_per_hour(results, output_dir, label_suffix, title)
    if gain is not None:
        paths.append(gain)
    return paths
