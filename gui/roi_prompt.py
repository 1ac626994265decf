# gui/roi_prompt.py – Modal ROI prompts for the interactive ROI provider

from __future__ import annotations

from pathlib import Path
from typing import Optional

from PySide6.QtWidgets import QApplication, QMessageBox

from core.models import ROIPair
from utils.formatting import format_rect

__all__ = ["confirm_rois", "show_roi_instructions"]


def _ensure_app() -> QApplication:
    app = QApplication.instance()
    if app is None:
        app = QApplication([])
    return app


def _group_title(group: str) -> str:
    return f"SNR Analysis - {group}" if group else "SNR Analysis"


def confirm_rois(pair: ROIPair, group: str = "") -> bool:
    """Ask whether the existing BG/FG rectangles should be used."""
    _ensure_app()
    text = (
        "Found existing ROIs:\n\n"
        f"BG: {format_rect(pair.background)}\n"
        f"FG: {format_rect(pair.foreground)}\n\n"
        "Use these ROIs?"
    )
    answer = QMessageBox.question(
        None,
        _group_title(group),
        text,
        QMessageBox.Yes | QMessageBox.No,
        QMessageBox.Yes,
    )
    return answer == QMessageBox.Yes


def show_roi_instructions(reference: Optional[Path], roi_file: Path, group: str = "") -> bool:
    """Explain how to create the ROIs; True on OK, False on Cancel."""
    _ensure_app()
    ref = str(reference) if reference is not None else "the full-depth integration"
    text = (
        f"Open {ref} in ImageJ / Fiji and draw two rectangles:\n\n"
        "  BG - a background-only area (no nebula, no bright stars)\n"
        "  FG - a faint area of the target\n\n"
        f"Save both to the ROI manager file:\n  {roi_file}\n\n"
        "then run the analysis again."
    )
    answer = QMessageBox.information(
        None,
        _group_title(group),
        text,
        QMessageBox.Ok | QMessageBox.Cancel,
        QMessageBox.Ok,
    )
    return answer == QMessageBox.Ok
