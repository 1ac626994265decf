# utils/config.py – Config utilities (YAML defaults + project overrides)

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from core.models import AnalysisConfig

__all__ = [
    "APP_VERSION",
    "load_config",
    "analysis_config",
    "settings_snapshot",
]

APP_VERSION = "1.0.0"

# ────────────────────────────────────────────────
# Load & merge config
# ────────────────────────────────────────────────
_DEFAULT_CFG_PATH = Path(__file__).parent.parent / "config" / "default_config.yaml"


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _merge_dict(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge (src overwrites dst)."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            dst[k] = _merge_dict(dst[k], v)
        else:
            dst[k] = v
    return dst


def load_config(project_cfg_path: Path | str | None = None) -> Dict[str, Any]:
    """Return merged config dict (default <- project).

    ``project_cfg_path`` may be a YAML file or a project directory holding
    ``config.yaml``. A directory without one yields the defaults.
    """
    cfg = _read_yaml(_DEFAULT_CFG_PATH)
    if project_cfg_path is None:
        return cfg
    project_yaml = Path(project_cfg_path)
    if project_yaml.is_dir():
        project_yaml = project_yaml / "config.yaml"
        if not project_yaml.is_file():
            return cfg
    cfg = _merge_dict(cfg, _read_yaml(project_yaml))
    depth = cfg.setdefault("depth", {})
    depth["strategy"] = str(depth.get("strategy", "preset_osc")).lower()
    if depth.get("custom_depths") is not None:
        depth["custom_depths"] = str(depth["custom_depths"])
    return cfg


# ────────────────────────────────────────────────
# Derived settings
# ────────────────────────────────────────────────
def analysis_config(cfg: Mapping[str, Any], max_subs: int) -> AnalysisConfig:
    """Build the sweep parameters for a group of ``max_subs`` subframes."""
    depth = cfg.get("depth", {})
    return AnalysisConfig(
        strategy=str(depth.get("strategy", "preset_osc")),
        max_subs=int(max_subs),
        custom_depths=depth.get("custom_depths") or None,
        include_full_depth=bool(depth.get("include_full_depth", True)),
        diminishing_threshold_pct=float(
            cfg.get("insights", {}).get("diminishing_threshold_pct", 10.0)
        ),
    )


def settings_snapshot(cfg: Mapping[str, Any]) -> Dict[str, Any]:
    """Settings block written to the results JSON."""
    inp = cfg.get("input", {})
    depth = cfg.get("depth", {})
    stars = cfg.get("star_removal", {})
    return {
        "inputDir": str(inp.get("input_dir", "")),
        "filePattern": str(inp.get("file_pattern", "")),
        "analyzeAllFilters": bool(inp.get("analyze_all_filters", False)),
        "depthStrategy": str(depth.get("strategy", "preset_osc")),
        "customDepths": str(depth.get("custom_depths") or ""),
        "generateStarless": bool(stars.get("enabled", False)),
        "starRemovalMethod": str(stars.get("method", "none")),
        "applyStretch": True,
    }
