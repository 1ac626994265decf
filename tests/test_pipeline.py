import csv
import json
from types import SimpleNamespace

import numpy as np
import pytest
import roifile
import tifffile

from core.errors import DepthStrategyError, ImageNotFoundError, ROIMissingError
from core.integrator import make_integrator
from core.models import Rectangle, ROIPair, Subframe
from core.pipeline import run_pipeline
from utils.config import load_config
from utils.roi import InteractiveROIProvider, StaticROIProvider

ROIS = ROIPair(background=Rectangle(0, 0, 16, 16), foreground=Rectangle(24, 24, 34, 34))


def _write_subs(folder, n, seed=0):
    """Flat sky at 0.1 with a 0.12 patch, per-frame noise 0.01."""
    rng = np.random.default_rng(seed)
    folder.mkdir(parents=True, exist_ok=True)
    base = np.full((40, 40), 0.1)
    base[22:36, 22:36] = 0.12
    for i in range(n):
        frame = base + 0.01 * rng.standard_normal(base.shape)
        tifffile.imwrite(folder / f"sub{i:02d}_c_r.tif", (frame * 65535).astype(np.uint16))


def _cfg(**depth):
    cfg = load_config()
    cfg["input"].update({"input_dir": "lights", "file_pattern": "*_c_r.tif", "default_exposure_s": 60})
    cfg["depth"].update({"strategy": "doubling", **depth})
    cfg["integration"]["rejection"] = "None"
    return cfg


def test_run_pipeline_end_to_end(tmp_path):
    _write_subs(tmp_path / "lights", 20)
    progress = []
    sweeps = run_pipeline(
        tmp_path, _cfg(), roi_provider=StaticROIProvider(ROIS), progress=progress.append
    )
    sweep = sweeps[""]
    assert [r.depth for r in sweep.results] == [8, 16, 20]
    assert [r.total_exposure_s for r in sweep.results] == [480.0, 960.0, 1200.0]
    assert sweep.failures == []
    assert sweep.results[-1].snr > sweep.results[0].snr > 0
    assert progress[-1] == 100

    base = tmp_path / "output" / "SNRAnalysis"
    for sub in ("data", "graphs", "integrations", "previews"):
        assert (base / sub).is_dir()
    rows = list(csv.reader((base / "data" / "snr_results.csv").open(encoding="utf-8")))
    assert [r[0] for r in rows[1:]] == ["N8", "N16", "N20"]
    data = json.loads((base / "data" / "snr_results.json").read_text(encoding="utf-8"))
    assert data["settings"]["depthStrategy"] == "doubling"
    assert data["rois"]["background"] == ROIS.background.to_dict()
    assert (base / "data" / "insights.txt").is_file()
    assert (base / "graphs" / "snr_graph.png").is_file()


def test_failing_job_recorded_as_gap(tmp_path):
    _write_subs(tmp_path / "lights", 20)
    cfg = _cfg()
    real = make_integrator(cfg)

    def integrate(subs):
        if len(subs) == 16:
            raise ImageNotFoundError("frame vanished", depth=16)
        return real(subs)

    sweep = run_pipeline(
        tmp_path, cfg, integrate=integrate, roi_provider=StaticROIProvider(ROIS), render_graph=None
    )[""]
    assert [r.label for r in sweep.results] == ["N8", "N20"]
    assert [f.label for f in sweep.failures] == ["N16"]
    assert sweep.failures[0].kind == "ImageNotFoundError"
    data = json.loads(sweep.outputs["json"].read_text(encoding="utf-8"))
    assert [f["label"] for f in data["failures"]] == ["N16"]
    assert [r["label"] for r in data["results"]] == ["N8", "N20"]


def test_planning_error_happens_before_integration(tmp_path):
    _write_subs(tmp_path / "lights", 4)
    calls = []
    with pytest.raises(DepthStrategyError):
        run_pipeline(
            tmp_path,
            _cfg(strategy="bogus"),
            integrate=lambda subs: calls.append(len(subs)),
            roi_provider=StaticROIProvider(ROIS),
        )
    assert calls == []


def test_no_subframes(tmp_path):
    (tmp_path / "lights").mkdir()
    with pytest.raises(ImageNotFoundError):
        run_pipeline(tmp_path, _cfg(), roi_provider=StaticROIProvider(ROIS))


def test_multi_filter_outputs_use_suffix(tmp_path):
    _write_subs(tmp_path / "lights", 10)
    paths = sorted((tmp_path / "lights").glob("*.tif"))
    subs = [Subframe(p, 60.0, "Ha" if i % 2 else "OIII") for i, p in enumerate(paths)]
    cfg = _cfg(strategy="custom", custom_depths="2,4")
    cfg["input"]["analyze_all_filters"] = True
    cfg["output"]["keep_intermediate_images"] = True

    sweeps = run_pipeline(
        tmp_path, cfg, subframes=subs, roi_provider=StaticROIProvider(ROIS), render_graph=None
    )
    assert set(sweeps) == {"Ha", "OIII"}
    assert [r.depth for r in sweeps["Ha"].results] == [2, 4, 5]
    data = tmp_path / "output" / "SNRAnalysis" / "data"
    assert (data / "snr_results_Ha.csv").is_file()
    assert (data / "snr_results_OIII.json").is_file()
    assert (tmp_path / "output" / "SNRAnalysis" / "previews" / "N4_Ha.tif").is_file()


def test_reference_master_written_when_rois_missing(tmp_path):
    _write_subs(tmp_path / "lights", 3)
    with pytest.raises(ROIMissingError):
        run_pipeline(tmp_path, _cfg(), render_graph=None)
    assert (tmp_path / "output" / "SNRAnalysis" / "integrations" / "ref_master.tif").is_file()


def test_corrupt_frame_only_fails_depths_using_it(tmp_path):
    _write_subs(tmp_path / "lights", 20)
    (tmp_path / "lights" / "sub19_c_r.tif").write_bytes(b"not an image at all")
    sweep = run_pipeline(
        tmp_path, _cfg(), roi_provider=StaticROIProvider(ROIS), render_graph=None
    )[""]
    assert [r.label for r in sweep.results] == ["N8", "N16"]
    assert [f.label for f in sweep.failures] == ["N20"]
    assert sweep.failures[0].kind == "ImageNotFoundError"
    assert sweep.outputs["csv"].is_file()


def test_declined_rois_still_get_a_reference_master(tmp_path, monkeypatch):
    _write_subs(tmp_path / "lights", 3)
    roi_file = tmp_path / "rois.zip"
    roi_file.write_bytes(b"")
    stored = [
        SimpleNamespace(name="BG", left=0, top=0, right=16, bottom=16),
        SimpleNamespace(name="FG", left=24, top=24, right=34, bottom=34),
    ]
    monkeypatch.setattr(roifile, "roiread", lambda p: stored)
    seen = []

    def instruct(reference, path, group):
        seen.append(reference)
        return True

    provider = InteractiveROIProvider(roi_file, confirm=lambda pair, group: False, instruct=instruct)
    with pytest.raises(ROIMissingError):
        run_pipeline(tmp_path, _cfg(), roi_provider=provider, render_graph=None)
    assert seen[0] == tmp_path / "output" / "SNRAnalysis" / "integrations" / "ref_master.tif"
    assert seen[0].is_file()


def test_auto_roi_mode_detects_regions(tmp_path):
    rng = np.random.default_rng(5)
    folder = tmp_path / "lights"
    folder.mkdir()
    base = np.full((160, 160), 0.1)
    base[64:112, 64:112] = 0.14
    for i in range(6):
        frame = base + 0.01 * rng.standard_normal(base.shape)
        tifffile.imwrite(folder / f"sub{i:02d}_c_r.tif", (frame * 65535).astype(np.uint16))
    cfg = _cfg()
    cfg["roi"].update({"mode": "auto", "tile_size": 16})

    sweep = run_pipeline(tmp_path, cfg, render_graph=None)[""]
    fg = sweep.rois.foreground
    assert 64 <= fg.x0 and fg.x1 <= 112 and 64 <= fg.y0 and fg.y1 <= 112
    assert sweep.rois.background.width == 16
    assert [r.depth for r in sweep.results] == [6]
    assert sweep.results[0].snr > 0
