from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest
import roifile

from core.errors import ROIMissingError
from core.models import Rectangle, ROIPair
from utils.roi import (
    AutoROIProvider,
    FileROIProvider,
    InteractiveROIProvider,
    StaticROIProvider,
    detect_auto_rois,
    load_named_rois,
)


def _roi(name, left, top, right, bottom):
    return SimpleNamespace(name=name, left=left, top=top, right=right, bottom=bottom)


@pytest.fixture
def roi_zip(tmp_path, monkeypatch):
    path = tmp_path / "rois.zip"
    path.write_bytes(b"")
    sets = {str(path): [_roi("bg", 0, 0, 10, 10), _roi("FG", 20, 20, 40, 30), _roi("", 1, 1, 2, 2)]}
    monkeypatch.setattr(roifile, "roiread", lambda p: sets.get(str(p), []))
    return path, sets


def test_load_named_rois_upper_cases_names(roi_zip):
    path, _ = roi_zip
    rois = load_named_rois(path)
    assert set(rois) == {"BG", "FG"}
    assert rois["FG"] == Rectangle(20, 20, 40, 30)


def test_missing_file_yields_no_rois(tmp_path):
    assert load_named_rois(tmp_path / "none.zip") == {}


def test_lookup_is_idempotent(roi_zip):
    path, _ = roi_zip
    provider = FileROIProvider(path)
    first = provider.lookup()
    assert first == provider.lookup()
    assert first.background == Rectangle(0, 0, 10, 10)


def test_lookup_without_foreground(roi_zip):
    path, sets = roi_zip
    sets[str(path)] = [_roi("BG", 0, 0, 10, 10)]
    provider = FileROIProvider(path)
    assert provider.lookup() is None
    with pytest.raises(ROIMissingError):
        provider.provide()


def test_group_specific_roi_file(roi_zip):
    path, sets = roi_zip
    ha = path.with_name("rois_Ha.zip")
    ha.write_bytes(b"")
    sets[str(ha)] = [_roi("BG", 1, 1, 5, 5), _roi("FG", 6, 6, 9, 9)]
    provider = FileROIProvider(path)
    assert provider.lookup("Ha").foreground == Rectangle(6, 6, 9, 9)
    assert provider.lookup("OIII").foreground == Rectangle(20, 20, 40, 30)


def test_interactive_accepts_confirmed_rois(roi_zip):
    path, _ = roi_zip
    seen = []
    provider = InteractiveROIProvider(
        path, confirm=lambda pair, group: seen.append(group) or True, instruct=None
    )
    assert provider.provide(group="L").foreground == Rectangle(20, 20, 40, 30)
    assert seen == ["L"]


@pytest.mark.parametrize("answer, message", [(True, "rerun"), (False, "cancelled")])
def test_interactive_declined_asks_for_new_rois(roi_zip, answer, message):
    path, _ = roi_zip
    calls = []

    def instruct(reference, roi_file, group):
        calls.append((reference, roi_file))
        return answer

    provider = InteractiveROIProvider(path, confirm=lambda pair, group: False, instruct=instruct)
    with pytest.raises(ROIMissingError, match=message):
        provider.provide(Path("ref_master.tif"))
    assert calls == [(Path("ref_master.tif"), path)]


def test_static_provider():
    pair = ROIPair(Rectangle(0, 0, 2, 2), Rectangle(2, 2, 4, 4))
    assert StaticROIProvider(pair).provide() is pair


def test_identical_bg_and_fg_in_file_are_ignored(tmp_path, monkeypatch):
    path = tmp_path / "rois.zip"
    path.write_bytes(b"")
    monkeypatch.setattr(roifile, "roiread", lambda p: [_roi("BG", 5, 5, 15, 15), _roi("FG", 5, 5, 15, 15)])
    provider = FileROIProvider(path)
    assert provider.lookup() is None
    with pytest.raises(ROIMissingError):
        provider.provide()


def _sky(size=480, tile=48, seed=3):
    rng = np.random.default_rng(seed)
    img = 0.1 + 0.005 * rng.standard_normal((size, size))
    img[4 * tile : 7 * tile, 4 * tile : 7 * tile] += 0.03
    return img.astype(np.float32)


def test_detect_auto_rois_finds_faint_patch():
    pair = detect_auto_rois(_sky(), tile_size=48)
    assert pair is not None
    fg, bg = pair.foreground, pair.background
    assert 192 <= fg.x0 and fg.x1 <= 336 and 192 <= fg.y0 and fg.y1 <= 336
    assert not (192 <= bg.x0 < 336 and 192 <= bg.y0 < 336)
    assert (fg.width, fg.height) == (48, 48)
    assert (bg.width, bg.height) == (48, 48)


def test_detect_auto_rois_uniform_sky():
    rng = np.random.default_rng(1)
    img = np.full((480, 480), 0.1, np.float32) + 0.005 * rng.standard_normal((480, 480)).astype(np.float32)
    assert detect_auto_rois(img, tile_size=48) is None


def test_detect_auto_rois_image_too_small():
    assert detect_auto_rois(_sky(size=120, tile=16), tile_size=48) is None


def test_auto_provider_returns_detected_pair():
    fallback = StaticROIProvider(ROIPair(Rectangle(0, 0, 2, 2), Rectangle(2, 2, 4, 4)))
    pair = AutoROIProvider(fallback, tile_size=48).provide(_sky())
    assert pair is not fallback.pair
    assert pair.foreground.x0 >= 192


def test_auto_provider_falls_back_on_failure():
    fallback = StaticROIProvider(ROIPair(Rectangle(0, 0, 2, 2), Rectangle(2, 2, 4, 4)))
    provider = AutoROIProvider(fallback, tile_size=48)
    assert provider.needs_reference
    assert provider.lookup() is None
    assert provider.provide(np.full((100, 100), 0.1, np.float32)) is fallback.pair
