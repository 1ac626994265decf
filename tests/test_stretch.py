import numpy as np
import pytest

from core.stretch import apply_stretch, auto_stretch, compute_auto_stretch, mtf, StretchParams


def test_mtf_fixed_points():
    for m in (0.1, 0.25, 0.5, 0.9):
        assert mtf(m, 0.0) == 0.0
        assert mtf(m, 1.0) == 1.0
        assert mtf(m, m) == pytest.approx(0.5)


def test_mtf_balanced_is_identity():
    x = np.linspace(0, 1, 11)
    np.testing.assert_allclose(mtf(0.5, x), x)


def test_auto_stretch_puts_median_on_target():
    rng = np.random.default_rng(1)
    img = (0.05 + 0.01 * rng.standard_normal((101, 101))).astype(np.float32)
    auto_stretch(img)
    assert float(np.median(img)) == pytest.approx(0.25, abs=1e-3)
    assert img.min() >= 0.0 and img.max() <= 1.0


def test_compute_auto_stretch_per_channel():
    rng = np.random.default_rng(2)
    img = np.stack(
        [0.02 + 0.005 * rng.standard_normal((51, 51)), 0.2 + 0.02 * rng.standard_normal((51, 51))],
        axis=-1,
    ).astype(np.float32)
    params = compute_auto_stretch(img)
    assert len(params) == 2
    assert params[0].shadow_clip < params[1].shadow_clip
    assert all(p.highlight_clip == 1.0 for p in params)


def test_flat_channel_gets_neutral_midtone():
    params = compute_auto_stretch(np.full((5, 5), 0.3, np.float32))
    assert params[0].midtone_balance == 0.5


def test_apply_stretch_channel_mismatch():
    with pytest.raises(ValueError):
        apply_stretch(np.zeros((4, 4, 3), np.float32), [StretchParams(0.0, 0.5)])
