import numpy as np
import pytest

from planeseg.cell import CellModel, count_depth_jumps
from planeseg.config import SegmentationCfg
from utils.error_tracker import FittingError


def _cell_points(z: np.ndarray, spacing: float = 1.0) -> np.ndarray:
    side = z.shape[0]
    v, u = np.mgrid[0:side, 0:side].astype(np.float64)
    return np.stack([u * spacing, v * spacing, z], axis=-1).reshape(-1, 3)


def test_fit_flat_cell_is_planar_with_outward_normal(seg_cfg: SegmentationCfg) -> None:
    # given
    pts = _cell_points(np.full((4, 4), 5.0))

    # when
    model = CellModel.fit(pts, seg_cfg)

    # then
    assert model.is_planar()
    assert model.nr_pts == 16
    assert np.allclose(model.normal, [0.0, 0.0, 1.0], atol=1e-6)
    assert model.d == pytest.approx(-5.0, abs=1e-6)
    assert np.allclose(model.mean, [1.5, 1.5, 5.0])
    assert model.mse == pytest.approx(0.0, abs=1e-9)


def test_fit_tilted_cell_recovers_plane(seg_cfg: SegmentationCfg) -> None:
    # given: z = 1000 + 0.5 x
    pts = _cell_points(np.tile(1000.0 + 0.5 * np.arange(4.0), (4, 1)))

    # when
    model = CellModel.fit(pts, seg_cfg)

    # then
    expected = np.array([-0.5, 0.0, 1.0]) / np.linalg.norm([-0.5, 0.0, 1.0])
    assert model.is_planar()
    assert np.allclose(model.normal, expected, atol=1e-6)
    assert np.allclose(pts @ model.normal + model.d, 0.0, atol=1e-6)


def test_fit_cell_with_few_valid_points_is_not_planar(seg_cfg: SegmentationCfg) -> None:
    # given
    z = np.full((4, 4), 500.0)
    z.reshape(-1)[:10] = 0.0
    pts = _cell_points(z)

    # when
    model = CellModel.fit(pts, seg_cfg)

    # then
    assert not model.is_planar()


def test_fit_cell_with_depth_step_is_not_planar(seg_cfg: SegmentationCfg) -> None:
    # given
    z = np.full((4, 4), 500.0)
    z[:, 2:] = 900.0

    # when
    model = CellModel.fit(_cell_points(z), seg_cfg)

    # then
    assert not model.is_planar()


def test_fit_rough_cell_fails_mse_threshold(seg_cfg: SegmentationCfg) -> None:
    # given: checkerboard +-50 around 550, no depth jump above 160
    v, u = np.mgrid[0:4, 0:4]
    z = 500.0 + 100.0 * ((u + v) % 2)

    # when
    model = CellModel.fit(_cell_points(z, spacing=20.0), seg_cfg)

    # then
    assert not model.is_planar()
    assert model.mse > (seg_cfg.depth_sigma_coeff * 550.0**2 + seg_cfg.depth_sigma_margin) ** 2


def test_fit_ignores_non_finite_points(seg_cfg: SegmentationCfg) -> None:
    # given
    pts = _cell_points(np.full((4, 4), 700.0))
    pts[0] = np.nan

    # when
    model = CellModel.fit(pts, seg_cfg)

    # then
    assert model.is_planar()
    assert model.nr_pts == 15


def test_fit_raises_on_empty_or_truncated_cell(seg_cfg: SegmentationCfg) -> None:
    with pytest.raises(FittingError):
        _ = CellModel.fit(np.zeros((0, 3)), seg_cfg)
    with pytest.raises(FittingError):
        _ = CellModel.fit(np.ones((5, 3)), seg_cfg)
    with pytest.raises(FittingError):
        _ = CellModel.fit(np.ones((16, 2)), seg_cfg)


def test_merge_is_order_independent(seg_cfg: SegmentationCfg) -> None:
    # given
    rng = np.random.default_rng(7)
    cells = []
    for k in range(3):
        pts = _cell_points(800.0 + rng.normal(0.0, 0.3, (4, 4)))
        pts[:, 0] += 4.0 * k
        cells.append(pts)

    def merged(order):
        acc = CellModel.fit(cells[order[0]], seg_cfg)
        for i in order[1:]:
            acc.merge(CellModel.fit(cells[i], seg_cfg))
        acc.finalize()
        return acc

    # when
    a = merged([0, 1, 2])
    b = merged([2, 0, 1])

    # then
    assert a.nr_pts == b.nr_pts == 48
    assert np.allclose(a.normal, b.normal)
    assert a.d == pytest.approx(b.d)
    assert a.mse == pytest.approx(b.mse, rel=1e-4, abs=1e-9)
    assert a.score == pytest.approx(b.score, rel=1e-4)


def test_finalize_score_is_infinite_for_exact_plane(seg_cfg: SegmentationCfg) -> None:
    # given
    model = CellModel()
    model.accumulate(_cell_points(np.full((4, 4), 5.0)))

    # when
    score = model.finalize()

    # then
    assert score > 1e6


def test_finalize_needs_three_points() -> None:
    # given
    model = CellModel()
    model.accumulate(np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 1.0]]))

    # then
    with pytest.raises(FittingError):
        model.finalize()


def test_count_depth_jumps_keeps_last_accepted_depth() -> None:
    # then
    assert count_depth_jumps(np.array([500.0, 510.0, 900.0, 520.0]), 160.0) == 1
    assert count_depth_jumps(np.array([500.0, 0.0, 505.0]), 160.0) == 0
    assert count_depth_jumps(np.array([500.0, 900.0, 950.0]), 160.0) == 2
