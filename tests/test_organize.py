import numpy as np
import pytest

from planeseg.organize import (
    depth_to_points,
    labels_to_pixels,
    organize_by_cells,
)
from utils.error_tracker import FittingError


def _pixel_ids(width: int, height: int) -> np.ndarray:
    """Image-ordered cloud whose x holds the pixel index."""
    ids = np.arange(width * height, dtype=np.float64)
    return np.stack([ids, np.zeros_like(ids), np.ones_like(ids)], axis=-1)


def test_organize_by_cells_orders_blocks_row_major() -> None:
    # given: 4x4 image, 2px cells -> 2x2 grid
    pts = _pixel_ids(4, 4)

    # when
    cells = organize_by_cells(pts, 4, 4, 2)

    # then
    order = cells[:, 0].astype(int).tolist()
    assert order == [0, 1, 4, 5, 2, 3, 6, 7, 8, 9, 12, 13, 10, 11, 14, 15]


def test_organize_by_cells_crops_border() -> None:
    # given: 5x3 image, 2px cells -> 2x1 grid, last column and row dropped
    pts = _pixel_ids(5, 3)

    # when
    cells = organize_by_cells(pts, 5, 3, 2)

    # then
    assert cells.shape == (8, 3)
    assert cells[:, 0].astype(int).tolist() == [0, 1, 5, 6, 2, 3, 7, 8]


def test_organize_by_cells_rejects_size_mismatch() -> None:
    with pytest.raises(FittingError):
        _ = organize_by_cells(np.zeros((15, 3)), 4, 4, 2)
    with pytest.raises(FittingError):
        _ = organize_by_cells(np.zeros((16, 2)), 4, 4, 2)


def test_labels_to_pixels_repeats_each_cell() -> None:
    # given
    labels = np.array([[1, 0], [2, 2]], dtype=np.int32)

    # when
    pix = labels_to_pixels(labels, 3)

    # then
    assert pix.shape == (6, 6)
    assert (pix[:3, :3] == 1).all()
    assert (pix[:3, 3:] == 0).all()
    assert (pix[3:] == 2).all()


def test_depth_to_points_back_projects() -> None:
    # given
    depth = np.array([[100.0, 0.0, 200.0], [np.nan, 50.0, -3.0]])
    K = np.array([[10.0, 0.0, 1.0], [0.0, 20.0, 0.0], [0.0, 0.0, 1.0]])

    # when
    pts, (w, h) = depth_to_points(depth, K, depth_scale=2.0)

    # then
    assert (w, h) == (3, 2)
    assert pts.dtype == np.float32
    assert pts.shape == (6, 3)
    assert pts[0] == pytest.approx([-20.0, 0.0, 200.0])
    assert pts[2] == pytest.approx([40.0, 0.0, 400.0])
    assert pts[4] == pytest.approx([0.0, 5.0, 100.0])
    for invalid in (1, 3, 5):
        assert (pts[invalid] == 0.0).all()


def test_depth_to_points_rejects_non_image() -> None:
    with pytest.raises(ValueError):
        _ = depth_to_points(np.zeros(5), np.eye(3))
