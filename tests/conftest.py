from typing import Callable

import numpy as np
import pytest

from utils.logger import Logger

Logger.configure(level="WARNING", to_file=False)

from planeseg.config import SegmentationCfg  # noqa: E402
from planeseg.organize import organize_by_cells  # noqa: E402

DepthFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


@pytest.fixture
def seg_cfg() -> SegmentationCfg:
    return SegmentationCfg(
        patch_size=4,
        histogram_bins_per_coord=20,
        min_cos_angle_for_merge=0.9,
        max_merge_dist=500.0,
        min_region_growing_candidate_size=2,
        min_region_growing_cells_activated=2,
        min_region_planarity_score=50.0,
    )


@pytest.fixture
def image_cloud() -> Callable[..., np.ndarray]:
    """Image-ordered [H*W x 3] cloud with x = u*spacing, y = v*spacing, z = fn(x, y)."""

    def _make(width: int, height: int, depth_fn: DepthFn, spacing: float = 1.0):
        u, v = np.meshgrid(np.arange(width), np.arange(height))
        x = u.astype(np.float64) * spacing
        y = v.astype(np.float64) * spacing
        z = np.asarray(depth_fn(x, y), dtype=np.float64)
        return np.stack([x, y, z], axis=-1).reshape(-1, 3)

    return _make


@pytest.fixture
def cell_cloud(image_cloud) -> Callable[..., np.ndarray]:
    """Same as image_cloud but already in cell order."""

    def _make(
        width: int, height: int, patch_size: int, depth_fn: DepthFn, spacing: float = 1.0
    ):
        pts = image_cloud(width, height, depth_fn, spacing)
        return organize_by_cells(pts, width, height, patch_size)

    return _make

