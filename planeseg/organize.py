"""Conversions between image-ordered clouds, depth images and cell order."""
from __future__ import annotations

from typing import Tuple

import numpy as np

from utils.error_tracker import FittingError
from utils.logger import Logger

from .grid import CellGrid

LOG = Logger.get_logger("seg.org")


def _grid_for(width: int, height: int, patch_size: int) -> CellGrid:
    return CellGrid.from_image(height, width, patch_size)


def organize_by_cells(
    points: np.ndarray, width: int, height: int, patch_size: int
) -> np.ndarray:
    """
    Image-ordered [H*W x 3] cloud -> cell-ordered [cells*patch^2 x 3].
    Border pixels that do not fill a whole cell are dropped.
    """
    P = np.asarray(points)
    if P.ndim != 2 or P.shape[1] != 3:
        raise FittingError(f"point cloud must be [Nx3], got {P.shape}")
    if P.shape[0] != width * height:
        raise FittingError(
            f"cloud has {P.shape[0]} points, image {width}x{height} needs {width * height}"
        )
    g = _grid_for(width, height, patch_size)
    ps = patch_size
    img = P.reshape(height, width, 3)[: g.nr_vertical_cells * ps, : g.nr_horizontal_cells * ps]
    blocks = img.reshape(g.nr_vertical_cells, ps, g.nr_horizontal_cells, ps, 3)
    return np.ascontiguousarray(blocks.transpose(0, 2, 1, 3, 4)).reshape(-1, 3)


def labels_to_pixels(labels: np.ndarray, patch_size: int) -> np.ndarray:
    """Cell label map -> per-pixel label image of the cropped grid area."""
    L = np.asarray(labels)
    return np.repeat(np.repeat(L, patch_size, axis=0), patch_size, axis=1)


def depth_to_points(
    depth: np.ndarray, intrinsics: np.ndarray, depth_scale: float = 1.0
) -> Tuple[np.ndarray, Tuple[int, int]]:
    """
    Back-project a depth image with a 3x3 pinhole matrix.
    Returns (image-ordered [H*W x 3] float32 cloud, (width, height)).
    Invalid depth (non finite or <= 0) gives an all-zero point.
    """
    D = np.asarray(depth, dtype=np.float64)
    if D.ndim != 2:
        raise ValueError(f"depth must be 2D, got {D.shape}")
    K = np.asarray(intrinsics, dtype=np.float64)
    fx, fy, cx, cy = K[0, 0], K[1, 1], K[0, 2], K[1, 2]
    h, w = D.shape
    z = D * depth_scale
    z = np.where(np.isfinite(z) & (z > 0), z, 0.0)
    u, v = np.meshgrid(np.arange(w, dtype=np.float64), np.arange(h, dtype=np.float64))
    x = (u - cx) * z / fx
    y = (v - cy) * z / fy
    pts = np.stack([x, y, z], axis=-1).reshape(-1, 3).astype(np.float32)
    LOG.debug(f"[DEPTH] {w}x{h}, valid {int(np.count_nonzero(z))}")
    return pts, (w, h)
