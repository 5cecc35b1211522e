"""Per-cell plane model with mergeable first/second order statistics."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import numpy as np

from utils.error_tracker import FittingError

from .config import SegmentationCfg


@dataclass(frozen=True)
class PlaneSegment:
    """Accepted plane: n . x + d = 0 with unit normal n."""

    normal: np.ndarray
    d: float
    mean: np.ndarray
    mse: float
    score: float
    nr_pts: int
    nr_cells: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "normal": [float(c) for c in self.normal],
            "d": float(self.d),
            "mean": [float(c) for c in self.mean],
            "mse": float(self.mse),
            "score": float(self.score) if np.isfinite(self.score) else None,
            "nr_pts": int(self.nr_pts),
            "nr_cells": int(self.nr_cells),
        }


def count_depth_jumps(z: np.ndarray, threshold: float) -> int:
    """
    Walk valid depths (z > 0) in order; a value differing from the last
    accepted one by >= threshold is a jump and is not accepted.
    """
    z = z[z > 0]
    if z.size < 2:
        return 0
    jumps = 0
    last = z[0]
    for v in z[1:]:
        if abs(v - last) < threshold:
            last = v
        else:
            jumps += 1
    return jumps


class CellModel:
    """
    Plane fitted to a set of points through accumulated sums.

    ``merge`` adds sums (commutative and associative); ``finalize``
    recomputes mean, normal, offset, MSE and score from them.
    """

    def __init__(self) -> None:
        self.nr_pts = 0
        self._sum = np.zeros(3, dtype=np.float64)
        self._sq = np.zeros((3, 3), dtype=np.float64)
        self.mean = np.zeros(3, dtype=np.float64)
        self.normal = np.zeros(3, dtype=np.float64)
        self.d = 0.0
        self.mse = np.inf
        self.score = 0.0
        self.planar = False

    # ---------------------------------------------------------------- fitting

    @classmethod
    def fit(cls, points: np.ndarray, cfg: SegmentationCfg) -> "CellModel":
        """
        Fit one cell block (patch_size**2 rows, row-major inside the cell).
        Invalid points (non finite, z <= 0) are ignored; a cell with too few
        valid points or with depth jumps is returned non-planar.
        """
        P = np.asarray(points, dtype=np.float64)
        if P.ndim != 2 or P.shape[1] != 3:
            raise FittingError(f"cell points must be [Nx3], got {P.shape}")
        if P.shape[0] == 0:
            raise FittingError("cell has no points")
        if P.shape[0] != cfg.nr_pts_per_cell:
            raise FittingError(
                f"cell has {P.shape[0]} points, expected {cfg.nr_pts_per_cell}"
            )

        model = cls()
        valid = np.isfinite(P).all(axis=1) & (P[:, 2] > 0)
        nr_valid = int(np.count_nonzero(valid))
        if nr_valid < max(cfg.min_pts_per_cell, P.shape[0] // 2):
            return model

        side = cfg.patch_size
        z = np.where(valid, P[:, 2], 0.0).reshape(side, side)
        mid = side // 2
        thr = cfg.depth_discontinuity_threshold
        max_jumps = cfg.max_number_depth_discontinuity
        if count_depth_jumps(z[mid, :], thr) > max_jumps:
            return model
        if count_depth_jumps(z[:, mid], thr) > max_jumps:
            return model

        model.accumulate(P[valid])
        model.finalize()
        z_mean = model.mean[2]
        max_mse = (cfg.depth_sigma_coeff * z_mean * z_mean + cfg.depth_sigma_margin) ** 2
        model.planar = bool(model.mse <= max_mse)
        return model

    def accumulate(self, points: np.ndarray) -> None:
        P = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        self.nr_pts += P.shape[0]
        self._sum += P.sum(axis=0)
        self._sq += P.T @ P

    def is_planar(self) -> bool:
        return self.planar

    # ---------------------------------------------------------------- merging

    def merge(self, other: "CellModel") -> "CellModel":
        self.nr_pts += other.nr_pts
        self._sum += other._sum
        self._sq += other._sq
        return self

    def finalize(self) -> float:
        """Recompute the plane from the sums; returns the planarity score."""
        if self.nr_pts < 3:
            raise FittingError(f"cannot fit a plane to {self.nr_pts} points")
        n = float(self.nr_pts)
        self.mean = self._sum / n
        cov = self._sq / n - np.outer(self.mean, self.mean)
        evals, evecs = np.linalg.eigh(cov)
        evals = np.clip(evals, 0.0, None)
        normal = evecs[:, 0]
        # normal points away from the sensor origin, so d <= 0
        if float(normal @ self.mean) < 0:
            normal = -normal
        self.normal = normal / np.linalg.norm(normal)
        self.d = -float(self.normal @ self.mean)
        self.mse = float(evals[0])
        self.score = float(evals[1] / evals[0]) if evals[0] > 0 else np.inf
        return self.score

    def to_segment(self, nr_cells: int) -> PlaneSegment:
        return PlaneSegment(
            normal=self.normal.copy(),
            d=self.d,
            mean=self.mean.copy(),
            mse=self.mse,
            score=self.score,
            nr_pts=self.nr_pts,
            nr_cells=int(nr_cells),
        )
