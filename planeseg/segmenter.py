"""
Grid-cell plane segmentation of organized point clouds.

The cloud is split into square cells, a plane is fitted per cell, planar
cells are binned by normal direction and regions are grown from the
lowest-MSE cell of the fullest bin. Growth is chain-wise: each candidate is
checked against the cell it was reached from, not against the seed.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from utils.error_tracker import FittingError, InvariantViolation
from utils.helpers import fmt_array
from utils.logger import Logger

from .cell import CellModel, PlaneSegment
from .config import MIN_MERGE_DIST, SegmentationCfg
from .grid import CellGrid
from .histogram import NormalHistogram, normals_to_spherical

LOG = Logger.get_logger("seg.core")


@dataclass(frozen=True)
class SegmentationResult:
    planes: List[PlaneSegment]
    labels: np.ndarray  # (vertical, horizontal) int32, 0 = unassigned
    planar_flags: np.ndarray  # (nr_total_cells,) bool
    elapsed_ms: float = 0.0

    @property
    def nr_planes(self) -> int:
        return len(self.planes)


def select_seed(candidates: Sequence[int], cell_mse: np.ndarray) -> int:
    """Candidate with the smallest MSE; first one wins on ties."""
    seed_id = int(candidates[0])
    min_mse = np.inf
    for cand in candidates:
        if cell_mse[cand] < min_mse:
            seed_id = int(cand)
            min_mse = cell_mse[cand]
    return seed_id


class PlaneSegmenter:
    """
    Segmentation engine for clouds of one image size.

    ``process`` expects the cloud in cell order: consecutive blocks of
    patch_size**2 points, one per cell, cells in raster order
    (see ``planeseg.organize.organize_by_cells``). Not reentrant.
    """

    def __init__(
        self,
        image_height: int,
        image_width: int,
        cfg: Optional[SegmentationCfg] = None,
    ) -> None:
        self.cfg = (cfg or SegmentationCfg()).validate()
        self.grid = CellGrid.from_image(image_height, image_width, self.cfg.patch_size)
        self._cells: List[CellModel] = []
        self.labels = np.zeros(self.grid.shape, dtype=np.int32)
        LOG.info(
            f"[INIT] image {image_width}x{image_height} -> "
            f"{self.grid.nr_horizontal_cells}x{self.grid.nr_vertical_cells} cells "
            f"of {self.cfg.patch_size}px"
        )

    # ------------------------------------------------------------------ driver

    def process(self, pcd_array: np.ndarray) -> SegmentationResult:
        t0 = time.perf_counter()
        pcd = self._check_cloud(pcd_array)
        # 1. Planar cell fitting
        planar_flags = self.find_planar_cells(pcd)
        # 2. Histogram initialization
        hist = self.init_histogram(planar_flags)
        # 3. Cell merge distance tolerances
        cell_dist_tols = self.compute_cell_dist_tols(pcd, planar_flags)
        # 4. Region growing
        planes = self.create_plane_segments(hist, planar_flags, cell_dist_tols)

        elapsed = (time.perf_counter() - t0) * 1000.0
        LOG.info(
            f"[SEG] planar cells {int(planar_flags.sum())}/{self.grid.nr_total_cells}, "
            f"planes {len(planes)}, {elapsed:.1f} ms"
        )
        return SegmentationResult(
            planes=planes,
            labels=self.labels.copy(),
            planar_flags=planar_flags,
            elapsed_ms=elapsed,
        )

    def _check_cloud(self, pcd_array: np.ndarray) -> np.ndarray:
        pcd = np.asarray(pcd_array)
        if pcd.ndim != 2 or pcd.shape[1] != 3:
            raise FittingError(f"point cloud must be [Nx3], got {pcd.shape}")
        expected = self.grid.nr_total_cells * self.grid.nr_pts_per_cell
        if pcd.shape[0] > expected:
            LOG.warning(
                f"[SEG] cloud has {pcd.shape[0]} points, grid uses {expected}; "
                "extra points ignored"
            )
            pcd = pcd[:expected]
        return pcd

    # ------------------------------------------------------------ classifying

    def find_planar_cells(self, pcd: np.ndarray) -> np.ndarray:
        """Fit every cell in raster order; returns the planar flag array."""
        total = self.grid.nr_total_cells
        planar_flags = np.zeros(total, dtype=bool)
        cells: List[CellModel] = []
        for cell_id in range(total):
            try:
                model = CellModel.fit(pcd[self.grid.block_slice(cell_id)], self.cfg)
            except FittingError as e:
                raise FittingError(f"cell {cell_id}: {e}") from e
            cells.append(model)
            planar_flags[cell_id] = model.is_planar()
        self._cells = cells
        return planar_flags

    def init_histogram(self, planar_flags: np.ndarray) -> NormalHistogram:
        spherical = np.zeros((self.grid.nr_total_cells, 2), dtype=np.float64)
        ids = np.flatnonzero(planar_flags)
        if ids.size:
            normals = np.stack([self._cells[i].normal for i in ids])
            spherical[ids] = normals_to_spherical(normals)
        return NormalHistogram(self.cfg.histogram_bins_per_coord, spherical, planar_flags)

    def compute_cell_dist_tols(
        self, pcd: np.ndarray, planar_flags: np.ndarray
    ) -> np.ndarray:
        """Squared merge distance per cell (0 for non-planar cells)."""
        tols = np.zeros(self.grid.nr_total_cells, dtype=np.float64)
        ids = np.flatnonzero(planar_flags)
        if ids.size == 0:
            return tols
        cos_angle = self.cfg.min_cos_angle_for_merge
        sin_angle = math.sqrt(max(0.0, 1.0 - cos_angle * cos_angle))
        ppc = self.grid.nr_pts_per_cell
        first = np.asarray(pcd[ids * ppc], dtype=np.float64)
        last = np.asarray(pcd[ids * ppc + ppc - 1], dtype=np.float64)
        # first-to-last point distance approximates the cell diagonal
        diameter = np.linalg.norm(last - first, axis=1)
        diameter = np.where(np.isfinite(diameter), diameter, 0.0)
        truncated = np.minimum(
            np.maximum(diameter * sin_angle, MIN_MERGE_DIST), self.cfg.max_merge_dist
        )
        tols[ids] = truncated * truncated
        return tols

    # ---------------------------------------------------------------- growing

    def create_plane_segments(
        self,
        hist: NormalHistogram,
        planar_flags: np.ndarray,
        cell_dist_tols: np.ndarray,
    ) -> List[PlaneSegment]:
        cfg = self.cfg
        total = self.grid.nr_total_cells
        plane_segments: List[PlaneSegment] = []
        unassigned = planar_flags.copy()
        remaining = int(np.count_nonzero(planar_flags))
        cell_mse = np.array([c.mse for c in self._cells], dtype=np.float64)
        self.labels[:] = 0

        while remaining > 0:
            # 1. Seeding
            candidates = hist.most_populated_bin_members()
            if candidates.size < cfg.min_region_growing_candidate_size:
                LOG.debug(
                    f"[GROW] {candidates.size} seed candidates left, stop "
                    f"({remaining} planar cells unassigned)"
                )
                break
            # 2. Seed with minimum MSE
            seed_id = select_seed(candidates, cell_mse)
            # 3. Grow seed
            row, col = self.grid.row_col(seed_id)
            activation = np.zeros(total, dtype=bool)
            self.grow_seed(col, row, seed_id, unassigned, activation, cell_dist_tols)
            # 4. Merge activated cells & remove from histogram
            activated = np.flatnonzero(activation)
            segment = self._cells[seed_id]
            for cell_id in activated:
                # the seed already holds its own points
                if cell_id != seed_id:
                    segment.merge(self._cells[cell_id])
                hist.remove(cell_id)
                remaining -= 1
            unassigned &= ~activation

            if activated.size < cfg.min_region_growing_cells_activated:
                LOG.debug(f"[GROW] seed {seed_id}: {activated.size} cells, dropped")
                continue

            # 5. Model fitting
            score = segment.finalize()
            if score > cfg.min_region_planarity_score:
                plane_segments.append(segment.to_segment(activated.size))
                self.labels.flat[activated] = len(plane_segments)
                LOG.debug(
                    f"[GROW] seed {seed_id}: plane #{len(plane_segments)} "
                    f"{activated.size} cells score={score:.1f} "
                    f"n={fmt_array(segment.normal)}"
                )
            else:
                LOG.debug(
                    f"[GROW] seed {seed_id}: score {score:.1f} too low, dropped"
                )

        return plane_segments

    def grow_seed(
        self,
        x: int,
        y: int,
        prev_index: int,
        unassigned: np.ndarray,
        activation_map: np.ndarray,
        cell_dist_tols: np.ndarray,
    ) -> None:
        """
        Activate the 4-connected region reachable from cell (x=col, y=row).
        A candidate joins when its normal is within the merge angle of the
        cell it was reached from and its mean lies within its own distance
        tolerance of that cell's plane. ``activation_map`` is filled in place.
        """
        grid = self.grid
        total = grid.nr_total_cells
        if not grid.contains(y, x):
            raise InvariantViolation(f"grow_seed: cell ({y}, {x}) outside the grid")
        min_cos = self.cfg.min_cos_angle_for_merge

        stack = [(grid.cell_id(y, x), prev_index)]
        while stack:
            index, prev = stack.pop()
            if not 0 <= index < total:
                raise InvariantViolation(
                    f"grow_seed: index {index} out of total cell number {total}"
                )
            if not unassigned[index] or activation_map[index]:
                continue

            if index != prev:
                prev_cell = self._cells[prev]
                cell = self._cells[index]
                cos_angle = float(prev_cell.normal @ cell.normal)
                merge_dist = (float(prev_cell.normal @ cell.mean) + prev_cell.d) ** 2
                if cos_angle < min_cos or merge_dist > cell_dist_tols[index]:
                    continue

            activation_map[index] = True
            for nb in grid.neighbors(index):
                stack.append((nb, index))
