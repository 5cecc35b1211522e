"""2D histogram of cell normals in spherical coordinates, indexed by cell id."""
from __future__ import annotations

import math

import numpy as np

from utils.logger import Logger

LOG = Logger.get_logger("seg.hist")


def normals_to_spherical(normals: np.ndarray) -> np.ndarray:
    """
    [Nx3] unit normals -> [Nx2] (polar, azimuth).
    polar = acos(-nz) in [0, pi]; azimuth = atan2(nx/r, ny/r) in [-pi, pi],
    r the xy-projection norm; azimuth is 0 when r == 0.
    """
    N = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    polar = np.arccos(np.clip(-N[:, 2], -1.0, 1.0))
    r = np.hypot(N[:, 0], N[:, 1])
    az = np.zeros(N.shape[0], dtype=np.float64)
    ok = r > 0
    az[ok] = np.arctan2(N[ok, 0] / r[ok], N[ok, 1] / r[ok])
    return np.stack([polar, az], axis=1)


class NormalHistogram:
    """
    Bins over (polar, azimuth) with ``nr_bins_per_coord`` bins per axis.

    Only flagged cells are binned. Near the poles the azimuth is meaningless,
    so the first and last polar rows collapse onto azimuth bin 0.
    """

    def __init__(
        self,
        nr_bins_per_coord: int,
        spherical_coord: np.ndarray,
        flags: np.ndarray,
    ) -> None:
        nb = int(nr_bins_per_coord)
        self.nr_bins_per_coord = nb
        flags = np.asarray(flags, dtype=bool)
        coords = np.asarray(spherical_coord, dtype=np.float64).reshape(-1, 2)

        self._bin_of = np.full(flags.shape[0], -1, dtype=np.int64)
        self._counts = np.zeros(nb * nb, dtype=np.int64)

        ids = np.flatnonzero(flags)
        if ids.size == 0:
            return
        polar = coords[ids, 0]
        az = coords[ids, 1]
        p_bin = np.minimum((nb * polar / math.pi).astype(np.int64), nb - 1)
        a_bin = np.minimum((nb * (az + math.pi) / (2 * math.pi)).astype(np.int64), nb - 1)
        p_bin = np.clip(p_bin, 0, nb - 1)
        a_bin = np.clip(a_bin, 0, nb - 1)
        a_bin[(p_bin == 0) | (p_bin == nb - 1)] = 0

        bins = a_bin * nb + p_bin
        self._bin_of[ids] = bins
        np.add.at(self._counts, bins, 1)
        LOG.debug(
            f"[HIST] {ids.size} cells in {int(np.count_nonzero(self._counts))} bins"
        )

    def __len__(self) -> int:
        return int(self._counts.sum())

    def bin_of(self, cell_id: int) -> int:
        """Bin index of a cell, -1 if not (or no longer) binned."""
        return int(self._bin_of[cell_id])

    def most_populated_bin(self) -> int:
        """Index of the fullest bin (lowest index on ties), -1 if empty."""
        if self._counts.size == 0 or self._counts.max() == 0:
            return -1
        return int(np.argmax(self._counts))

    def most_populated_bin_members(self) -> np.ndarray:
        """Cell ids of the fullest bin, ascending; empty if nothing is left."""
        b = self.most_populated_bin()
        if b < 0:
            return np.zeros(0, dtype=np.int64)
        return np.flatnonzero(self._bin_of == b)

    def remove(self, cell_id: int) -> None:
        """Drop a cell from its bin; no-op if it is not binned."""
        b = self._bin_of[cell_id]
        if b < 0:
            return
        self._counts[b] -= 1
        self._bin_of[cell_id] = -1
