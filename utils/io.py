from pathlib import Path
from typing import Union

import numpy as np

from utils.config import CSV_DELIMITER
from utils.logger import Logger

logger = Logger.get_logger("io")
np.set_printoptions(suppress=True, precision=6, linewidth=180)

PathLike = Union[str, Path]


# ============================================================================ #
# I/O: point clouds, intrinsics (no Open3D logic here)
# ============================================================================ #
def read_point_cloud_csv(
    path: PathLike, delimiter: str = CSV_DELIMITER
) -> np.ndarray:
    """
    Read cloud points from a delimited text file.
    Returns float32 array [Nx3]. Raises ValueError on a wrong column count.
    """
    p = Path(path)
    pts = np.loadtxt(p, delimiter=delimiter, dtype=np.float32, ndmin=2)
    if pts.size == 0:
        pts = pts.reshape(0, 3)
    if pts.shape[1] != 3:
        raise ValueError(f"{p}: expected 3 columns, got {pts.shape[1]}")
    logger.info(f"[PCD] loaded {pts.shape[0]} points from {p.name}")
    return pts


def read_intrinsics(path: PathLike) -> np.ndarray:
    """
    Read camera intrinsics (3 x 3 matrix, whitespace separated, no delimiters).
    Returns [[fx, 0, cx], [0, fy, cy], [0, 0, 1]] as float32.
    """
    p = Path(path)
    K = np.loadtxt(p, dtype=np.float32, ndmin=2)
    if K.shape != (3, 3):
        raise ValueError(f"{p}: expected 3x3 intrinsics, got {K.shape}")
    logger.info(
        f"[INTR] {p.name}: fx={K[0, 0]:.3f} fy={K[1, 1]:.3f} "
        f"cx={K[0, 2]:.3f} cy={K[1, 2]:.3f}"
    )
    return K


def save_point_cloud_csv(points: np.ndarray, path: PathLike) -> Path:
    """
    Write cloud points [Nx3] as CSV: full precision, ", " separated,
    no column alignment.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    pts = np.asarray(points)
    # shortest repr that round-trips the dtype
    fmt = "%.9g" if pts.dtype == np.float32 else "%.17g"
    np.savetxt(p, pts.reshape(-1, 3), fmt=fmt, delimiter=", ")
    logger.info(f"[PCD] wrote {pts.shape[0]} points to {p}")
    return p
