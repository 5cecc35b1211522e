from __future__ import annotations

import colorsys

import numpy as np

from .logger import Logger, SuppressO3DInfo

# ============================================================================ #
# Logger / numpy
# ============================================================================ #
logger = Logger.get_logger("helpers")
np.set_printoptions(suppress=True, precision=6, linewidth=180)


def fmt_array(v) -> str:
    """Pretty numpy one-liner for logs."""
    return np.array2string(np.asarray(v), separator=", ")


# ============================================================================ #
# Colors
# ============================================================================ #
def distinct_colors(n: int) -> np.ndarray:
    """n well separated RGB colors in [0, 1], golden-ratio hue walk."""
    if n <= 0:
        return np.empty((0, 3), np.float64)
    hue = (np.arange(n) * 0.618033988749895) % 1.0
    cols = [colorsys.hsv_to_rgb(h, 0.65, 0.95) for h in hue]
    return np.asarray(cols, np.float64)


def label_palette(nr_labels: int) -> np.ndarray:
    """(nr_labels + 1) x 3 float palette; row 0 (unassigned) is gray."""
    pal = np.full((nr_labels + 1, 3), 0.5, dtype=np.float64)
    if nr_labels > 0:
        pal[1:] = distinct_colors(nr_labels)
    return pal


# ============================================================================ #
# Log sinks helpers re-exports
# ============================================================================ #
def suppress_o3d_info() -> SuppressO3DInfo:
    """
    Context manager: suppresses noisy console outputs from libs that print to
    stdout/stderr (e.g. Open3D). No dependency on Open3D here.
    """
    return SuppressO3DInfo()
