from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import numpy as np


# ============================== CORE DATATYPES ===============================


@dataclass(frozen=True)
class CameraDefaults:
    """Fallback pinhole intrinsics (used if no intrinsics file is given)."""

    width: int
    height: int
    fx: float
    fy: float
    cx: float
    cy: float

    def as_matrix(self) -> np.ndarray:
        """3x3 pinhole matrix [[fx, 0, cx], [0, fy, cy], [0, 0, 1]]."""
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float32,
        )


# ============================== PROJECT DEFAULTS =============================

# Where input frames live (code can override this)
DATA_ROOT: Path = Path(".data_clouds")

# Output folder for planes.json / labels / colored clouds, relative to DATA_ROOT
OUT_DIR_NAME: str = "planes"

# JSON file with segmentation options (camelCase keys), looked up in DATA_ROOT
# when no --config is given.
SEG_CONFIG_JSON: str = "seg_config.json"

# Fallback intrinsics (TUM RGB-D fr3 style VGA sensor). Do NOT do IO here.
CAMERA_FALLBACK = CameraDefaults(
    width=640,
    height=480,
    fx=535.4,
    fy=539.2,
    cx=320.1,
    cy=247.6,
)

CSV_DELIMITER: str = ","
