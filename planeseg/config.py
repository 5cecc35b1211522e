from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

from utils import config as ucfg
from utils.error_tracker import ConfigurationError
from utils.logger import Logger

LOG = Logger.get_logger("seg.cfg")

# ============================== CONSTANTS ====================================

# Lower clamp of the per-cell merge distance (same units as the cloud).
MIN_MERGE_DIST = 20.0

# camelCase file key -> dataclass field
KEY_MAP: Dict[str, str] = {
    "patchSize": "patch_size",
    "histogramBinsPerCoord": "histogram_bins_per_coord",
    "minCosAngleForMerge": "min_cos_angle_for_merge",
    "maxMergeDist": "max_merge_dist",
    "minRegionGrowingCandidateSize": "min_region_growing_candidate_size",
    "minRegionGrowingCellsActivated": "min_region_growing_cells_activated",
    "minRegionPlanarityScore": "min_region_planarity_score",
    "depthSigmaCoeff": "depth_sigma_coeff",
    "depthSigmaMargin": "depth_sigma_margin",
    "minPtsPerCell": "min_pts_per_cell",
    "depthDiscontinuityThreshold": "depth_discontinuity_threshold",
    "maxNumberDepthDiscontinuity": "max_number_depth_discontinuity",
}

REQUIRED_KEYS: Tuple[str, ...] = (
    "patchSize",
    "histogramBinsPerCoord",
    "minCosAngleForMerge",
    "maxMergeDist",
    "minRegionGrowingCandidateSize",
    "minRegionGrowingCellsActivated",
    "minRegionPlanarityScore",
)

# ============================== CONFIG TYPES =================================


@dataclass(frozen=True)
class SegmentationCfg:
    """Plane segmentation options (distances in cloud units, mm by default)."""

    # grid / seeding / growing
    patch_size: int = 12
    histogram_bins_per_coord: int = 20
    min_cos_angle_for_merge: float = 0.93
    max_merge_dist: float = 500.0
    min_region_growing_candidate_size: int = 5
    min_region_growing_cells_activated: int = 4
    min_region_planarity_score: float = 50.0
    # cell planarity test
    depth_sigma_coeff: float = 1.425e-6
    depth_sigma_margin: float = 10.0
    min_pts_per_cell: int = 3
    depth_discontinuity_threshold: float = 160.0
    max_number_depth_discontinuity: int = 1

    @property
    def nr_pts_per_cell(self) -> int:
        return self.patch_size * self.patch_size

    def validate(self) -> "SegmentationCfg":
        """Range checks; returns self so it can be chained."""
        if self.patch_size <= 0:
            raise ConfigurationError(f"patchSize must be > 0, got {self.patch_size}")
        if self.histogram_bins_per_coord <= 0:
            raise ConfigurationError(
                "histogramBinsPerCoord must be > 0, "
                f"got {self.histogram_bins_per_coord}"
            )
        if not -1.0 <= self.min_cos_angle_for_merge <= 1.0:
            raise ConfigurationError(
                "minCosAngleForMerge must be in [-1, 1], "
                f"got {self.min_cos_angle_for_merge}"
            )
        if self.max_merge_dist <= 0:
            raise ConfigurationError(
                f"maxMergeDist must be > 0, got {self.max_merge_dist}"
            )
        if self.min_region_growing_candidate_size < 1:
            raise ConfigurationError("minRegionGrowingCandidateSize must be >= 1")
        if self.min_region_growing_cells_activated < 1:
            raise ConfigurationError("minRegionGrowingCellsActivated must be >= 1")
        if self.min_pts_per_cell < 3:
            raise ConfigurationError("minPtsPerCell must be >= 3")
        if self.max_number_depth_discontinuity < 0:
            raise ConfigurationError("maxNumberDepthDiscontinuity must be >= 0")
        return self


@dataclass(frozen=True)
class RunCfg:
    """Top-level knobs for the command line runner."""

    # Inputs: either CSV clouds or depth images (+ intrinsics)
    clouds: Tuple[str, ...] = ()
    depths: Tuple[str, ...] = ()
    intrinsics_path: Optional[str] = None
    depth_scale: float = 1.0
    layout: Literal["image", "cells"] = "image"
    width: int = ucfg.CAMERA_FALLBACK.width
    height: int = ucfg.CAMERA_FALLBACK.height
    delimiter: str = ucfg.CSV_DELIMITER

    # Options
    config_path: Optional[str] = None

    # Outputs
    out_dir: str = str(ucfg.DATA_ROOT / ucfg.OUT_DIR_NAME)
    save_cloud_csv: bool = False
    show: bool = False
    log_level: str = "INFO"


# ============================== LOADING ======================================


def _coerce(name: str, value: Any, target: Any) -> Any:
    """Cast a raw option to the dataclass field type."""
    try:
        if isinstance(target, int):
            fv = float(value)
            if not fv.is_integer():
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            return int(fv)
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name}: cannot parse {value!r}") from e


def cfg_from_mapping(
    data: Mapping[str, Any], require_all: bool = True
) -> SegmentationCfg:
    """
    Build a SegmentationCfg from camelCase keys (as used in config files).
    The seven core options must be present unless ``require_all`` is False.
    """
    if require_all:
        missing = [k for k in REQUIRED_KEYS if k not in data]
        if missing:
            raise ConfigurationError(f"missing required options: {missing}")

    defaults = SegmentationCfg()
    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        field_name = KEY_MAP.get(key)
        if field_name is None:
            LOG.warning(f"[CFG] unknown option ignored: {key}")
            continue
        kwargs[field_name] = _coerce(key, value, getattr(defaults, field_name))
    return replace(defaults, **kwargs).validate()


def load_cfg(path: Path | str) -> SegmentationCfg:
    """Read options from a JSON file with camelCase keys."""
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"config not found: {p}")
    try:
        data = json.loads(p.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{p}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{p}: top-level JSON object expected")
    cfg = cfg_from_mapping(data)
    LOG.info(
        f"[CFG] {p.name}: patch={cfg.patch_size} bins={cfg.histogram_bins_per_coord} "
        f"cos={cfg.min_cos_angle_for_merge} maxDist={cfg.max_merge_dist}"
    )
    return cfg


def cfg_to_mapping(cfg: SegmentationCfg) -> Dict[str, Any]:
    """Inverse of cfg_from_mapping (camelCase keys)."""
    inv = {v: k for k, v in KEY_MAP.items()}
    return {inv[f.name]: getattr(cfg, f.name) for f in fields(cfg)}


def save_cfg(cfg: SegmentationCfg, path: Path | str) -> Path:
    """Write the effective options as camelCase JSON (loadable by load_cfg)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg_to_mapping(cfg), indent=2))
    LOG.info(f"[CFG] options -> {p}")
    return p
