from __future__ import annotations

import argparse
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from utils.config import CAMERA_FALLBACK, DATA_ROOT, SEG_CONFIG_JSON
from utils.error_tracker import ErrorTracker, SegmentationError
from utils.io import read_intrinsics, read_point_cloud_csv, save_point_cloud_csv
from utils.logger import Logger

from .config import RunCfg, SegmentationCfg, load_cfg, save_cfg
from .export import export_result
from .organize import depth_to_points, organize_by_cells
from .segmenter import PlaneSegmenter, SegmentationResult
from .viz import draw_segments

LOG = Logger.get_logger("main")

FrameLoader = Callable[[], Tuple[np.ndarray, int, int]]
Frame = Tuple[str, FrameLoader, str]


# ============================== HELPERS ======================================


def _load_depth(path: Path) -> np.ndarray:
    """Read <name>.npy or a 16-bit depth PNG."""
    if path.suffix == ".npy":
        return np.load(path)
    import cv2

    depth = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if depth is None:
        raise FileNotFoundError(f"cannot read depth image {path}")
    return depth


def _load_seg_cfg(config_path: Optional[str]) -> SegmentationCfg:
    """Explicit config, else DATA_ROOT/seg_config.json, else defaults."""
    if config_path:
        return load_cfg(config_path)
    default_path = DATA_ROOT / SEG_CONFIG_JSON
    if default_path.exists():
        return load_cfg(default_path)
    LOG.info("[CFG] no config file, using defaults")
    return SegmentationCfg()


def _load_cloud_frame(path: Path, cfg: RunCfg) -> Tuple[np.ndarray, int, int]:
    return read_point_cloud_csv(path, cfg.delimiter), cfg.width, cfg.height


def _load_depth_frame(path: Path, cfg: RunCfg) -> Tuple[np.ndarray, int, int]:
    K = (
        read_intrinsics(cfg.intrinsics_path)
        if cfg.intrinsics_path
        else CAMERA_FALLBACK.as_matrix()
    )
    pts, (w, h) = depth_to_points(_load_depth(path), K, cfg.depth_scale)
    return pts, w, h


def _iter_frames(cfg: RunCfg) -> Iterator[Frame]:
    """(stem, loader, layout) per input; nothing is read until loader() runs."""
    for p in map(Path, cfg.clouds):
        yield p.stem, partial(_load_cloud_frame, p, cfg), cfg.layout
    for p in map(Path, cfg.depths):
        yield p.stem, partial(_load_depth_frame, p, cfg), "image"


def segment_frame(
    segmenter: PlaneSegmenter,
    points: np.ndarray,
    width: int,
    height: int,
    layout: str = "image",
) -> Tuple[np.ndarray, SegmentationResult]:
    """Organize one cloud by cells (if needed) and segment it."""
    if layout == "image":
        pcd = organize_by_cells(points, width, height, segmenter.cfg.patch_size)
    else:
        pcd = np.asarray(points)
    return pcd, segmenter.process(pcd)


# ============================== RUN ==========================================


def run(cfg: RunCfg) -> List[SegmentationResult]:
    """
    Entry point: configure logging, install ErrorTracker, segment every frame.
    A frame that fails is reported and skipped.
    """
    Logger.configure(level=cfg.log_level)
    ErrorTracker.install_excepthook()
    ErrorTracker.install_signal_handlers()

    seg_cfg = _load_seg_cfg(cfg.config_path)
    out_dir = Path(cfg.out_dir)
    save_cfg(seg_cfg, out_dir / f"{Path(SEG_CONFIG_JSON).stem}_used.json")
    segmenters: Dict[Tuple[int, int], PlaneSegmenter] = {}
    results: List[SegmentationResult] = []
    nr_inputs = len(cfg.clouds) + len(cfg.depths)
    LOG.info(f"[START] {nr_inputs} frame(s) -> {out_dir}")

    for stem, load, layout in Logger.progress(
        _iter_frames(cfg), desc="frames", total=nr_inputs, unit="frame"
    ):
        try:
            points, width, height = load()
            key = (width, height)
            if key not in segmenters:
                segmenters[key] = PlaneSegmenter(height, width, seg_cfg)
            segmenter = segmenters[key]
            pcd, result = segment_frame(segmenter, points, width, height, layout)
        except (SegmentationError, ValueError, OSError) as e:
            LOG.error(f"[{stem}] frame skipped: {type(e).__name__}")
            ErrorTracker.report(e)
            continue

        results.append(result)
        cloud = export_result(result, pcd, segmenter.grid.nr_pts_per_cell, out_dir, stem)
        if cfg.save_cloud_csv:
            save_point_cloud_csv(pcd, out_dir / f"{stem}_cells.csv")
        if cfg.show:
            draw_segments(cloud, title=f"{stem}: {result.nr_planes} planes")

    LOG.info(f"[DONE] {len(results)}/{nr_inputs} frame(s) segmented")
    if Logger.log_file():
        LOG.info(f"[DONE] log: {Logger.log_file()}")
    return results


def parse_args(argv: Optional[Sequence[str]] = None) -> RunCfg:
    ap = argparse.ArgumentParser(
        description="Grid-cell plane segmentation of organized point clouds"
    )
    ap.add_argument("--cloud", nargs="*", default=[], help="CSV clouds [Nx3]")
    ap.add_argument("--depth", nargs="*", default=[], help="depth images (.npy/.png)")
    ap.add_argument("--intrinsics", default=None, help="3x3 intrinsics text file")
    ap.add_argument("--depth-scale", type=float, default=1.0)
    ap.add_argument("--width", type=int, default=CAMERA_FALLBACK.width)
    ap.add_argument("--height", type=int, default=CAMERA_FALLBACK.height)
    ap.add_argument(
        "--layout",
        choices=("image", "cells"),
        default="image",
        help="row order of --cloud inputs",
    )
    ap.add_argument("--delimiter", default=",")
    ap.add_argument("--config", default=None, help="JSON options (camelCase keys)")
    ap.add_argument("--out", default=RunCfg.out_dir)
    ap.add_argument("--save-cells-csv", action="store_true")
    ap.add_argument("--show", action="store_true")
    ap.add_argument("--log-level", default="INFO")
    a = ap.parse_args(argv)
    if not a.cloud and not a.depth:
        ap.error("at least one --cloud or --depth input is required")
    return RunCfg(
        clouds=tuple(a.cloud),
        depths=tuple(a.depth),
        intrinsics_path=a.intrinsics,
        depth_scale=a.depth_scale,
        layout=a.layout,
        width=a.width,
        height=a.height,
        delimiter=a.delimiter,
        config_path=a.config,
        out_dir=a.out,
        save_cloud_csv=a.save_cells_csv,
        show=a.show,
        log_level=a.log_level,
    )


def _main() -> None:
    """Module runner for `python -m planeseg.main`."""
    run(parse_args())


if __name__ == "__main__":
    _main()
