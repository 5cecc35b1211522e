from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Dict

import numpy as np
import open3d as o3d

from utils.helpers import label_palette, suppress_o3d_info
from utils.logger import Logger

from .organize import labels_to_pixels
from .segmenter import SegmentationResult

LOG = Logger.get_logger("seg.exp")


def point_labels(labels: np.ndarray, nr_pts_per_cell: int) -> np.ndarray:
    """Per-point labels for a cell-ordered cloud."""
    return np.repeat(np.asarray(labels).reshape(-1), nr_pts_per_cell)


def make_segments_cloud(
    pcd_cells: np.ndarray, labels: np.ndarray, nr_pts_per_cell: int
) -> o3d.geometry.PointCloud:
    """Valid points of a cell-ordered cloud, colored by plane label."""
    P = np.asarray(pcd_cells, dtype=np.float64)
    lab = point_labels(labels, nr_pts_per_cell)
    P = P[: lab.size]
    keep = np.isfinite(P).all(axis=1) & (P[:, 2] > 0)
    pal = label_palette(int(lab.max()) if lab.size else 0)
    cloud = o3d.geometry.PointCloud()
    cloud.points = o3d.utility.Vector3dVector(P[keep])
    cloud.colors = o3d.utility.Vector3dVector(pal[lab[keep]])
    return cloud


def save_planes_json(result: SegmentationResult, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    data: Dict = {
        "count": result.nr_planes,
        "planar_cells": int(np.count_nonzero(result.planar_flags)),
        "grid": list(result.labels.shape),
        "elapsed_ms": round(result.elapsed_ms, 3),
        "planes": [p.as_dict() for p in result.planes],
    }
    path.write_text(json.dumps(data, indent=2))
    LOG.info(f"[SAVE] {result.nr_planes} planes -> {path}")
    return path


def save_labels(
    labels: np.ndarray, out_dir: Path, stem: str, patch_size: int = 1
) -> Path:
    """
    Cell label map as <stem>_labels.npy plus a color PNG (one patch_size
    square per cell) when OpenCV is present.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    npy_path = out_dir / f"{stem}_labels.npy"
    np.save(npy_path, np.asarray(labels, dtype=np.int32))
    try:
        import cv2
    except Exception as e:
        LOG.warning(f"[SAVE] OpenCV missing, no label PNG: {e}")
        return npy_path
    pal = label_palette(int(labels.max()) if labels.size else 0)
    pixels = labels_to_pixels(labels, patch_size)
    rgb = (pal[pixels] * 255.0).round().astype(np.uint8)
    png_path = out_dir / f"{stem}_labels.png"
    cv2.imwrite(str(png_path), cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
    LOG.info(f"[SAVE] label map {pixels.shape} -> {png_path.name}")
    return npy_path


def save_cloud(cloud: o3d.geometry.PointCloud, path: Path) -> Path:
    """Write a PLY cloud; logs a warning when Open3D refuses."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with suppress_o3d_info():
        ok = o3d.io.write_point_cloud(str(path), cloud)
    if ok:
        LOG.info(f"[SAVE] wrote {len(cloud.points)} points to {path}")
    else:
        LOG.warning(f"[SAVE] failed: {path}")
    return path


def export_result(
    result: SegmentationResult,
    pcd_cells: np.ndarray,
    nr_pts_per_cell: int,
    out_dir: Path,
    stem: str,
) -> o3d.geometry.PointCloud:
    """planes.json, label map and colored PLY for one frame."""
    save_planes_json(result, out_dir / f"{stem}_planes.json")
    patch_size = int(round(math.sqrt(nr_pts_per_cell)))
    save_labels(result.labels, out_dir, stem, patch_size)
    cloud = make_segments_cloud(pcd_cells, result.labels, nr_pts_per_cell)
    save_cloud(cloud, out_dir / f"{stem}_segments.ply")
    return cloud
