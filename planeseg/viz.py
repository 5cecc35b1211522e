from __future__ import annotations

import open3d as o3d

from utils.logger import Logger

LOG = Logger.get_logger("seg.viz")


def draw_segments(
    cloud: o3d.geometry.PointCloud,
    coord_frame_size: float = 100.0,
    title: str = "Plane segments",
) -> None:
    """Viewer with label-colored points and axes (frame size in cloud units)."""
    if len(cloud.points) == 0:
        LOG.warning("[VIZ] empty cloud - nothing to show")
        return
    axes = o3d.geometry.TriangleMesh.create_coordinate_frame(size=coord_frame_size)
    o3d.visualization.draw_geometries([cloud, axes], window_name=title)
