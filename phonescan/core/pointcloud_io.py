"""
Open3D conversion, normal estimation and point cloud export
"""

import logging
import os
from typing import List, Optional, Sequence

import numpy as np
import open3d as o3d

from .types import Point3D, PointCloud

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (".txt", ".xyz")


def to_open3d(points: Sequence[Point3D]) -> o3d.geometry.PointCloud:
    """Convert points to an Open3D cloud with colors and normals"""
    pcd = o3d.geometry.PointCloud()
    if not points:
        return pcd

    pcd.points = o3d.utility.Vector3dVector(
        np.stack([p.position for p in points]).astype(np.float64)
    )
    pcd.colors = o3d.utility.Vector3dVector(
        np.stack([p.color for p in points]).astype(np.float64)
    )
    pcd.normals = o3d.utility.Vector3dVector(
        np.stack([p.normal for p in points]).astype(np.float64)
    )
    return pcd


def from_open3d(
    pcd: o3d.geometry.PointCloud, timestamp: Optional[float] = None
) -> PointCloud:
    """Convert an Open3D cloud to a frame; missing colors become mid gray"""
    positions = np.asarray(pcd.points)
    if pcd.has_colors():
        colors = np.asarray(pcd.colors)
    else:
        colors = np.full_like(positions, 0.5)
    normals = np.asarray(pcd.normals) if pcd.has_normals() else None

    return PointCloud.from_arrays(positions, colors, normals, timestamp)


def estimate_normals(
    point_cloud: PointCloud, radius: float = 0.05, max_nn: int = 30
) -> PointCloud:
    """Copy of the frame with normals estimated from local neighbourhoods"""
    pcd = to_open3d(point_cloud.points)
    if len(point_cloud) >= 3:
        pcd.estimate_normals(
            search_param=o3d.geometry.KDTreeSearchParamHybrid(radius=radius, max_nn=max_nn)
        )

    estimated = from_open3d(pcd, point_cloud.timestamp)
    estimated.transform = point_cloud.transform.copy()
    return estimated


def save_point_cloud(points: Sequence[Point3D], path: str) -> bool:
    """
    Write points to disk

    .txt/.xyz files get one "x y z r g b" line per point; every other
    extension goes through open3d.io.write_point_cloud.
    """
    if path.lower().endswith(TEXT_EXTENSIONS):
        lines = [
            " ".join(str(float(v)) for v in (*p.position, *p.color)) for p in points
        ]
        with open(path, "w") as f:
            f.write("\n".join(lines))
        return True

    success = o3d.io.write_point_cloud(path, to_open3d(points))
    if not success:
        logger.error(f"Failed to write point cloud to {path}")
    return success


def load_point_cloud(path: str, timestamp: Optional[float] = None) -> PointCloud:
    """
    Read a frame from a .txt/.xyz dump or any format Open3D reads

    The frame timestamp defaults to the file's modification time.
    """
    if timestamp is None:
        timestamp = os.path.getmtime(path)

    if path.lower().endswith(TEXT_EXTENSIONS):
        data = np.loadtxt(path, dtype=np.float32, ndmin=2)
        if data.size == 0:
            return PointCloud(points=[], timestamp=timestamp)
        return PointCloud.from_arrays(data[:, :3], data[:, 3:6], timestamp=timestamp)

    return from_open3d(o3d.io.read_point_cloud(path), timestamp)


def load_scan_directory(directory: str, extension: str = ".ply") -> List[PointCloud]:
    """Load every scan with the given extension, sorted by file name"""
    files = sorted(f for f in os.listdir(directory) if f.lower().endswith(extension))
    point_clouds = []
    for filename in files:
        point_cloud = load_point_cloud(os.path.join(directory, filename))
        logger.info(f"Loaded {filename}: {len(point_cloud)} points")
        point_clouds.append(point_cloud)

    return point_clouds
