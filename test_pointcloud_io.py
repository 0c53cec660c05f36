#!/usr/bin/env python3
"""
Test Open3D conversion, normal estimation and point cloud export
"""

import os
import tempfile

import numpy as np
import open3d as o3d

from phonescan.core.pointcloud_io import (
    estimate_normals,
    from_open3d,
    load_point_cloud,
    load_scan_directory,
    save_point_cloud,
    to_open3d,
)
from phonescan.core.types import PointCloud


def plane_cloud(n=10, spacing=0.01) -> PointCloud:
    axis = np.arange(n) * spacing
    xx, yy = np.meshgrid(axis, axis)
    positions = np.stack([xx.ravel(), yy.ravel(), np.zeros(n * n)], axis=1)
    colors = np.tile([0.2, 0.4, 0.6], (n * n, 1))
    return PointCloud.from_arrays(positions, colors, timestamp=1.0)


def test_open3d_round_trip():
    cloud = plane_cloud()

    pcd = to_open3d(cloud.points)
    restored = from_open3d(pcd, timestamp=2.0)

    assert len(pcd.points) == len(cloud)
    assert np.allclose(restored.positions(), cloud.positions())
    assert np.allclose(restored.colors(), cloud.colors())
    assert restored.timestamp == 2.0


def test_estimate_normals_on_plane():
    cloud = plane_cloud()

    with_normals = estimate_normals(cloud, radius=0.05)

    normals = np.stack([p.normal for p in with_normals.points])
    assert np.all(np.abs(normals[:, 2]) > 0.99)
    assert np.allclose(with_normals.positions(), cloud.positions())


def test_save_and_load_text():
    cloud = plane_cloud(n=4)

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "points.txt")
        assert save_point_cloud(cloud.points, path)

        with open(path) as f:
            lines = f.read().splitlines()
        assert len(lines) == len(cloud)
        assert len(lines[0].split()) == 6

        loaded = load_point_cloud(path, timestamp=0.0)

    assert np.allclose(loaded.positions(), cloud.positions(), atol=1e-6)
    assert np.allclose(loaded.colors(), cloud.colors(), atol=1e-6)


def test_save_and_load_ply_directory():
    cloud = plane_cloud(n=5)

    with tempfile.TemporaryDirectory() as tmp:
        for name in ("scan_001.ply", "scan_000.ply"):
            assert save_point_cloud(cloud.points, os.path.join(tmp, name))

        loaded = load_scan_directory(tmp)

    assert len(loaded) == 2
    for frame in loaded:
        assert len(frame) == len(cloud)
        assert np.allclose(frame.positions(), cloud.positions(), atol=1e-6)


def test_saved_ply_is_readable_by_open3d():
    cloud = plane_cloud(n=3)

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "scan.ply")
        assert save_point_cloud(cloud.points, path)
        pcd = o3d.io.read_point_cloud(path)

    assert len(pcd.points) == len(cloud)
    assert pcd.has_colors()
    assert np.allclose(np.asarray(pcd.points), cloud.positions(), atol=1e-6)


def test_load_timestamp_defaults_to_file_mtime():
    cloud = plane_cloud(n=3)

    with tempfile.TemporaryDirectory() as tmp:
        text_path = os.path.join(tmp, "points.xyz")
        empty_path = os.path.join(tmp, "empty.txt")
        ply_path = os.path.join(tmp, "points.ply")
        save_point_cloud(cloud.points, text_path)
        save_point_cloud([], empty_path)
        save_point_cloud(cloud.points, ply_path)
        for i, path in enumerate((text_path, empty_path, ply_path)):
            os.utime(path, (1000.0 + i, 1000.0 + i))

        loaded_text = load_point_cloud(text_path)
        loaded_empty = load_point_cloud(empty_path)
        loaded_ply = load_point_cloud(ply_path)
        overridden = load_point_cloud(text_path, timestamp=5.0)

    assert loaded_text.timestamp == 1000.0
    assert len(loaded_empty) == 0
    assert loaded_empty.timestamp == 1001.0
    assert loaded_ply.timestamp == 1002.0
    assert overridden.timestamp == 5.0
    assert all(p.timestamp == 1000.0 for p in loaded_text.points)


def main():
    """Run all point cloud I/O tests"""
    for name, func in list(globals().items()):
        if name.startswith("test_") and callable(func):
            func()
            print(f"✅ {name}")


if __name__ == "__main__":
    main()
