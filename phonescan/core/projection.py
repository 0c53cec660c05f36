"""
Color raster projection of a point cloud for keypoint sampling
"""

from dataclasses import dataclass

import numpy as np

from .config import RasterConfig
from .types import PointCloud


@dataclass(eq=False)
class ColorRaster:
    """Fixed-resolution color image of a frame with a per-pixel point lookup"""

    image: np.ndarray  # (H, W, 3) rgb values [0-1]
    index: np.ndarray  # (H, W) index into PointCloud.points, -1 where empty
    depth: np.ndarray  # (H, W) distance along the view axis, inf where empty

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]


class VirtualCamera:
    """Pinhole camera framed on a point cloud, looking down -z"""

    def __init__(self, config: RasterConfig):
        self.config = config
        self.position = np.array([0.0, 0.0, 1.0])
        self.focal_length = 1.0

    def frame(self, positions: np.ndarray):
        """Place the camera so the whole cloud fits in the raster"""
        positions = positions.astype(np.float64)
        centroid = positions.mean(axis=0)
        radius = float(np.max(np.linalg.norm(positions - centroid, axis=1)))
        if radius <= 0.0:
            radius = 1.0

        self.position = centroid + np.array([0.0, 0.0, 2.0 * radius])

        offsets = positions[:, :2] - self.position[:2]
        depth = self.position[2] - positions[:, 2]
        max_ratio = float(np.max(np.abs(offsets) / depth[:, None]))

        half_extent = 0.5 * self.config.fill_ratio * min(
            self.config.image_width, self.config.image_height
        )
        self.focal_length = half_extent / max_ratio if max_ratio > 0 else 1.0

    def project(self, positions: np.ndarray):
        """Project (N, 3) points to integer pixel coordinates and depth"""
        positions = positions.astype(np.float64)
        depth = self.position[2] - positions[:, 2]
        cx = self.config.image_width / 2
        cy = self.config.image_height / 2

        u = cx + self.focal_length * (positions[:, 0] - self.position[0]) / depth
        # Image rows grow downward
        v = cy - self.focal_length * (positions[:, 1] - self.position[1]) / depth

        return np.floor(u).astype(np.int64), np.floor(v).astype(np.int64), depth


def rasterize(point_cloud: PointCloud, config: RasterConfig = None) -> ColorRaster:
    """
    Render a frame into a color raster with z-buffering

    The nearest point wins each pixel; ties keep the lower point index.
    """
    config = config or RasterConfig()
    width, height = config.image_width, config.image_height

    image = np.zeros((height, width, 3), dtype=np.float32)
    index = np.full((height, width), -1, dtype=np.int64)
    depth_buffer = np.full((height, width), np.inf, dtype=np.float32)

    if len(point_cloud) == 0:
        return ColorRaster(image=image, index=index, depth=depth_buffer)

    positions = point_cloud.positions()
    colors = point_cloud.colors()

    camera = VirtualCamera(config)
    camera.frame(positions)
    u, v, depth = camera.project(positions)

    visible = (u >= 0) & (u < width) & (v >= 0) & (v < height) & (depth > 0)
    point_ids = np.flatnonzero(visible)
    if len(point_ids) == 0:
        return ColorRaster(image=image, index=index, depth=depth_buffer)

    pixel_ids = v[point_ids] * width + u[point_ids]

    # Sort by pixel, then depth, then point index and keep the first per pixel
    order = np.lexsort((point_ids, depth[point_ids], pixel_ids))
    _, first = np.unique(pixel_ids[order], return_index=True)
    winners = point_ids[order][first]

    rows, cols = v[winners], u[winners]
    image[rows, cols] = colors[winners]
    index[rows, cols] = winners
    depth_buffer[rows, cols] = depth[winners]

    return ColorRaster(image=image, index=index, depth=depth_buffer)
