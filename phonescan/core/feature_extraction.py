"""
Grid-sampled feature extraction on a frame's color raster
"""

import logging
from typing import List

import numpy as np

from .config import RasterConfig
from .projection import ColorRaster, rasterize
from .types import FeatureDescriptor, FeaturePoint, KeyFrame, PointCloud

logger = logging.getLogger(__name__)


class FeatureExtractor:
    """Extract keypoints and descriptors from a projected frame"""

    def __init__(self, config: RasterConfig = None, strength: float = 1.0):
        self.config = config or RasterConfig()
        self.strength = strength

    def extract_features(self, point_cloud: PointCloud) -> KeyFrame:
        """Rasterize a frame and sample keypoints/descriptors from it"""
        raster = rasterize(point_cloud, self.config)
        features = self.detect_features(raster, point_cloud)
        descriptors = self.compute_descriptors(features)

        return KeyFrame(
            point_cloud=point_cloud,
            features=tuple(features),
            descriptors=tuple(descriptors),
        )

    def detect_features(
        self, raster: ColorRaster, point_cloud: PointCloud
    ) -> List[FeaturePoint]:
        """
        Sample one keypoint per occupied grid cell

        Within a cell the occupied pixel closest to the grid node wins, then
        the nearer depth, then the lower point index. Keypoints come out in
        row-major cell order.
        """
        stride = self.config.grid_stride
        rows, cols = np.nonzero(raster.index >= 0)
        if len(rows) == 0:
            return []

        point_ids = raster.index[rows, cols]
        cells_per_row = -(-raster.width // stride)
        cell_ids = (rows // stride) * cells_per_row + cols // stride
        node_offset = (rows % stride) ** 2 + (cols % stride) ** 2

        order = np.lexsort(
            (point_ids, raster.depth[rows, cols], node_offset, cell_ids)
        )
        _, first = np.unique(cell_ids[order], return_index=True)
        picked = order[first]

        features = []
        for r, c, pid in zip(rows[picked], cols[picked], point_ids[picked]):
            point = point_cloud.points[int(pid)]
            features.append(
                FeaturePoint(
                    position=point.position.copy(),
                    strength=self.strength,
                    pixel=(int(c), int(r)),
                    color=raster.image[r, c].copy(),
                )
            )

        return features

    def compute_descriptors(
        self, features: List[FeaturePoint]
    ) -> List[FeatureDescriptor]:
        """Descriptor layout: [u/100, v/100, strength, r, g, b, 0, ...]"""
        descriptors = []
        for feature in features:
            data = np.zeros(self.config.descriptor_size, dtype=np.float32)
            data[0] = feature.pixel[0] / 100.0
            data[1] = feature.pixel[1] / 100.0
            data[2] = feature.strength
            if feature.color is not None:
                data[3:6] = feature.color
            descriptors.append(FeatureDescriptor(data=data))

        return descriptors

    def extract_all(self, point_clouds: List[PointCloud]) -> List[KeyFrame]:
        """Build key frames for a batch of point clouds"""
        key_frames = []
        for i, point_cloud in enumerate(point_clouds):
            key_frame = self.extract_features(point_cloud)
            key_frames.append(key_frame)
            logger.info(f"   Frame {i}: {len(key_frame.features)} features")

        return key_frames
