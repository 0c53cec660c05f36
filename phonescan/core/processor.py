"""
Frame buffering and reference-frame ICP registration
"""

import logging
import threading
from collections import deque
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import ICPConfig
from .geometry import identity
from .merging import CloudMerger
from .registration import IterativeClosestPoint
from .types import Point3D, PointCloud

logger = logging.getLogger(__name__)


class FrameBuffer:
    """Bounded, thread-safe frame history; the oldest frame is dropped when full"""

    def __init__(self, capacity: int = 30):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._frames: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def push(self, point_cloud: PointCloud):
        with self._lock:
            self._frames.append(point_cloud)

    def snapshot(self) -> Tuple[PointCloud, ...]:
        """Frozen view of the buffered frames, oldest first"""
        with self._lock:
            return tuple(self._frames)

    def drain(self) -> Tuple[PointCloud, ...]:
        """Remove and return every buffered frame"""
        with self._lock:
            frames = tuple(self._frames)
            self._frames.clear()
            return frames

    def clear(self):
        with self._lock:
            self._frames.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)


class PointCloudProcessor:
    """
    Registers captured frames against the first frame with ICP and keeps
    the merged result
    """

    def __init__(
        self,
        icp_config: ICPConfig = None,
        dedup_threshold: float = 0.001,
        capacity: int = 30,
    ):
        self.icp = IterativeClosestPoint(icp_config)
        self.merger = CloudMerger(dedup_threshold)
        self.buffer = FrameBuffer(capacity)
        self._merged_cloud: List[Point3D] = []

    def add_point_cloud(self, point_cloud: PointCloud):
        self.buffer.push(point_cloud)

    def add_depth_data(
        self,
        positions: np.ndarray,
        colors: np.ndarray,
        normals: Optional[np.ndarray] = None,
        timestamp: Optional[float] = None,
    ) -> PointCloud:
        """Build a frame from raw arrays and buffer it"""
        point_cloud = PointCloud.from_arrays(positions, colors, normals, timestamp)
        self.add_point_cloud(point_cloud)
        return point_cloud

    def register_frames(
        self, point_clouds: Optional[Sequence[PointCloud]] = None
    ) -> List[PointCloud]:
        """
        Align every frame to the first one and rebuild the merged cloud

        Each frame's transform is overwritten in place; the first frame keeps
        identity. Without an argument the current buffer snapshot is used.
        """
        if point_clouds is None:
            point_clouds = self.buffer.snapshot()
        point_clouds = list(point_clouds)

        if not point_clouds:
            self._merged_cloud = []
            return point_clouds

        reference = point_clouds[0]
        reference.transform = identity()

        for i in range(1, len(point_clouds)):
            result = self.icp.register(point_clouds[i], reference)
            point_clouds[i].transform = result.transform
            logger.info(
                f"   Frame {i}: {result.status.value} after {result.iterations} "
                f"iterations (rms={result.rms_error:.6f}, pairs={result.num_correspondences})"
            )

        self._merged_cloud = self.merger.merge(
            point_clouds, [pc.transform for pc in point_clouds]
        )
        logger.info(f"Merged cloud has {len(self._merged_cloud)} points")
        return point_clouds

    def merged_cloud(self) -> List[Point3D]:
        """Merged points from the last register_frames() call"""
        return list(self._merged_cloud)
