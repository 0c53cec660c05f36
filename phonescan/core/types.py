"""
Core data types for multi-frame scan stitching
"""

import enum
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np


def _as_vec3(value, name: str) -> np.ndarray:
    vec = np.asarray(value, dtype=np.float32).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"{name} must have 3 components, got shape {vec.shape}")
    return vec


@dataclass(frozen=True, eq=False)
class Point3D:
    """3D point with color, normal and capture time"""

    position: np.ndarray  # (3,) xyz coordinates
    color: np.ndarray  # (3,) rgb values [0-1]
    normal: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    timestamp: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "position", _as_vec3(self.position, "position"))
        object.__setattr__(
            self, "color", np.clip(_as_vec3(self.color, "color"), 0.0, 1.0)
        )
        object.__setattr__(self, "normal", _as_vec3(self.normal, "normal"))

    def transformed(self, matrix: np.ndarray) -> "Point3D":
        """Copy of this point with its position mapped through a 4x4 transform"""
        homogeneous = np.append(self.position, np.float32(1.0))
        moved = (np.asarray(matrix, dtype=np.float32) @ homogeneous)[:3]
        return replace(self, position=moved)


@dataclass(eq=False)
class PointCloud:
    """One captured frame; transform maps frame coordinates to global"""

    points: List[Point3D]
    transform: np.ndarray = field(
        default_factory=lambda: np.eye(4, dtype=np.float32)
    )  # (4, 4)
    timestamp: float = 0.0

    @classmethod
    def from_arrays(
        cls,
        positions: np.ndarray,
        colors: np.ndarray,
        normals: Optional[np.ndarray] = None,
        timestamp: Optional[float] = None,
    ) -> "PointCloud":
        """Build a frame from (N, 3) position/color (and optional normal) arrays"""
        positions = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
        colors = np.asarray(colors, dtype=np.float32).reshape(-1, 3)
        if len(colors) != len(positions):
            raise ValueError(
                f"Got {len(positions)} positions but {len(colors)} colors"
            )
        if normals is None:
            normals = np.tile(np.array([0.0, 0.0, 1.0], dtype=np.float32), (len(positions), 1))
        else:
            normals = np.asarray(normals, dtype=np.float32).reshape(-1, 3)
            if len(normals) != len(positions):
                raise ValueError(
                    f"Got {len(positions)} positions but {len(normals)} normals"
                )

        if timestamp is None:
            timestamp = time.time()

        points = [
            Point3D(position=p, color=c, normal=n, timestamp=timestamp)
            for p, c, n in zip(positions, colors, normals)
        ]
        return cls(points=points, timestamp=timestamp)

    def positions(self) -> np.ndarray:
        """(N, 3) float32 array of point positions"""
        if not self.points:
            return np.zeros((0, 3), dtype=np.float32)
        return np.stack([p.position for p in self.points]).astype(np.float32)

    def colors(self) -> np.ndarray:
        """(N, 3) float32 array of point colors"""
        if not self.points:
            return np.zeros((0, 3), dtype=np.float32)
        return np.stack([p.color for p in self.points]).astype(np.float32)

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True, eq=False)
class FeaturePoint:
    """Keypoint sampled from a frame's color raster"""

    position: np.ndarray  # (3,) location of the surface point at the sample
    strength: float = 1.0
    pixel: Tuple[int, int] = (0, 0)  # (u, v) raster coordinates
    color: Optional[np.ndarray] = None  # (3,) rgb values [0-1]


@dataclass(frozen=True, eq=False)
class FeatureDescriptor:
    """Fixed-length signature of a keypoint"""

    data: np.ndarray  # (16,) float32


@dataclass(frozen=True, eq=False)
class KeyFrame:
    """Stitching-stage view of a point cloud with its features"""

    point_cloud: PointCloud
    features: Tuple[FeaturePoint, ...]
    descriptors: Tuple[FeatureDescriptor, ...]

    def __post_init__(self):
        if len(self.features) != len(self.descriptors):
            raise ValueError(
                f"{len(self.features)} features but {len(self.descriptors)} descriptors"
            )

    def descriptor_matrix(self, descriptor_size: int = 16) -> np.ndarray:
        """(N, descriptor_size) float32 array of descriptors"""
        if not self.descriptors:
            return np.zeros((0, descriptor_size), dtype=np.float32)
        return np.stack([d.data for d in self.descriptors]).astype(np.float32)


@dataclass(frozen=True, eq=False)
class FeatureMatch:
    """Accepted correspondence between features of two frames"""

    point1: FeaturePoint
    point2: FeaturePoint
    distance: float


@dataclass(frozen=True, eq=False)
class Correspondence:
    """Nearest-neighbour pairing used by ICP"""

    source_point: Point3D
    target_point: Point3D


class ICPStatus(enum.Enum):
    """Terminal state of an ICP run"""

    CONVERGED = "converged"
    INSUFFICIENT = "insufficient"
    MAX_ITERATIONS = "max_iterations"


@dataclass(eq=False)
class ICPResult:
    """Result of pairwise ICP registration"""

    transform: np.ndarray  # (4, 4)
    status: ICPStatus
    iterations: int
    rms_error: float
    num_correspondences: int


@dataclass(eq=False)
class RansacResult:
    """Best model found by RANSAC"""

    transform: np.ndarray  # (4, 4)
    num_inliers: int
    num_correspondences: int


@dataclass(frozen=True, eq=False)
class StitchingResult:
    """Result of stitching a batch of frames"""

    stitched_point_cloud: Sequence[Point3D]
    confidence: float
    transformations: Sequence[np.ndarray]
    processing_time: float = 0.0
    inlier_ratios: Sequence[Optional[float]] = ()
