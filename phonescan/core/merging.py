"""
Merging registered frames into one cloud and scoring the registration
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from .geometry import transform_points
from .matching import match_positions
from .pose_estimation import count_inliers
from .types import FeatureMatch, Point3D, PointCloud

logger = logging.getLogger(__name__)


class CloudMerger:
    """Apply per-frame transforms, concatenate and suppress duplicates"""

    def __init__(self, dedup_threshold: float = 0.001):
        self.dedup_threshold = dedup_threshold

    def merge(
        self, point_clouds: Sequence[PointCloud], transforms: Sequence[np.ndarray]
    ) -> List[Point3D]:
        """Transformed copies of all points, duplicates removed"""
        if len(point_clouds) != len(transforms):
            raise ValueError(
                f"Got {len(point_clouds)} clouds but {len(transforms)} transforms"
            )

        merged_points = []
        for point_cloud, transform in zip(point_clouds, transforms):
            if len(point_cloud) == 0:
                continue
            moved = transform_points(transform, point_cloud.positions())
            merged_points.extend(
                Point3D(
                    position=position,
                    color=point.color,
                    normal=point.normal,
                    timestamp=point.timestamp,
                )
                for point, position in zip(point_cloud.points, moved)
            )

        return self.remove_duplicates(merged_points)

    def remove_duplicates(self, points: Sequence[Point3D]) -> List[Point3D]:
        """
        Greedy, order-preserving duplicate removal

        A point is dropped when it lies closer than the threshold to a point
        already kept. A k-d tree replaces the linear scan over kept points.
        """
        if len(points) <= 1:
            return list(points)

        positions = np.stack([p.position for p in points]).astype(np.float64)
        tree = cKDTree(positions)
        neighborhoods = tree.query_ball_point(positions, self.dedup_threshold)
        kept = np.zeros(len(points), dtype=bool)

        for i, (position, neighbors) in enumerate(zip(positions, neighborhoods)):
            candidates = [j for j in neighbors if kept[j]]
            if candidates:
                gaps = np.linalg.norm(positions[candidates] - position, axis=1)
                if np.any(gaps < self.dedup_threshold):
                    continue
            kept[i] = True

        filtered_points = [p for p, keep in zip(points, kept) if keep]
        logger.info(f"Removed {len(points) - len(filtered_points)} duplicate points")
        return filtered_points


def registration_confidence(inlier_ratios: Sequence[Optional[float]]) -> float:
    """Mean of the qualifying pair inlier ratios, 0.0 when none qualify"""
    valid = [r for r in inlier_ratios if r is not None]
    return float(np.mean(valid)) if valid else 0.0


def pair_inlier_ratios(
    pair_matches: Sequence[Sequence[FeatureMatch]],
    transforms: Sequence[np.ndarray],
    min_matches: int = 8,
    inlier_threshold: float = 0.01,
) -> List[Optional[float]]:
    """
    inliers / matches for pair (i-1, i) under transforms[i]

    None for pairs with fewer than min_matches matches.
    """
    ratios = []
    for i, matches in enumerate(pair_matches, start=1):
        if len(matches) < min_matches:
            ratios.append(None)
            continue
        source, target = match_positions(matches)
        inliers = count_inliers(source, target, transforms[i], inlier_threshold)
        ratios.append(inliers / len(matches))

    return ratios
