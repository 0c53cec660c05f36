"""
Point-to-point ICP refinement of a pairwise rigid transform.

Each iteration:
- pairs every (transformed) source point with its nearest target point
  inside the correspondence gate
- solves the closed-form rigid update (Kabsch/Umeyama without scale)
- composes the update onto the running estimate

Terminates as CONVERGED (RMS below threshold), INSUFFICIENT (fewer than
three correspondences) or MAX_ITERATIONS. All three return the running
estimate.
"""

import logging
from typing import List, Tuple

import numpy as np

from .config import ICPConfig
from .geometry import identity, make_transform, point_distances, svd3, transform_points
from .matching import NearestNeighborSearch
from .types import Correspondence, ICPResult, ICPStatus, PointCloud

logger = logging.getLogger(__name__)


def rigid_transform_from_pairs(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """
    Closed-form rigid transform mapping source -> target (paired 1:1)

    H = sum (s_i - c_s)(t_i - c_t)^T, R = V U^T with reflection
    correction, t = c_t - R c_s. Needs at least 3 pairs.
    """
    source = np.asarray(source, dtype=np.float32).reshape(-1, 3)
    target = np.asarray(target, dtype=np.float32).reshape(-1, 3)
    if len(source) < 3 or len(source) != len(target):
        return identity()

    source_centroid = source.mean(axis=0)
    target_centroid = target.mean(axis=0)
    H = (source - source_centroid).T @ (target - target_centroid)

    U, _, V = svd3(H)
    R = V @ U.T
    if np.linalg.det(R) < 0:
        V = V.copy()
        V[:, 2] = -V[:, 2]
        R = V @ U.T

    t = target_centroid - R @ source_centroid
    return make_transform(R, t)


def rms_error(source: np.ndarray, target: np.ndarray, transform: np.ndarray) -> float:
    """Root mean square distance between transformed source and target"""
    if len(source) == 0:
        return 0.0
    residuals = point_distances(transform_points(transform, source), target)
    return float(np.sqrt(np.mean(residuals ** 2)))


class IterativeClosestPoint:
    """Pairwise point-to-point ICP between two frames"""

    def __init__(self, config: ICPConfig = None):
        self.config = config or ICPConfig()

    def find_correspondences(
        self, source: PointCloud, target: PointCloud, transform: np.ndarray
    ) -> List[Correspondence]:
        """Nearest-target pairs for the source points under a transform"""
        search = NearestNeighborSearch(target.positions())
        src_idx, tgt_idx, _ = self._correspondences(source.positions(), search, transform)
        return [
            Correspondence(source_point=source.points[i], target_point=target.points[j])
            for i, j in zip(src_idx, tgt_idx)
        ]

    def register(self, source: PointCloud, target: PointCloud) -> ICPResult:
        """Estimate the transform aligning source onto target"""
        source_positions = source.positions()
        search = NearestNeighborSearch(target.positions())
        return self._iterate(source_positions, search)

    def register_positions(
        self, source_positions: np.ndarray, target_positions: np.ndarray
    ) -> ICPResult:
        """Same as register() for raw (N, 3) arrays"""
        source_positions = np.asarray(source_positions, dtype=np.float32).reshape(-1, 3)
        search = NearestNeighborSearch(target_positions)
        return self._iterate(source_positions, search)

    def _iterate(
        self, source_positions: np.ndarray, search: NearestNeighborSearch
    ) -> ICPResult:
        current = identity()
        error = float("inf")
        num_pairs = 0

        for iteration in range(1, self.config.max_iterations + 1):
            src_idx, tgt_idx, moved = self._correspondences(
                source_positions, search, current
            )
            num_pairs = len(src_idx)
            moved = moved[src_idx]
            matched_target = search.target_positions[tgt_idx]

            if num_pairs < self.config.min_correspondences:
                logger.debug(
                    f"ICP stopped at iteration {iteration}: {num_pairs} correspondences"
                )
                return ICPResult(
                    transform=current,
                    status=ICPStatus.INSUFFICIENT,
                    iterations=iteration - 1,
                    rms_error=error,
                    num_correspondences=num_pairs,
                )

            delta = rigid_transform_from_pairs(moved, matched_target)
            current = (delta @ current).astype(np.float32)

            error = rms_error(moved, matched_target, delta)
            logger.debug(f"ICP iteration {iteration}: rms={error:.6f}, pairs={num_pairs}")

            if error < self.config.convergence_threshold:
                return ICPResult(
                    transform=current,
                    status=ICPStatus.CONVERGED,
                    iterations=iteration,
                    rms_error=error,
                    num_correspondences=num_pairs,
                )

        return ICPResult(
            transform=current,
            status=ICPStatus.MAX_ITERATIONS,
            iterations=self.config.max_iterations,
            rms_error=error,
            num_correspondences=num_pairs,
        )

    def _correspondences(
        self,
        source_positions: np.ndarray,
        search: NearestNeighborSearch,
        transform: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Indices of gated nearest pairs plus the source moved by transform"""
        moved = transform_points(transform, source_positions)
        src_idx, tgt_idx, _ = search.query(
            moved, self.config.max_correspondence_distance
        )
        return src_idx, tgt_idx, moved
