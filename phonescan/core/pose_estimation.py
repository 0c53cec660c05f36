"""
Robust pose estimation from feature correspondences
"""

import logging
from typing import List, Optional

import numpy as np

from .config import RansacConfig
from .geometry import identity, point_distances, solve_least_squares, transform_points
from .matching import match_positions
from .types import FeatureMatch, RansacResult

logger = logging.getLogger(__name__)


def fit_affine(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """
    Linear least-squares affine fit mapping source -> target

    Each output coordinate is an affine function of the three input
    coordinates, giving 12 unknowns and three equations per correspondence.
    Falls back to identity when the system is rank-deficient.
    """
    source = np.asarray(source, dtype=np.float32).reshape(-1, 3)
    target = np.asarray(target, dtype=np.float32).reshape(-1, 3)
    n = len(source)

    homogeneous = np.hstack([source, np.ones((n, 1), dtype=np.float32)])
    A = np.zeros((3 * n, 12), dtype=np.float32)
    for axis in range(3):
        A[axis::3, 4 * axis:4 * axis + 4] = homogeneous
    b = target.reshape(-1)

    solution = solve_least_squares(A, b)
    if not np.any(solution):
        return identity()

    T = identity()
    T[:3, :] = solution.reshape(3, 4)
    return T


def count_inliers(
    source: np.ndarray, target: np.ndarray, transform: np.ndarray, threshold: float
) -> int:
    """Correspondences whose transformed source lies within threshold of target"""
    if len(source) == 0:
        return 0
    residuals = point_distances(transform_points(transform, source), target)
    return int(np.count_nonzero(residuals < threshold))


class RansacPoseEstimator:
    """
    RANSAC over fixed-size samples with an affine least-squares model

    Runs a fixed number of trials; the first model reaching the highest
    inlier count wins. Randomness comes from an injectable numpy Generator.
    """

    def __init__(
        self,
        config: RansacConfig = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config or RansacConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

    def estimate(self, source: np.ndarray, target: np.ndarray) -> RansacResult:
        """Estimate the transform mapping source positions onto target positions"""
        source = np.asarray(source, dtype=np.float32).reshape(-1, 3)
        target = np.asarray(target, dtype=np.float32).reshape(-1, 3)
        if len(source) != len(target):
            raise ValueError(
                f"Got {len(source)} source but {len(target)} target positions"
            )

        n = len(source)
        sample_size = self.config.sample_size
        if n < sample_size:
            logger.debug(f"Only {n} correspondences, need {sample_size}")
            return RansacResult(transform=identity(), num_inliers=0, num_correspondences=n)

        best_transform = identity()
        max_inliers = 0

        for _ in range(self.config.iterations):
            sample = self.rng.choice(n, size=sample_size, replace=False)
            transform = fit_affine(source[sample], target[sample])
            inliers = count_inliers(
                source, target, transform, self.config.inlier_threshold
            )

            if inliers > max_inliers:
                max_inliers = inliers
                best_transform = transform

        return RansacResult(
            transform=best_transform, num_inliers=max_inliers, num_correspondences=n
        )

    def estimate_from_matches(self, matches: List[FeatureMatch]) -> np.ndarray:
        """Transform mapping point1 positions of the matches onto point2"""
        source, target = match_positions(matches)
        return self.estimate(source, target).transform
