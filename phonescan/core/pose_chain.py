"""
Global pose-chain construction and damped refinement
"""

import logging
from typing import List

import numpy as np

from .config import PoseChainConfig
from .geometry import frobenius_distance, identity, interpolate_transforms
from .pose_estimation import RansacPoseEstimator
from .types import FeatureMatch

logger = logging.getLogger(__name__)


class PoseChainOptimizer:
    """
    Chains pairwise estimates into global poses and relaxes the chain

    Each pass re-estimates every relative pose from its matches and moves
    pose i a fraction alpha toward pose[i-1] @ relative. Frame 0 stays fixed.
    """

    def __init__(
        self,
        estimator: RansacPoseEstimator,
        config: PoseChainConfig = None,
        min_matches: int = 8,
    ):
        self.estimator = estimator
        self.config = config or PoseChainConfig()
        self.min_matches = min_matches

    def build_chain(self, pair_matches: List[List[FeatureMatch]]) -> List[np.ndarray]:
        """
        Initial chain from consecutive pair matches

        pair_matches[i - 1] holds the matches between frames i-1 and i. A pair
        with too few matches repeats the previous pose.
        """
        transforms = [identity()]
        for i, matches in enumerate(pair_matches, start=1):
            if len(matches) >= self.min_matches:
                relative = self.estimator.estimate_from_matches(matches)
                transforms.append((transforms[i - 1] @ relative).astype(np.float32))
            else:
                logger.warning(
                    f"Frames {i - 1}-{i}: {len(matches)} matches, keeping previous pose"
                )
                transforms.append(transforms[i - 1].copy())

        return transforms

    def optimize(
        self,
        transforms: List[np.ndarray],
        pair_matches: List[List[FeatureMatch]],
    ) -> List[np.ndarray]:
        """Relax the chain until the summed pose disagreement drops below tolerance"""
        optimized = [np.array(T, dtype=np.float32) for T in transforms]
        alpha = self.config.alpha

        for iteration in range(self.config.max_passes):
            total_error = 0.0

            for i in range(1, len(optimized)):
                matches = pair_matches[i - 1]
                if not matches:
                    continue

                relative = self.estimator.estimate_from_matches(matches)
                expected = (optimized[i - 1] @ relative).astype(np.float32)

                total_error += frobenius_distance(optimized[i], expected)
                optimized[i] = interpolate_transforms(optimized[i], expected, alpha)

            logger.debug(f"Pose chain pass {iteration + 1}: error={total_error:.6f}")
            if total_error < self.config.tolerance:
                break

        return optimized

    def compute(self, pair_matches: List[List[FeatureMatch]]) -> List[np.ndarray]:
        """Build the chain and refine it"""
        return self.optimize(self.build_chain(pair_matches), pair_matches)
