"""
Main stitching pipeline
"""

import logging
import time
from typing import Sequence

import numpy as np

from .config import StitchingConfig
from .feature_extraction import FeatureExtractor
from .matching import DescriptorMatcher
from .merging import CloudMerger, pair_inlier_ratios, registration_confidence
from .pose_chain import PoseChainOptimizer
from .pose_estimation import RansacPoseEstimator
from .types import PointCloud, StitchingResult

logger = logging.getLogger(__name__)


class ImageStitcher:
    """
    Stitch a batch of frames into one globally consistent cloud
    """

    def __init__(self, config: StitchingConfig = None):
        self.config = config or StitchingConfig()
        self.feature_extractor = FeatureExtractor(self.config.raster)
        self.matcher = DescriptorMatcher(self.config.ratio_threshold)
        self.merger = CloudMerger(self.config.dedup_threshold)

    def stitch(self, point_clouds: Sequence[PointCloud]) -> StitchingResult:
        """
        Register and merge frames

        Args:
            point_clouds: Frames in capture order; not modified

        Returns:
            StitchingResult with merged points, confidence and one transform
            per input frame (the first is identity)
        """
        start_time = time.time()
        point_clouds = list(point_clouds)

        if not point_clouds:
            logger.info("No frames to stitch")
            return StitchingResult(
                stitched_point_cloud=[],
                confidence=0.0,
                transformations=[],
                processing_time=time.time() - start_time,
            )

        logger.info(f"Starting stitching with {len(point_clouds)} frames...")

        # A fresh generator per run keeps seeded runs reproducible
        rng = np.random.default_rng(self.config.random_seed)
        estimator = RansacPoseEstimator(self.config.ransac, rng)
        chain_optimizer = PoseChainOptimizer(
            estimator, self.config.chain, self.config.min_matches
        )

        # Step 1: Extract features from all frames
        logger.info("1. Extracting features...")
        key_frames = self.feature_extractor.extract_all(point_clouds)

        # Step 2: Match consecutive frames
        logger.info("2. Matching features...")
        pair_matches = self.matcher.match_consecutive(key_frames)

        # Step 3: Build and refine the pose chain
        logger.info("3. Estimating frame poses...")
        transformations = chain_optimizer.compute(pair_matches)

        # Step 4: Merge and score
        logger.info("4. Merging frames...")
        stitched_cloud = self.merger.merge(point_clouds, transformations)

        inlier_ratios = pair_inlier_ratios(
            pair_matches,
            transformations,
            self.config.min_matches,
            self.config.ransac.inlier_threshold,
        )
        confidence = registration_confidence(inlier_ratios)

        processing_time = time.time() - start_time
        logger.info(f"Stitching completed in {processing_time:.2f} seconds")
        logger.info(
            f"Merged {len(stitched_cloud)} points, confidence {confidence:.3f}"
        )

        return StitchingResult(
            stitched_point_cloud=stitched_cloud,
            confidence=confidence,
            transformations=transformations,
            processing_time=processing_time,
            inlier_ratios=inlier_ratios,
        )


def stitch(point_clouds: Sequence[PointCloud], config: StitchingConfig = None) -> StitchingResult:
    """Stitch frames with a one-off ImageStitcher"""
    return ImageStitcher(config).stitch(point_clouds)
