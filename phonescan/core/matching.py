"""
Descriptor matching with the ratio test, and nearest-point search for ICP
"""

import logging
from typing import List, Tuple

import cv2
import numpy as np
from scipy.spatial import cKDTree

from .types import FeatureMatch, KeyFrame

logger = logging.getLogger(__name__)


class DescriptorMatcher:
    """Match descriptors between two frames using Lowe's ratio test"""

    def __init__(self, ratio_threshold: float = 0.8):
        self.ratio_threshold = ratio_threshold
        self.matcher = cv2.BFMatcher(cv2.NORM_L2)

    def match_descriptors(
        self, descriptors1: np.ndarray, descriptors2: np.ndarray
    ) -> List[Tuple[int, int, float]]:
        """
        Ratio-test matches as (index1, index2, distance)

        Each row of descriptors1 yields at most one match. A row of
        descriptors2 may be claimed by several rows of descriptors1. With a
        single candidate there is no runner-up and the match is kept.
        """
        if len(descriptors1) == 0 or len(descriptors2) == 0:
            return []

        knn = self.matcher.knnMatch(
            np.ascontiguousarray(descriptors1, dtype=np.float32),
            np.ascontiguousarray(descriptors2, dtype=np.float32),
            k=2,
        )

        good_matches = []
        for match_pair in knn:
            if len(match_pair) == 2:
                m, n = match_pair
                if m.distance < self.ratio_threshold * n.distance:
                    good_matches.append((m.queryIdx, m.trainIdx, float(m.distance)))
            elif len(match_pair) == 1:
                m = match_pair[0]
                good_matches.append((m.queryIdx, m.trainIdx, float(m.distance)))

        return good_matches

    def match_features(self, frame1: KeyFrame, frame2: KeyFrame) -> List[FeatureMatch]:
        """Match key frame features; point1 comes from frame1"""
        pairs = self.match_descriptors(
            frame1.descriptor_matrix(), frame2.descriptor_matrix()
        )

        return [
            FeatureMatch(
                point1=frame1.features[i],
                point2=frame2.features[j],
                distance=dist,
            )
            for i, j, dist in pairs
        ]

    def match_consecutive(self, key_frames: List[KeyFrame]) -> List[List[FeatureMatch]]:
        """Matches for every consecutive frame pair (i-1, i), i >= 1"""
        all_matches = []
        for i in range(1, len(key_frames)):
            matches = self.match_features(key_frames[i - 1], key_frames[i])
            logger.info(f"   Matched frames {i - 1}-{i}: {len(matches)} matches")
            all_matches.append(matches)

        return all_matches


def match_positions(matches: List[FeatureMatch]) -> Tuple[np.ndarray, np.ndarray]:
    """(M, 3) source and target positions of feature matches"""
    if not matches:
        empty = np.zeros((0, 3), dtype=np.float32)
        return empty, empty.copy()

    source = np.stack([m.point1.position for m in matches]).astype(np.float32)
    target = np.stack([m.point2.position for m in matches]).astype(np.float32)
    return source, target


class NearestNeighborSearch:
    """Nearest target point within a distance gate, backed by a k-d tree"""

    def __init__(self, target_positions: np.ndarray):
        self.target_positions = np.asarray(target_positions, dtype=np.float32).reshape(-1, 3)
        self.tree = cKDTree(self.target_positions) if len(self.target_positions) else None

    def query(
        self, query_positions: np.ndarray, max_distance: float
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Returns (query_indices, target_indices, distances) for queries whose
        nearest target lies strictly closer than max_distance
        """
        query_positions = np.asarray(query_positions, dtype=np.float32).reshape(-1, 3)
        if self.tree is None or len(query_positions) == 0:
            empty = np.zeros(0, dtype=np.int64)
            return empty, empty.copy(), np.zeros(0, dtype=np.float64)

        distances, indices = self.tree.query(
            query_positions, k=1, distance_upper_bound=max_distance
        )
        valid = np.isfinite(distances) & (distances < max_distance)

        return np.flatnonzero(valid), indices[valid].astype(np.int64), distances[valid]
