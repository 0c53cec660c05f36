#!/usr/bin/env python3
"""
Test RANSAC pose estimation and pose-chain refinement
"""

import numpy as np
import pytest

from phonescan.core.config import PoseChainConfig, RansacConfig, StitchingConfig
from phonescan.core.geometry import identity, make_transform, transform_points
from phonescan.core.pose_chain import PoseChainOptimizer
from phonescan.core.pose_estimation import RansacPoseEstimator, count_inliers, fit_affine
from phonescan.core.types import FeatureMatch, FeaturePoint


def rotation_xyz(ax: float, ay: float, az: float) -> np.ndarray:
    cx, sx = np.cos(ax), np.sin(ax)
    cy, sy = np.cos(ay), np.sin(ay)
    cz, sz = np.cos(az), np.sin(az)
    Rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    Ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    Rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return (Rz @ Ry @ Rx).astype(np.float32)


def make_correspondences(n_inliers=20, n_outliers=5, seed=0):
    rng = np.random.default_rng(seed)
    T = make_transform(rotation_xyz(0.1, -0.2, 0.3), [0.5, -0.25, 1.0])

    source = rng.uniform(-1.0, 1.0, size=(n_inliers + n_outliers, 3)).astype(np.float32)
    target = transform_points(T, source)
    target[n_inliers:] = rng.uniform(-5.0, 5.0, size=(n_outliers, 3))
    return source, target.astype(np.float32), T


def to_matches(source, target):
    return [
        FeatureMatch(point1=FeaturePoint(position=s), point2=FeaturePoint(position=t), distance=0.0)
        for s, t in zip(source, target)
    ]


def test_fit_affine_recovers_transform():
    source, target, T = make_correspondences(n_inliers=8, n_outliers=0)

    fitted = fit_affine(source, target)

    assert np.allclose(fitted, T, atol=1e-4)
    assert np.array_equal(fitted[3], [0.0, 0.0, 0.0, 1.0])


def test_fit_affine_degenerate_sample_gives_identity():
    # All points on a line cannot constrain an affine map
    source = np.outer(np.arange(8), [1.0, 1.0, 1.0]).astype(np.float32)

    assert np.array_equal(fit_affine(source, source + 1.0), identity())


def test_ransac_ignores_outlier_minority():
    source, target, T = make_correspondences()
    estimator = RansacPoseEstimator(rng=np.random.default_rng(1))

    result = estimator.estimate(source, target)

    assert result.num_inliers >= 20
    assert result.num_correspondences == 25
    assert count_inliers(source[:20], target[:20], result.transform, 0.01) == 20
    assert np.allclose(result.transform, T, atol=1e-3)


def test_ransac_needs_eight_correspondences():
    source, target, _ = make_correspondences(n_inliers=7, n_outliers=0)

    result = RansacPoseEstimator(rng=np.random.default_rng(0)).estimate(source, target)

    assert np.array_equal(result.transform, identity())
    assert result.num_inliers == 0


def test_ransac_is_reproducible_with_seed():
    source, target, _ = make_correspondences(n_inliers=15, n_outliers=10, seed=4)
    config = RansacConfig(iterations=50)

    first = RansacPoseEstimator(config, np.random.default_rng(7)).estimate(source, target)
    second = RansacPoseEstimator(config, np.random.default_rng(7)).estimate(source, target)

    assert np.array_equal(first.transform, second.transform)
    assert first.num_inliers == second.num_inliers


def test_ransac_rejects_mismatched_inputs():
    with pytest.raises(ValueError):
        RansacPoseEstimator().estimate(np.zeros((8, 3)), np.zeros((9, 3)))


def test_pose_chain_composes_relative_transforms():
    step = make_transform(rotation_xyz(0.0, 0.0, 0.05), [0.2, 0.0, 0.0])
    rng = np.random.default_rng(5)
    source = rng.uniform(-1.0, 1.0, size=(12, 3)).astype(np.float32)
    matches = to_matches(source, transform_points(step, source))

    estimator = RansacPoseEstimator(RansacConfig(iterations=20), np.random.default_rng(0))
    optimizer = PoseChainOptimizer(estimator, PoseChainConfig())

    transforms = optimizer.compute([matches, matches])

    assert len(transforms) == 3
    assert np.array_equal(transforms[0], identity())
    assert np.allclose(transforms[1], step, atol=1e-4)
    assert np.allclose(transforms[2], step @ step, atol=1e-4)


def test_pose_chain_keeps_previous_pose_without_matches():
    estimator = RansacPoseEstimator(rng=np.random.default_rng(0))
    optimizer = PoseChainOptimizer(estimator)

    transforms = optimizer.compute([[]])

    assert len(transforms) == 2
    assert np.array_equal(transforms[1], identity())


def test_pose_chain_relaxes_toward_expected_pose():
    step = make_transform(np.eye(3), [1.0, 0.0, 0.0])
    rng = np.random.default_rng(6)
    source = rng.uniform(-1.0, 1.0, size=(10, 3)).astype(np.float32)
    matches = to_matches(source, transform_points(step, source))

    estimator = RansacPoseEstimator(RansacConfig(iterations=10), np.random.default_rng(0))
    optimizer = PoseChainOptimizer(estimator, PoseChainConfig(max_passes=1, alpha=0.1))

    refined = optimizer.optimize([identity(), identity()], [matches])

    # One pass moves 10% of the way from identity toward the estimate
    assert np.isclose(refined[1][0, 3], 0.1, atol=1e-4)
    assert np.array_equal(refined[0], identity())


def test_stitching_config_validation():
    with pytest.raises(ValueError):
        StitchingConfig(min_matches=4)
    with pytest.raises(ValueError):
        RansacConfig(iterations=0)
    with pytest.raises(ValueError):
        PoseChainConfig(alpha=1.5)


def main():
    """Run all pose estimation tests"""
    for name, func in list(globals().items()):
        if name.startswith("test_") and callable(func):
            func()
            print(f"✅ {name}")


if __name__ == "__main__":
    main()
