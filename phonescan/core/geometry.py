"""
Geometry and linear-algebra helpers shared by the registration pipeline.

All functions are pure. Matrices are 4x4 float32 homogeneous transforms.
Numerical failures never raise: the least-squares solve returns a zero
vector and the SVD returns an identity decomposition.
"""

import logging
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)


def identity() -> np.ndarray:
    return np.eye(4, dtype=np.float32)


def make_transform(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Assemble [R | t] into a 4x4 homogeneous matrix"""
    T = identity()
    T[:3, :3] = rotation
    T[:3, 3] = np.asarray(translation).reshape(3)
    return T


def compose(*transforms: np.ndarray) -> np.ndarray:
    """Matrix product of transforms, left to right"""
    result = identity()
    for T in transforms:
        result = result @ np.asarray(T, dtype=np.float32)
    return result


def transform_point(T: np.ndarray, point: np.ndarray) -> np.ndarray:
    """Apply a 4x4 transform to a single 3D point"""
    homogeneous = np.append(np.asarray(point, dtype=np.float32), np.float32(1.0))
    return (np.asarray(T, dtype=np.float32) @ homogeneous)[:3]


def transform_points(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 transform to (N, 3) points"""
    points = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    T = np.asarray(T, dtype=np.float32)
    return points @ T[:3, :3].T + T[:3, 3]


def point_distances(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Euclidean distance between matching rows of two (N, 3) arrays"""
    return np.linalg.norm(np.asarray(a) - np.asarray(b), axis=-1)


def frobenius_distance(T1: np.ndarray, T2: np.ndarray) -> float:
    """Element-wise Frobenius norm of T1 - T2"""
    return float(np.sqrt(np.sum((np.asarray(T1) - np.asarray(T2)) ** 2)))


def interpolate_transforms(T1: np.ndarray, T2: np.ndarray, alpha: float) -> np.ndarray:
    """Per-element linear blend (1 - alpha) * T1 + alpha * T2"""
    blended = (1.0 - alpha) * np.asarray(T1) + alpha * np.asarray(T2)
    return blended.astype(np.float32)


def solve_least_squares(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Least-squares solution of A @ x ~= b

    Returns a zero vector when A is rank-deficient, mirroring a QR solve
    that rejects singular systems.
    """
    A = np.asarray(A, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32).reshape(-1)
    cols = A.shape[1]

    try:
        x, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    except np.linalg.LinAlgError as e:
        logger.debug(f"Least-squares solve failed: {e}")
        return np.zeros(cols, dtype=np.float32)

    if rank < cols or not np.all(np.isfinite(x)):
        return np.zeros(cols, dtype=np.float32)

    return x.astype(np.float32)


def svd3(H: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Singular value decomposition of a 3x3 matrix

    Returns (U, S, V) with H = U @ diag(S) @ V.T. Degenerate input yields
    identity factors and zero singular values.
    """
    H = np.asarray(H, dtype=np.float32)
    if not np.all(np.isfinite(H)):
        return np.eye(3, dtype=np.float32), np.zeros(3, dtype=np.float32), np.eye(3, dtype=np.float32)

    try:
        U, S, Vt = np.linalg.svd(H)
    except np.linalg.LinAlgError as e:
        logger.debug(f"SVD did not converge: {e}")
        return np.eye(3, dtype=np.float32), np.zeros(3, dtype=np.float32), np.eye(3, dtype=np.float32)

    return U.astype(np.float32), S.astype(np.float32), Vt.T.astype(np.float32)


def rotation_angle(R: np.ndarray) -> float:
    """Angle (radians) of a 3x3 rotation matrix"""
    cos_theta = (np.trace(np.asarray(R, dtype=np.float64)) - 1.0) / 2.0
    return float(np.arccos(np.clip(cos_theta, -1.0, 1.0)))
