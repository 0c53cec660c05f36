"""
Configuration for the registration and stitching pipeline.

Defaults reproduce the constants of the capture application; every
dataclass validates itself on construction.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RasterConfig:
    """Projection raster and grid sampling used for feature extraction"""

    image_width: int = 640
    image_height: int = 480
    grid_stride: int = 20  # Sample every 20 pixels in each axis
    descriptor_size: int = 16
    fill_ratio: float = 0.9  # Fraction of the shorter side the cloud may span

    def __post_init__(self) -> None:
        if self.image_width <= 0 or self.image_height <= 0:
            raise ValueError("Raster dimensions must be positive")
        if self.grid_stride <= 0:
            raise ValueError("grid_stride must be positive")
        if self.descriptor_size < 6:
            raise ValueError("descriptor_size must hold position, strength and color")
        if not 0.0 < self.fill_ratio <= 1.0:
            raise ValueError("fill_ratio must be in (0, 1]")


@dataclass
class RansacConfig:
    """Robust pose estimation"""

    iterations: int = 1000
    sample_size: int = 8
    inlier_threshold: float = 0.01

    def __post_init__(self) -> None:
        if self.iterations <= 0:
            raise ValueError("iterations must be positive")
        # 12 affine unknowns need at least 4 correspondences (3 rows each)
        if self.sample_size < 4:
            raise ValueError("sample_size must be at least 4")
        if self.inlier_threshold <= 0:
            raise ValueError("inlier_threshold must be positive")


@dataclass
class ICPConfig:
    """Pairwise iterative closest point registration"""

    max_iterations: int = 20
    max_correspondence_distance: float = 0.05
    convergence_threshold: float = 0.001
    min_correspondences: int = 3

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.max_correspondence_distance <= 0:
            raise ValueError("max_correspondence_distance must be positive")
        if self.convergence_threshold <= 0:
            raise ValueError("convergence_threshold must be positive")
        if self.min_correspondences < 3:
            raise ValueError("min_correspondences must be at least 3")


@dataclass
class PoseChainConfig:
    """Damped refinement of the global pose chain"""

    max_passes: int = 10
    alpha: float = 0.1  # Step toward the re-estimated pose
    tolerance: float = 0.001

    def __post_init__(self) -> None:
        if self.max_passes < 0:
            raise ValueError("max_passes must be non-negative")
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError("alpha must be in [0, 1]")
        if self.tolerance <= 0:
            raise ValueError("tolerance must be positive")


@dataclass
class StitchingConfig:
    """Complete configuration for a stitching run"""

    ratio_threshold: float = 0.8
    min_matches: int = 8
    dedup_threshold: float = 0.001
    random_seed: Optional[int] = None
    raster: RasterConfig = field(default_factory=RasterConfig)
    ransac: RansacConfig = field(default_factory=RansacConfig)
    chain: PoseChainConfig = field(default_factory=PoseChainConfig)

    def __post_init__(self) -> None:
        if not 0.0 < self.ratio_threshold <= 1.0:
            raise ValueError("ratio_threshold must be in (0, 1]")
        if self.min_matches < self.ransac.sample_size:
            raise ValueError(
                f"min_matches ({self.min_matches}) must be at least the RANSAC "
                f"sample size ({self.ransac.sample_size})"
            )
        if self.dedup_threshold < 0:
            raise ValueError("dedup_threshold must be non-negative")
