#!/usr/bin/env python3
"""
Stitch a directory of captured scan frames into one point cloud

Usage: python stitch_scans.py [scan_dir] [output_path] [--icp]
"""

import logging
import sys

from phonescan.core.config import StitchingConfig
from phonescan.core.pointcloud_io import load_scan_directory, save_point_cloud
from phonescan.core.processor import PointCloudProcessor
from phonescan.core.stitching import ImageStitcher
from phonescan.core.types import PointCloud

logger = logging.getLogger("stitch_scans")


def run_stitching(scan_dir="scans", output_path="stitched.ply", use_icp=False, seed=0):
    """Load frames, optionally pre-register them with ICP, stitch and save"""
    point_clouds = load_scan_directory(scan_dir)
    if not point_clouds:
        logger.error(f"No scans found in {scan_dir}")
        return None

    if use_icp:
        logger.info("Pre-registering frames with ICP...")
        processor = PointCloudProcessor()
        processor.register_frames(point_clouds)
        # Stitch in the ICP-aligned coordinates
        point_clouds = [
            PointCloud(points=[p.transformed(pc.transform) for p in pc.points], timestamp=pc.timestamp)
            for pc in point_clouds
        ]

    stitcher = ImageStitcher(StitchingConfig(random_seed=seed))
    result = stitcher.stitch(point_clouds)

    save_point_cloud(result.stitched_point_cloud, output_path)
    logger.info(f"Saved {len(result.stitched_point_cloud)} points to {output_path}")
    logger.info(f"Registration confidence: {result.confidence:.3f}")
    return result


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    scan_dir = args[0] if len(args) > 0 else "scans"
    output_path = args[1] if len(args) > 1 else "stitched.ply"

    result = run_stitching(scan_dir, output_path, use_icp="--icp" in sys.argv)
    if result is None:
        sys.exit(1)


if __name__ == "__main__":
    main()
