"""
RANSAC-based initial homography estimate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2
import numpy as np

from sift_homography.homography import MIN_CORRESPONDENCES, Homography
from sift_homography.logging import get_logger

if TYPE_CHECKING:
    from sift_homography.keypoints import KeypointCollection

logger = get_logger("geometric_verifier")


@dataclass(frozen=True)
class EstimationResult:
    """Initial transform and the number of RANSAC inliers supporting it."""

    homography: Homography
    num_matches: int
    ok: bool
    """False when no transform could be estimated; homography is then the identity."""


class InitialHomographyEstimator:
    """Estimate a first homography from stored matches with RANSAC."""

    def __init__(
        self,
        max_iterations: int,
        min_score: float,
        max_ambiguity: float,
        threshold: float,
        confidence: float = 0.995,
        seed: int = 0,
    ) -> None:
        """
        Initialize RANSAC estimator.

        Args:
            max_iterations: Maximum RANSAC iterations
            min_score: Matches scoring below this are not sampled
            max_ambiguity: Matches more ambiguous than this are not sampled
            threshold: Maximum reprojection error (pixels) to count as inlier
            confidence: Required confidence in result
            seed: OpenCV RNG seed, fixed so repeated runs agree
        """
        self.max_iterations = max_iterations
        self.min_score = min_score
        self.max_ambiguity = max_ambiguity
        self.threshold = threshold
        self.confidence = confidence
        self.seed = seed

    def estimate(self, coll1: KeypointCollection, coll2: KeypointCollection) -> EstimationResult:
        """
        Estimate the image-1 to image-2 homography.

        Args:
            coll1: Image-1 keypoints with match index, score and ambiguity set
            coll2: Image-2 keypoints

        Returns:
            EstimationResult; identity with zero matches when fewer than
            four usable correspondences exist or RANSAC fails
        """
        idx = coll1.match_index
        usable = (
            (idx >= 0)
            & (idx < len(coll2))
            & (coll1.score >= self.min_score)
            & (coll1.ambiguity <= self.max_ambiguity)
        )
        total = int(usable.sum())

        # Need at least 4 points for homography estimation
        if total < MIN_CORRESPONDENCES:
            logger.warning("Too few matches for initial homography", extra={"usable": total})
            return EstimationResult(Homography.identity(), 0, ok=False)

        src_pts = np.float32(coll1.positions[usable]).reshape(-1, 1, 2)
        dst_pts = np.float32(coll2.positions[idx[usable]]).reshape(-1, 1, 2)

        cv2.setRNGSeed(self.seed)
        H, mask = cv2.findHomography(
            src_pts,
            dst_pts,
            cv2.RANSAC,
            ransacReprojThreshold=self.threshold,
            maxIters=self.max_iterations,
            confidence=self.confidence,
        )

        if H is None or mask is None:
            logger.warning("RANSAC found no homography", extra={"usable": total})
            return EstimationResult(Homography.identity(), 0, ok=False)

        inliers = int(mask.ravel().sum())
        logger.info(
            "Initial homography estimated",
            extra={"usable": total, "inliers": inliers},
        )
        return EstimationResult(Homography(H).normalized(), inliers, ok=True)
