"""
Iterative inlier-only homography refinement.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from sift_homography.homography import MIN_CORRESPONDENCES, Homography
from sift_homography.logging import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from sift_homography.keypoints import KeypointCollection

logger = get_logger("refiner")


@dataclass(frozen=True)
class RefinementResult:
    """
    Outcome of a refinement run.

    Attributes:
        homography: Refined transform (the input when no round succeeded)
        fit_count: Stored matches within threshold under ``homography``
        rounds: Rounds that produced a new fit
        underdetermined: A round stopped with fewer than four usable inliers
        inlier_mask: (N1,) stored matches within threshold under ``homography``
        match_error: (N1,) pixel distance to the stored match, ``inf`` where
            there is none or the projection is degenerate
    """

    homography: Homography
    fit_count: int
    rounds: int
    underdetermined: bool
    inlier_mask: NDArray[np.bool_]
    match_error: NDArray[np.float64]


def match_residuals(
    homography: Homography,
    src: NDArray[np.float64],
    dst: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Squared residual of each stored correspondence; ``inf`` for NaN targets or degenerate points."""
    projected = homography.project(src)
    residual = ((projected - dst) ** 2).sum(axis=1)
    residual[~np.isfinite(residual)] = np.inf
    return residual


class HomographyRefiner:
    """Re-estimate a homography from its current inliers for a bounded number of rounds."""

    def __init__(
        self,
        num_loops: int,
        min_score: float,
        max_ambiguity: float,
        threshold: float,
    ) -> None:
        """
        Initialize refiner.

        Args:
            num_loops: Maximum number of refit rounds
            min_score: Matches scoring below this are not used for fitting
            max_ambiguity: Matches more ambiguous than this are not used for fitting
            threshold: Inlier residual threshold in pixels
        """
        if num_loops < 0:
            raise ValueError("num_loops must be non-negative")
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self.num_loops = num_loops
        self.min_score = min_score
        self.max_ambiguity = max_ambiguity
        self.threshold = threshold

    def _eligible(self, coll1: KeypointCollection, coll2: KeypointCollection) -> NDArray[np.bool_]:
        """Stored matches reliable enough to fit on."""
        idx = coll1.match_index
        matched = (idx >= 0) & (idx < len(coll2))
        return matched & (coll1.score >= self.min_score) & (coll1.ambiguity <= self.max_ambiguity)

    def refine(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        initial: Homography,
    ) -> RefinementResult:
        """
        Refine ``initial`` using the matches stored in ``coll1``.

        Each round classifies the eligible matches against the current
        transform and refits on the inliers. Stops early when the inlier set
        repeats, and keeps the last valid transform when fewer than four
        inliers remain.

        Args:
            coll1: Image-1 keypoints with match index, score and ambiguity set
            coll2: Image-2 keypoints
            initial: Starting transform

        Returns:
            RefinementResult; the collections are not modified
        """
        limit = self.threshold * self.threshold
        src = np.asarray(coll1.positions, dtype=np.float64)
        dst = coll1.matched_positions(coll2)
        eligible = self._eligible(coll1, coll2)

        current = initial
        previous_mask: NDArray[np.bool_] | None = None
        rounds = 0
        underdetermined = False

        for loop in range(self.num_loops):
            mask = eligible & (match_residuals(current, src, dst) < limit)
            num_inliers = int(mask.sum())

            if num_inliers < MIN_CORRESPONDENCES:
                underdetermined = True
                logger.warning(
                    "Too few inliers to refit homography",
                    extra={"round": loop, "inliers": num_inliers},
                )
                break

            if previous_mask is not None and np.array_equal(mask, previous_mask):
                logger.debug("Inlier set unchanged, stopping", extra={"round": loop})
                break

            fitted = Homography.fit(src[mask], dst[mask])
            if fitted is None:
                underdetermined = True
                logger.warning(
                    "Inliers do not determine a homography",
                    extra={"round": loop, "inliers": num_inliers},
                )
                break

            current = fitted
            previous_mask = mask
            rounds += 1

        residual = match_residuals(current, src, dst)
        inlier_mask = residual < limit
        fit_count = int(inlier_mask.sum())

        logger.info(
            "Refinement finished",
            extra={
                "rounds": rounds,
                "fit_count": fit_count,
                "eligible": int(eligible.sum()),
                "underdetermined": underdetermined,
            },
        )

        return RefinementResult(
            homography=current,
            fit_count=fit_count,
            rounds=rounds,
            underdetermined=underdetermined,
            inlier_mask=inlier_mask,
            match_error=np.sqrt(residual),
        )

    @staticmethod
    def apply(coll1: KeypointCollection, result: RefinementResult) -> None:
        """Write the refined match errors back into the image-1 collection."""
        coll1.apply_match_errors(result.match_error)
