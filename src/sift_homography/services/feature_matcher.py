"""
Cross-collection descriptor matching with an ambiguity ratio.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from sift_homography.keypoints import NO_MATCH
from sift_homography.logging import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from sift_homography.keypoints import KeypointCollection

logger = get_logger("feature_matcher")


@dataclass(frozen=True)
class DescriptorMatches:
    """Best match per image-1 keypoint."""

    match_index: NDArray[np.int64]
    score: NDArray[np.float64]
    """Best dot-product similarity."""

    ambiguity: NDArray[np.float64]
    """Second-best / best similarity; 0 when there is no second candidate."""


class DescriptorMatcher:
    """Match every image-1 descriptor to its most similar image-2 descriptor."""

    def __init__(self, block_size: int = 1024) -> None:
        """
        Initialize descriptor matcher.

        Args:
            block_size: Image-1 rows compared per matrix product
        """
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.block_size = block_size

    def compute(self, coll1: KeypointCollection, coll2: KeypointCollection) -> DescriptorMatches:
        """
        Find best and second-best similarities without touching the collections.

        Ties resolve to the lowest image-2 index.
        """
        n1, n2 = len(coll1), len(coll2)
        match_index = np.full(n1, NO_MATCH, dtype=np.int64)
        score = np.zeros(n1, dtype=np.float64)
        ambiguity = np.ones(n1, dtype=np.float64)
        if n1 == 0 or n2 == 0:
            return DescriptorMatches(match_index, score, ambiguity)

        desc2 = coll2.descriptors.astype(np.float64)
        for start in range(0, n1, self.block_size):
            stop = min(start + self.block_size, n1)
            sims = coll1.descriptors[start:stop].astype(np.float64) @ desc2.T
            rows = np.arange(stop - start)
            best = np.argmax(sims, axis=1)
            best_score = sims[rows, best]

            if n2 > 1:
                sims[rows, best] = -np.inf
                second_score = sims.max(axis=1)
                amb = np.where(best_score > 0, second_score / np.where(best_score > 0, best_score, 1.0), 1.0)
            else:
                amb = np.zeros(stop - start, dtype=np.float64)

            match_index[start:stop] = best
            score[start:stop] = best_score
            ambiguity[start:stop] = amb

        return DescriptorMatches(match_index, score, ambiguity)

    def match(self, coll1: KeypointCollection, coll2: KeypointCollection) -> DescriptorMatches:
        """
        Match ``coll1`` against ``coll2`` and store the result in ``coll1``.

        Match errors are reset to the "no viable match" sentinel until a
        homography is available.
        """
        matches = self.compute(coll1, coll2)
        coll1.set_matches(
            match_index=matches.match_index,
            score=matches.score,
            ambiguity=matches.ambiguity,
        )
        logger.info(
            "Matched descriptors",
            extra={"num_points1": len(coll1), "num_points2": len(coll2)},
        )
        return matches
