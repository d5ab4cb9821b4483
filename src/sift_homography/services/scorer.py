"""
Correspondence scoring: descriptor similarity and geometric residuals.

Scoring is side-effect free. ``CorrespondenceScorer.score`` returns a new
``ScoringResult``; nothing is written back into the keypoint collections.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from sift_homography.logging import get_logger

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from sift_homography.homography import Homography
    from sift_homography.keypoints import KeypointCollection

logger = get_logger("scorer")

# Rows of image 1 processed per block when only aggregates are needed
ROW_BLOCK = 1024


class MatchDecision(str, Enum):
    """Classification of one (image-1, image-2) keypoint pair."""

    BOTH = "both"
    DESCRIPTOR_ONLY = "descriptor_only"
    GEOMETRIC_ONLY = "geometric_only"
    NEITHER = "neither"

    @property
    def symbol(self) -> str:
        """Marker used in the diagnostic dump."""
        return _SYMBOLS[self]


_SYMBOLS = {
    MatchDecision.BOTH: "*",
    MatchDecision.DESCRIPTOR_ONLY: "-",
    MatchDecision.GEOMETRIC_ONLY: "+",
    MatchDecision.NEITHER: " ",
}


def descriptor_similarity(desc1: ArrayLike, desc2: ArrayLike) -> float:
    """Dot product of two descriptors (cosine similarity for unit vectors)."""
    return float(np.dot(np.asarray(desc1, dtype=np.float64), np.asarray(desc2, dtype=np.float64)))


def geometric_residual(
    point1: tuple[float, float],
    point2: tuple[float, float],
    homography: Homography,
) -> float:
    """
    Squared distance between H(point1) and point2.

    Returns ``inf`` when the projection of point1 is degenerate.
    """
    px, py = homography.project_point(point1[0], point1[1])
    if not (math.isfinite(px) and math.isfinite(py)):
        return math.inf
    dx = px - point2[0]
    dy = py - point2[1]
    return dx * dx + dy * dy


def classify_pair(is_best_match: bool, residual: float, threshold_sq: float) -> MatchDecision:
    """
    Combine descriptor rank and geometric consistency.

    Args:
        is_best_match: Whether the pair is the best descriptor match for the
            image-1 keypoint
        residual: Squared pixel residual under the current homography
        threshold_sq: Squared pixel distance below which the pair is an inlier
    """
    inlier = residual < threshold_sq
    if is_best_match and inlier:
        return MatchDecision.BOTH
    if is_best_match:
        return MatchDecision.DESCRIPTOR_ONLY
    if inlier:
        return MatchDecision.GEOMETRIC_ONLY
    return MatchDecision.NEITHER


@dataclass(frozen=True, slots=True)
class PairScore:
    """Scores of one candidate pair."""

    query_index: int
    train_index: int
    similarity: float
    residual: float
    decision: MatchDecision

    @property
    def distance(self) -> float:
        """Residual as a pixel distance."""
        return math.sqrt(self.residual)


@dataclass(frozen=True)
class ScoringResult:
    """
    All-pairs scores for two collections under one homography.

    Attributes:
        similarity: (N1, N2) descriptor dot products
        residual: (N1, N2) squared residuals, ``inf`` for degenerate rows
        best_index: (N1,) descriptor-best index per image-1 keypoint, -1 for none
        threshold_sq: Inlier threshold used for classification
    """

    similarity: NDArray[np.float64]
    residual: NDArray[np.float64]
    best_index: NDArray[np.int64]
    threshold_sq: float

    @property
    def inliers(self) -> NDArray[np.bool_]:
        return self.residual < self.threshold_sq

    @property
    def found(self) -> NDArray[np.bool_]:
        """Image-1 keypoints with at least one geometric inlier among all candidates."""
        if self.residual.shape[1] == 0:
            return np.zeros(self.residual.shape[0], dtype=bool)
        return self.inliers.any(axis=1)

    @property
    def num_found(self) -> int:
        return int(self.found.sum())

    def decision(self, i: int, j: int) -> MatchDecision:
        return classify_pair(
            is_best_match=bool(self.best_index[i] == j),
            residual=float(self.residual[i, j]),
            threshold_sq=self.threshold_sq,
        )

    def decisions(self) -> list[MatchDecision]:
        """Decision for each image-1 keypoint paired with its best match."""
        out = []
        n2 = self.residual.shape[1]
        for i, j in enumerate(self.best_index):
            if 0 <= j < n2:
                out.append(self.decision(i, int(j)))
            else:
                out.append(MatchDecision.NEITHER)
        return out

    def candidates(self, i: int) -> list[PairScore]:
        """
        Pairs for keypoint i that are inliers or its best match.

        Ordered by image-2 index so the output never depends on how the
        matrices were computed.
        """
        row_inliers = self.inliers[i]
        best = int(self.best_index[i])
        pairs = []
        for j in range(self.residual.shape[1]):
            if not (row_inliers[j] or j == best):
                continue
            pairs.append(
                PairScore(
                    query_index=i,
                    train_index=j,
                    similarity=float(self.similarity[i, j]),
                    residual=float(self.residual[i, j]),
                    decision=self.decision(i, j),
                )
            )
        return pairs


class CorrespondenceScorer:
    """Score keypoint pairs by descriptor similarity and geometric residual."""

    def __init__(self, inlier_threshold_sq: float = 100.0) -> None:
        """
        Initialize scorer.

        Args:
            inlier_threshold_sq: Squared pixel distance below which a pair
                counts as a geometric inlier (100 = 10 px)
        """
        if inlier_threshold_sq <= 0:
            raise ValueError("inlier_threshold_sq must be positive")
        self.inlier_threshold_sq = inlier_threshold_sq

    def similarity_matrix(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        rows: slice | None = None,
    ) -> NDArray[np.float64]:
        """(N1, N2) descriptor dot products."""
        desc1 = coll1.descriptors if rows is None else coll1.descriptors[rows]
        return desc1.astype(np.float64) @ coll2.descriptors.astype(np.float64).T

    def residual_matrix(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        homography: Homography,
        rows: slice | None = None,
    ) -> NDArray[np.float64]:
        """(N1, N2) squared residuals of H(p1) against every p2."""
        pos1 = coll1.positions if rows is None else coll1.positions[rows]
        projected = homography.project(pos1)
        diff = projected[:, None, :] - coll2.positions[None, :, :]
        residual = (diff**2).sum(axis=2)
        residual[~np.isfinite(residual)] = np.inf
        return residual

    @staticmethod
    def _resolve_best(
        stored: NDArray[np.int64],
        similarity: NDArray[np.float64],
    ) -> NDArray[np.int64]:
        """Stored match where valid, otherwise the most similar image-2 keypoint."""
        n2 = similarity.shape[1]
        if n2 == 0:
            return np.asarray(stored, dtype=np.int64).copy()
        valid = (stored >= 0) & (stored < n2)
        return np.where(valid, stored, similarity.argmax(axis=1)).astype(np.int64)

    def score_rows(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        homography: Homography,
        rows: slice,
        best_index: ArrayLike | None = None,
    ) -> ScoringResult:
        """
        Score image-1 keypoints ``rows`` against every image-2 keypoint.

        Row ``k`` of the result is image-1 keypoint ``rows.start + k``.

        Args:
            coll1: Image-1 keypoints
            coll2: Image-2 keypoints
            homography: Current image-1 to image-2 transform
            rows: Contiguous block of image-1 indices
            best_index: Descriptor-best match for every image-1 keypoint
                (full length); defaults to the match stored in coll1, or
                the highest similarity where none is stored
        """
        similarity = self.similarity_matrix(coll1, coll2, rows=rows)
        residual = self.residual_matrix(coll1, coll2, homography, rows=rows)
        if best_index is None:
            best = self._resolve_best(coll1.match_index[rows], similarity)
        else:
            best = np.asarray(best_index, dtype=np.int64).reshape(-1)[rows].copy()
        return ScoringResult(
            similarity=similarity,
            residual=residual,
            best_index=best,
            threshold_sq=self.inlier_threshold_sq,
        )

    def score(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        homography: Homography,
        best_index: ArrayLike | None = None,
    ) -> ScoringResult:
        """
        Score every pair of keypoints.

        Holds two dense (N1, N2) matrices; use ``count_found`` or ``dump``
        for large collections.

        Args:
            coll1: Image-1 keypoints
            coll2: Image-2 keypoints
            homography: Current image-1 to image-2 transform
            best_index: Descriptor-best match per image-1 keypoint; defaults
                to the match index stored in coll1, falling back to the
                highest similarity for keypoints without a stored match

        Returns:
            New ScoringResult; the collections are left untouched
        """
        degenerate = int((~np.isfinite(homography.project(coll1.positions)).all(axis=1)).sum())
        if degenerate:
            logger.warning(
                "Degenerate projections while scoring",
                extra={"degenerate_points": degenerate, "num_points": len(coll1)},
            )
        return self.score_rows(coll1, coll2, homography, slice(0, len(coll1)), best_index)

    def count_found(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        homography: Homography,
    ) -> int:
        """
        Number of image-1 keypoints with any geometric inlier in image 2.

        Descriptor rank is ignored. Computed in row blocks so large
        collections never materialise the full residual matrix.
        """
        found = 0
        if len(coll2) == 0:
            return 0
        for start in range(0, len(coll1), ROW_BLOCK):
            rows = slice(start, min(start + ROW_BLOCK, len(coll1)))
            residual = self.residual_matrix(coll1, coll2, homography, rows=rows)
            found += int((residual < self.inlier_threshold_sq).any(axis=1).sum())
        return found

    def dump(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        homography: Homography,
        best_index: ArrayLike | None = None,
    ) -> str:
        """
        Render a scoring pass as text, one row block at a time.

        One header line ``i:scale:orientation`` per image-1 keypoint, then one
        line per candidate that is an inlier or the stored match, then a blank
        line. Ends with the found count.
        """
        lines: list[str] = []
        found = 0
        for start in range(0, len(coll1), ROW_BLOCK):
            rows = slice(start, min(start + ROW_BLOCK, len(coll1)))
            block = self.score_rows(coll1, coll2, homography, rows, best_index)
            found += block.num_found
            for k in range(rows.stop - start):
                kp = coll1[start + k]
                lines.append(f"{start + k}:{kp.scale:g}:{kp.orientation_deg}")
                for pair in block.candidates(k):
                    other = coll2[pair.train_index]
                    distance = int(pair.distance) if math.isfinite(pair.residual) else "inf"
                    lines.append(
                        f" {pair.decision.symbol}{pair.train_index}:{pair.similarity:g}:"
                        f"{distance}:{other.scale:g}:{other.orientation_deg}"
                    )
                lines.append("")
        lines.append(f"Number of founds: {found}")
        return "\n".join(lines)
