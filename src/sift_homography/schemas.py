"""
Pydantic models for pipeline reports.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MatchSummary(BaseModel):
    """Textual report of one matching run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    num_features1: int = Field(..., ge=0)
    """Keypoints extracted from image 1."""

    num_features2: int = Field(..., ge=0)
    """Keypoints extracted from image 2."""

    num_fit: int = Field(..., ge=0)
    """Matches within the refinement threshold under the final homography."""

    num_matches: int = Field(..., ge=0)
    """Inliers of the initial robust estimate."""

    fit_percentage: float = Field(..., ge=0.0)
    """num_fit relative to the smaller feature count, in percent."""

    init_blur: float
    threshold: float

    num_found: int | None = None
    """Image-1 keypoints with any geometric inlier, regardless of descriptor rank."""

    refinement_rounds: int = 0
    underdetermined: bool = False
    """Refinement stopped with fewer than four inliers."""

    def format(self) -> str:
        """Render the summary with fixed precision."""
        lines = [
            f"Number of original features: {self.num_features1} {self.num_features2}",
            (
                f"Number of matching features: {self.num_fit} {self.num_matches} "
                f"{self.fit_percentage:.2f}% {self.init_blur:.2f} {self.threshold:.2f}"
            ),
        ]
        if self.num_found is not None:
            lines.append(f"Number of found features: {self.num_found}")
        status = "underdetermined" if self.underdetermined else "ok"
        lines.append(f"Refinement rounds: {self.refinement_rounds} ({status})")
        return "\n".join(lines)


def fit_percentage(num_fit: int, num_features1: int, num_features2: int) -> float:
    """Percentage of fitted matches relative to the smaller feature count."""
    smaller = min(num_features1, num_features2)
    if smaller == 0:
        return 0.0
    return 100.0 * num_fit / smaller
