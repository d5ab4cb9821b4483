"""
End-to-end matching pipeline.

extract (x2) -> match descriptors -> initial RANSAC estimate -> refine ->
count found -> annotate image 1 -> summary
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2
import numpy as np

from sift_homography.homography import Homography
from sift_homography.logging import get_logger
from sift_homography.services.feature_extractor import SIFTFeatureExtractor
from sift_homography.services.feature_matcher import DescriptorMatcher
from sift_homography.services.geometric_verifier import (
    EstimationResult,
    InitialHomographyEstimator,
)
from sift_homography.services.refiner import HomographyRefiner, RefinementResult, match_residuals
from sift_homography.services.renderer import ReportRenderer
from sift_homography.services.scorer import CorrespondenceScorer
from sift_homography.utils.image import ImageBuffer, decode_image, load_image, save_image

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from sift_homography.config import Settings
    from sift_homography.keypoints import KeypointCollection
    from sift_homography.schemas import MatchSummary

logger = get_logger("pipeline")


@dataclass(frozen=True)
class MatchOutcome:
    """Result of matching two keypoint collections."""

    estimation: EstimationResult
    refinement: RefinementResult
    num_found: int
    summary: MatchSummary
    diagnostics: str | None = None


@dataclass(frozen=True)
class PipelineResult:
    """Result of a full two-image run."""

    keypoints1: KeypointCollection
    keypoints2: KeypointCollection
    outcome: MatchOutcome
    annotated: ImageBuffer


class MatchPipeline:
    """Wire the extractor, matcher, estimator, refiner, scorer and renderer together."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        ext = settings.extraction
        est = settings.estimation
        ref = settings.refinement
        ren = settings.rendering

        self.extractor = SIFTFeatureExtractor(
            capacity=ext.capacity,
            num_octaves=ext.num_octaves,
            init_blur=ext.init_blur,
            threshold=ext.threshold,
            lowest_scale=ext.lowest_scale,
            upscale=ext.upscale,
            num_octave_layers=ext.num_octave_layers,
            sigma=ext.sigma,
        )
        self.matcher = DescriptorMatcher()
        self.estimator = InitialHomographyEstimator(
            max_iterations=est.max_iterations,
            min_score=est.min_score,
            max_ambiguity=est.max_ambiguity,
            threshold=est.threshold,
            confidence=est.confidence,
            seed=est.seed,
        )
        self.refiner = HomographyRefiner(
            num_loops=ref.num_loops,
            min_score=ref.min_score,
            max_ambiguity=ref.max_ambiguity,
            threshold=ref.threshold,
        )
        self.scorer = CorrespondenceScorer(settings.matching.inlier_threshold_sq)
        self.renderer = ReportRenderer(
            max_match_error=ren.max_match_error,
            line_value=ren.line_value,
            outer_value=ren.outer_value,
            inner_value=ren.inner_value,
            marker_scale=ren.marker_scale,
        )

    def _given_estimate(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        homography: Homography,
    ) -> EstimationResult:
        """Wrap a caller-supplied transform, counting stored matches it explains."""
        limit = self.settings.estimation.threshold ** 2
        residual = match_residuals(homography, coll1.positions, coll1.matched_positions(coll2))
        return EstimationResult(homography, int((residual < limit).sum()), ok=True)

    def match_collections(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        initial: Homography | None = None,
    ) -> MatchOutcome:
        """
        Match, estimate and refine on precomputed keypoints.

        Writes match index, score, ambiguity and final match error into
        ``coll1``.

        Args:
            coll1: Image-1 keypoints
            coll2: Image-2 keypoints
            initial: Starting transform; estimated with RANSAC when omitted
        """
        self.matcher.match(coll1, coll2)

        if initial is None:
            estimation = self.estimator.estimate(coll1, coll2)
        else:
            estimation = self._given_estimate(coll1, coll2, initial)

        refinement = self.refiner.refine(coll1, coll2, estimation.homography)
        self.refiner.apply(coll1, refinement)

        num_found = self.scorer.count_found(coll1, coll2, refinement.homography)

        diagnostics = None
        if self.settings.matching.dump_diagnostics:
            diagnostics = self.scorer.dump(coll1, coll2, refinement.homography)
            logger.debug("Scoring dump", extra={"dump": diagnostics})

        summary = self.renderer.summarize(
            num_features1=len(coll1),
            num_features2=len(coll2),
            num_fit=refinement.fit_count,
            num_matches=estimation.num_matches,
            init_blur=self.settings.extraction.init_blur,
            threshold=self.settings.extraction.threshold,
            num_found=num_found,
            refinement_rounds=refinement.rounds,
            underdetermined=refinement.underdetermined,
        )

        logger.info(
            "Number of matching features",
            extra={
                "num_fit": refinement.fit_count,
                "num_matches": estimation.num_matches,
                "fit_percentage": round(summary.fit_percentage, 2),
                "num_found": num_found,
            },
        )
        return MatchOutcome(
            estimation=estimation,
            refinement=refinement,
            num_found=num_found,
            summary=summary,
            diagnostics=diagnostics,
        )

    def run(
        self,
        image1: NDArray[np.float32],
        image2: NDArray[np.float32],
    ) -> PipelineResult:
        """
        Run the full pipeline on two grayscale images.

        Image 1 is copied into a padded buffer and annotated; the caller's
        arrays are not modified.
        """
        height, width = image1.shape[:2]
        logger.info("Image size", extra={"width": int(width), "height": int(height)})

        keypoints1 = self.extractor.extract(image1)
        keypoints2 = self.extractor.extract(image2)
        logger.info(
            "Number of original features",
            extra={"num_features1": len(keypoints1), "num_features2": len(keypoints2)},
        )

        outcome = self.match_collections(keypoints1, keypoints2)

        buffer = ImageBuffer.from_array(image1)
        self.renderer.annotate(keypoints1, keypoints2, buffer)

        return PipelineResult(
            keypoints1=keypoints1,
            keypoints2=keypoints2,
            outcome=outcome,
            annotated=buffer,
        )

    def run_files(self) -> PipelineResult:
        """Run on the configured image paths and write the annotated image."""
        io = self.settings.io
        image1 = load_image(io.image1)
        image2 = load_image(io.image2)
        result = self.run(image1, image2)
        save_image(io.output, result.annotated.to_array())
        logger.info("Annotated image written", extra={"path": str(io.output)})
        return result


class FrameProcessor:
    """
    Per-frame feature extraction for streaming sources.

    Each frame is extracted and reported before the next one is accepted;
    its keypoints are released on return.
    """

    def __init__(self, extractor: SIFTFeatureExtractor) -> None:
        self.extractor = extractor
        self.frames = 0

    def process(self, frame: NDArray[np.float32]) -> int:
        """
        Extract features from one frame.

        Returns:
            Number of features found
        """
        if frame.ndim == 3:
            bgr = np.clip(frame, 0, 255).astype(np.uint8)
            frame = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
        keypoints = self.extractor.extract(frame)
        self.frames += 1
        logger.info(
            "Number of original features",
            extra={"frame": self.frames, "num_features": len(keypoints)},
        )
        return len(keypoints)

    def process_encoded(self, data: bytes) -> int:
        """
        Decode one compressed frame (PNG, JPEG, PGM, ...) and extract features.

        Raises:
            PipelineError: If the bytes cannot be decoded
        """
        return self.process(decode_image(data))
