"""Service layer components."""

from sift_homography.services.feature_extractor import SIFTFeatureExtractor
from sift_homography.services.feature_matcher import DescriptorMatcher
from sift_homography.services.geometric_verifier import InitialHomographyEstimator
from sift_homography.services.refiner import HomographyRefiner
from sift_homography.services.renderer import ReportRenderer
from sift_homography.services.scorer import CorrespondenceScorer, MatchDecision

__all__ = [
    "CorrespondenceScorer",
    "DescriptorMatcher",
    "HomographyRefiner",
    "InitialHomographyEstimator",
    "MatchDecision",
    "ReportRenderer",
    "SIFTFeatureExtractor",
]
