"""Core infrastructure."""

from sift_homography.core.exceptions import PipelineError

__all__ = ["PipelineError"]
