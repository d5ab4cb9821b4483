"""Utility functions."""

from sift_homography.utils.image import ImageBuffer, load_image, save_image

__all__ = ["ImageBuffer", "load_image", "save_image"]
