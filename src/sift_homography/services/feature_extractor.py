"""
SIFT feature extraction from grayscale images.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from sift_homography.core.exceptions import PipelineError
from sift_homography.keypoints import DESCRIPTOR_SIZE, KeypointCollection
from sift_homography.logging import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger("feature_extractor")


def octave_of(kp: cv2.KeyPoint) -> int:
    """Octave index packed into the low byte of ``KeyPoint.octave``."""
    octave = kp.octave & 255
    return octave - 256 if octave >= 128 else octave


class SIFTFeatureExtractor:
    """Extract SIFT keypoints with unit-normalized 128-d descriptors."""

    def __init__(
        self,
        capacity: int,
        num_octaves: int,
        init_blur: float,
        threshold: float,
        lowest_scale: float,
        upscale: bool,
        num_octave_layers: int,
        sigma: float,
    ) -> None:
        """
        Initialize SIFT feature extractor.

        Args:
            capacity: Maximum keypoints kept per image, extra detections are dropped
            num_octaves: Octaves searched for extrema
            init_blur: Assumed blur of the input image, reported with results
            threshold: DoG contrast threshold in grey levels
            lowest_scale: Keypoints with a smaller scale are discarded
            upscale: Upsample the image by two before detection
            num_octave_layers: Scale samples per octave
            sigma: Blur of the first scale of each octave
        """
        self.capacity = capacity
        self.num_octaves = num_octaves
        self.init_blur = init_blur
        self.threshold = threshold
        self.lowest_scale = lowest_scale
        self.upscale = upscale
        # OpenCV compares |DoG| against 0.5 * contrastThreshold / nOctaveLayers on a 0..1 scale
        contrast_threshold = 2.0 * threshold * num_octave_layers / 255.0
        self.sift = cv2.SIFT_create(
            nfeatures=0,
            nOctaveLayers=num_octave_layers,
            contrastThreshold=contrast_threshold,
            edgeThreshold=10,
            sigma=sigma,
        )

    def extract(self, image: NDArray[np.float32]) -> KeypointCollection:
        """
        Extract SIFT features from a grayscale image.

        Args:
            image: (H, W) grayscale image with values in 0..255

        Returns:
            KeypointCollection with at most ``capacity`` keypoints, match
            fields unset

        Raises:
            PipelineError: If the image is not a non-empty 2D array
        """
        arr = np.asarray(image)
        if arr.ndim != 2 or arr.size == 0:
            raise PipelineError(
                error="invalid_image",
                message="Feature extraction needs a non-empty single-channel image",
                details={"shape": list(arr.shape)},
            )

        gray = np.clip(arr, 0, 255).astype(np.uint8)
        factor = 1.0
        if self.upscale:
            gray = cv2.resize(gray, None, fx=2.0, fy=2.0, interpolation=cv2.INTER_LINEAR)
            factor = 0.5

        cv_keypoints, descriptors = self.sift.detectAndCompute(gray, None)
        if descriptors is None:
            descriptors = np.zeros((0, DESCRIPTOR_SIZE), dtype=np.float32)

        positions: list[tuple[float, float]] = []
        scales: list[float] = []
        orientations: list[float] = []
        rows: list[int] = []
        for i, kp in enumerate(cv_keypoints):
            if octave_of(kp) >= self.num_octaves:
                continue
            # KeyPoint.size is a diameter
            scale = 0.5 * kp.size * factor
            if scale < self.lowest_scale:
                continue
            positions.append((kp.pt[0] * factor, kp.pt[1] * factor))
            scales.append(scale)
            orientations.append(kp.angle)
            rows.append(i)

        desc = descriptors[rows].astype(np.float32) if rows else np.zeros((0, DESCRIPTOR_SIZE), np.float32)
        norms = np.linalg.norm(desc, axis=1, keepdims=True)
        desc = desc / np.maximum(norms, 1e-12)

        collection = KeypointCollection.from_arrays(
            positions=positions or np.zeros((0, 2)),
            scales=scales,
            orientations=orientations,
            descriptors=desc,
            capacity=self.capacity,
        )

        logger.info(
            "Extracted features",
            extra={
                "detected": len(cv_keypoints),
                "kept": len(collection),
                "width": int(arr.shape[1]),
                "height": int(arr.shape[0]),
            },
        )
        return collection
