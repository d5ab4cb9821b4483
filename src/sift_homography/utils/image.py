"""Image buffer and image I/O utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2
import numpy as np

from sift_homography.core.exceptions import PipelineError

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import ArrayLike, NDArray

ROW_ALIGNMENT = 128


def align_up(value: int, alignment: int) -> int:
    """Round value up to a multiple of alignment."""
    return ((value + alignment - 1) // alignment) * alignment


@dataclass
class ImageBuffer:
    """
    Row-major single-channel float pixel grid.

    Pixel (x, y) lives at ``data[y * stride + x]``; columns from ``width``
    to ``stride`` are padding and are never written.
    """

    data: NDArray[np.float32]
    width: int
    height: int
    stride: int

    def __post_init__(self) -> None:
        if self.data.ndim != 1:
            raise PipelineError(
                error="invalid_buffer",
                message="Image buffer data must be one-dimensional",
                details={"ndim": self.data.ndim},
            )
        if self.width < 0 or self.height < 0 or self.stride < self.width:
            raise PipelineError(
                error="invalid_buffer",
                message="Image buffer dimensions are inconsistent",
                details={"width": self.width, "height": self.height, "stride": self.stride},
            )
        if self.data.size < self.stride * self.height:
            raise PipelineError(
                error="invalid_buffer",
                message="Image buffer is smaller than stride * height",
                details={"size": int(self.data.size), "required": self.stride * self.height},
            )

    @classmethod
    def from_array(cls, image: ArrayLike, alignment: int = ROW_ALIGNMENT) -> ImageBuffer:
        """
        Copy a 2D image into a padded buffer.

        Args:
            image: (H, W) grayscale image
            alignment: Row stride is rounded up to a multiple of this
        """
        arr = np.asarray(image, dtype=np.float32)
        if arr.ndim != 2:
            raise PipelineError(
                error="invalid_image",
                message="Image must be single-channel",
                details={"shape": list(arr.shape)},
            )
        height, width = arr.shape
        stride = align_up(max(width, 1), alignment)
        padded = np.zeros((height, stride), dtype=np.float32)
        padded[:, :width] = arr
        return cls(data=padded.reshape(-1), width=width, height=height, stride=stride)

    def to_array(self) -> NDArray[np.float32]:
        """Copy of the visible pixels as an (H, W) array."""
        rows = self.data[: self.stride * self.height].reshape(self.height, self.stride)
        return rows[:, : self.width].copy()

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int, default: float = 0.0) -> float:
        """Read one pixel; ``default`` when (x, y) lies outside the image."""
        if not self.contains(x, y):
            return default
        return float(self.data[y * self.stride + x])

    def put(self, x: int, y: int, value: float) -> bool:
        """
        Write one pixel.

        Returns:
            False if (x, y) lies outside the image and nothing was written
        """
        if not self.contains(x, y):
            return False
        self.data[y * self.stride + x] = value
        return True


def pixel(coord: float) -> int:
    """Integer pixel index of a coordinate."""
    return math.floor(coord)


def load_image(path: Path) -> NDArray[np.float32]:
    """
    Read an image file as a float32 grayscale array.

    Raises:
        PipelineError: If the file is missing or cannot be decoded
    """
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise PipelineError(
            error="image_not_found",
            message=f"Failed to read image: {path}",
            details={"path": str(path)},
        )
    return image.astype(np.float32)


def decode_image(image_bytes: bytes) -> NDArray[np.float32]:
    """
    Decode encoded image bytes (PNG, JPEG, PGM, ...) to float32 grayscale.

    Raises:
        PipelineError: If the bytes cannot be decoded
    """
    nparr = np.frombuffer(image_bytes, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise PipelineError(
            error="invalid_image",
            message="Failed to decode image data",
        )
    return image.astype(np.float32)


def save_image(path: Path, image: ArrayLike) -> None:
    """
    Write a grayscale image, saturating values to 0..255.

    Raises:
        PipelineError: If the file cannot be written
    """
    arr = np.clip(np.asarray(image, dtype=np.float32), 0.0, 255.0).astype(np.uint8)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(path), arr):
        raise PipelineError(
            error="image_write_failed",
            message=f"Failed to write image: {path}",
            details={"path": str(path)},
        )
