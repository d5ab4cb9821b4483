"""Unit tests for the image buffer and image I/O."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from sift_homography.core.exceptions import PipelineError
from sift_homography.utils.image import (
    ImageBuffer,
    align_up,
    decode_image,
    load_image,
    save_image,
)
from tests.factories import create_png_bytes

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
class TestImageBuffer:
    """Tests for ImageBuffer."""

    def test_align_up(self) -> None:
        assert align_up(100, 128) == 128
        assert align_up(128, 128) == 128
        assert align_up(129, 128) == 256

    def test_from_array_pads_rows(self) -> None:
        image = np.arange(12, dtype=np.float32).reshape(3, 4)

        buffer = ImageBuffer.from_array(image, alignment=8)

        assert buffer.stride == 8
        assert buffer.get(3, 2) == 11.0
        np.testing.assert_array_equal(buffer.to_array(), image)

    def test_put_clips(self) -> None:
        buffer = ImageBuffer.from_array(np.zeros((4, 4)))

        assert buffer.put(-1, 0, 9.0) is False
        assert buffer.put(4, 0, 9.0) is False
        assert buffer.put(0, 4, 9.0) is False
        assert buffer.put(3, 3, 9.0) is True
        assert buffer.get(3, 3) == 9.0
        assert np.count_nonzero(buffer.data) == 1

    def test_get_outside_image(self) -> None:
        """Reads past an edge never wrap into a neighbouring row or the padding."""
        image = np.arange(12, dtype=np.float32).reshape(3, 4) + 1.0
        buffer = ImageBuffer.from_array(image, alignment=8)

        assert buffer.get(4, 0) == 0.0
        assert buffer.get(-1, 1) == 0.0
        assert buffer.get(0, 3) == 0.0
        assert buffer.get(0, -1, default=-5.0) == -5.0
        assert buffer.get(3, 2) == 12.0

    def test_rejects_short_data(self) -> None:
        with pytest.raises(PipelineError):
            ImageBuffer(data=np.zeros(10, dtype=np.float32), width=4, height=4, stride=4)

    def test_rejects_stride_below_width(self) -> None:
        with pytest.raises(PipelineError):
            ImageBuffer(data=np.zeros(64, dtype=np.float32), width=8, height=4, stride=4)

    def test_rejects_color(self) -> None:
        with pytest.raises(PipelineError):
            ImageBuffer.from_array(np.zeros((4, 4, 3)))


@pytest.mark.unit
class TestImageIO:
    """Tests for loading and saving images."""

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PipelineError) as exc_info:
            load_image(tmp_path / "missing.png")

        assert exc_info.value.error == "image_not_found"

    def test_save_and_load(self, tmp_path: Path) -> None:
        image = np.tile(np.arange(0, 250, 10, dtype=np.float32), (5, 1))
        path = tmp_path / "out" / "image.pgm"

        save_image(path, image)
        loaded = load_image(path)

        assert loaded.dtype == np.float32
        np.testing.assert_array_equal(loaded, image)

    def test_save_saturates(self, tmp_path: Path) -> None:
        path = tmp_path / "sat.png"

        save_image(path, np.array([[-10.0, 300.0]]))

        np.testing.assert_array_equal(load_image(path), [[0.0, 255.0]])

    def test_decode_png(self) -> None:
        image = np.full((6, 9), 77.0)

        decoded = decode_image(create_png_bytes(image))

        assert decoded.shape == (6, 9)
        assert np.all(decoded == 77.0)

    def test_decode_invalid(self) -> None:
        with pytest.raises(PipelineError) as exc_info:
            decode_image(b"not an image")

        assert exc_info.value.error == "invalid_image"
