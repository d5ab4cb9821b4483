"""
Fixtures for end-to-end pipeline tests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from sift_homography.logging import BASE_LOGGER_NAME
from sift_homography.utils.image import save_image
from tests.factories import create_feature_image, warp_image

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture
def image_pair(tmp_path: Path) -> tuple[Path, Path]:
    """Write a feature image and its warped copy, return their paths."""
    image1 = create_feature_image(width=320, height=240, seed=11)
    image2 = warp_image(image1)
    path1 = tmp_path / "img1.png"
    path2 = tmp_path / "img2.png"
    save_image(path1, image1)
    save_image(path2, image2)
    return path1, path2


@pytest.fixture
def config_file(tmp_path: Path, image_pair: tuple[Path, Path]) -> Path:
    """Config pointing the driver at the generated image pair."""
    path1, path2 = image_pair
    config = tmp_path / "config.yaml"
    config.write_text(
        "io:\n"
        f"  image1: {path1}\n"
        f"  image2: {path2}\n"
        f"  output: {tmp_path / 'out' / 'limg_pts.pgm'}\n"
        "logging:\n"
        "  level: WARNING\n"
    )
    return config


@pytest.fixture
def _restore_logging() -> Iterator[None]:
    """Undo the handler installed by the driver."""
    yield
    logger = logging.getLogger(BASE_LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
