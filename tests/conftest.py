"""
Shared fixtures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from sift_homography.config import Settings, clear_settings_cache
from sift_homography.homography import Homography
from tests.factories import SAMPLE_HOMOGRAPHY, create_transformed_pair

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sift_homography.keypoints import KeypointCollection


@pytest.fixture
def settings() -> Settings:
    """Default settings."""
    return Settings()


@pytest.fixture
def sample_homography() -> Homography:
    return Homography(SAMPLE_HOMOGRAPHY)


@pytest.fixture
def transformed_pair() -> tuple[KeypointCollection, KeypointCollection]:
    """Collections related by SAMPLE_HOMOGRAPHY with identical descriptors."""
    return create_transformed_pair()


@pytest.fixture
def _isolated_settings_cache() -> Iterator[None]:
    """Clear the cached settings before and after a test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
