"""Unit tests for SIFT feature extraction."""

from __future__ import annotations

import numpy as np
import pytest

from sift_homography.core.exceptions import PipelineError
from sift_homography.keypoints import NO_MATCH
from sift_homography.services.feature_extractor import SIFTFeatureExtractor
from tests.factories import create_feature_image


def _extractor(**overrides) -> SIFTFeatureExtractor:
    params = {
        "capacity": 32768,
        "num_octaves": 5,
        "init_blur": 1.0,
        "threshold": 3.5,
        "lowest_scale": 0.0,
        "upscale": False,
        "num_octave_layers": 3,
        "sigma": 1.6,
    }
    params.update(overrides)
    return SIFTFeatureExtractor(**params)


@pytest.mark.unit
class TestSIFTFeatureExtractor:
    """Tests for SIFTFeatureExtractor."""

    def test_extract_returns_keypoints(self) -> None:
        coll = _extractor().extract(create_feature_image())

        assert len(coll) > 10
        assert np.all(coll.match_index == NO_MATCH)

    def test_descriptors_are_unit_length(self) -> None:
        coll = _extractor().extract(create_feature_image())

        assert coll.descriptors.shape[1] == 128
        np.testing.assert_allclose(np.linalg.norm(coll.descriptors, axis=1), 1.0, atol=1e-5)

    def test_positions_inside_image(self) -> None:
        image = create_feature_image(width=300, height=200)

        coll = _extractor().extract(image)

        assert np.all(coll.positions[:, 0] >= 0) and np.all(coll.positions[:, 0] < 300)
        assert np.all(coll.positions[:, 1] >= 0) and np.all(coll.positions[:, 1] < 200)

    def test_capacity_truncates(self) -> None:
        coll = _extractor(capacity=5).extract(create_feature_image())

        assert len(coll) == 5

    def test_lowest_scale_filters(self) -> None:
        image = create_feature_image()

        coll = _extractor(lowest_scale=4.0).extract(image)

        assert np.all(coll.scales >= 4.0)

    def test_deterministic(self) -> None:
        image = create_feature_image(seed=7)
        extractor = _extractor()

        first = extractor.extract(image)
        second = extractor.extract(image)

        np.testing.assert_array_equal(first.positions, second.positions)
        np.testing.assert_array_equal(first.descriptors, second.descriptors)

    def test_upscale_keeps_original_coordinates(self) -> None:
        image = create_feature_image(width=200, height=160)

        coll = _extractor(upscale=True).extract(image)

        assert len(coll) > 0
        assert np.all(coll.positions[:, 0] < 200)
        assert np.all(coll.positions[:, 1] < 160)

    def test_flat_image_has_no_features(self) -> None:
        coll = _extractor().extract(np.full((64, 64), 128.0, dtype=np.float32))

        assert len(coll) == 0

    def test_rejects_color_image(self) -> None:
        with pytest.raises(PipelineError) as exc_info:
            _extractor().extract(np.zeros((10, 10, 3), dtype=np.float32))

        assert exc_info.value.error == "invalid_image"
