"""Unit tests for the initial RANSAC homography estimate."""

from __future__ import annotations

import numpy as np
import pytest

from sift_homography.homography import Homography
from sift_homography.services.geometric_verifier import InitialHomographyEstimator
from tests.factories import SAMPLE_HOMOGRAPHY, create_collection, create_transformed_pair


@pytest.fixture
def estimator() -> InitialHomographyEstimator:
    """Provide an estimator with the driver's settings."""
    return InitialHomographyEstimator(
        max_iterations=2000,
        min_score=0.0,
        max_ambiguity=0.8,
        threshold=5.0,
        confidence=0.995,
        seed=0,
    )


def _match(coll1, index, ambiguity: float = 0.1) -> None:
    n = len(coll1)
    coll1.set_matches(match_index=index, score=np.ones(n), ambiguity=np.full(n, ambiguity))


@pytest.mark.unit
class TestInitialHomographyEstimator:
    """Tests for InitialHomographyEstimator."""

    def test_recovers_transform(self, estimator: InitialHomographyEstimator) -> None:
        coll1, coll2 = create_transformed_pair(count=50)
        _match(coll1, np.arange(50))

        result = estimator.estimate(coll1, coll2)

        assert result.ok
        assert result.num_matches == 50
        assert result.homography.is_close(Homography(SAMPLE_HOMOGRAPHY), atol=1e-2)

    def test_rejects_outliers(self, estimator: InitialHomographyEstimator) -> None:
        coll1, coll2 = create_transformed_pair(count=50)
        index = np.arange(50)
        index[:10] = np.roll(index[:10], 1)
        _match(coll1, index)

        result = estimator.estimate(coll1, coll2)

        assert result.ok
        assert 38 <= result.num_matches <= 42

    def test_too_few_matches(self, estimator: InitialHomographyEstimator) -> None:
        positions = [(0.0, 0.0), (10.0, 0.0), (0.0, 10.0)]
        coll1 = create_collection(positions)
        coll2 = create_collection(positions)
        _match(coll1, np.arange(3))

        result = estimator.estimate(coll1, coll2)

        assert not result.ok
        assert result.num_matches == 0
        assert result.homography.is_close(Homography.identity())

    def test_ambiguous_matches_not_sampled(self, estimator: InitialHomographyEstimator) -> None:
        coll1, coll2 = create_transformed_pair(count=20)
        _match(coll1, np.arange(20), ambiguity=0.9)

        result = estimator.estimate(coll1, coll2)

        assert not result.ok

    def test_repeatable(self, estimator: InitialHomographyEstimator) -> None:
        coll1, coll2 = create_transformed_pair(count=40, seed=3)
        index = np.arange(40)
        index[:8] = np.roll(index[:8], 2)
        _match(coll1, index)

        first = estimator.estimate(coll1, coll2)
        second = estimator.estimate(coll1, coll2)

        np.testing.assert_array_equal(first.homography.matrix, second.homography.matrix)
        assert first.num_matches == second.num_matches
