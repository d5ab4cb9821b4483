"""
End-to-end tests for the matching pipeline.

Runs extraction, matching, estimation, refinement and annotation on
synthetic data with a known transform.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from sift_homography.config import Settings, load_settings, load_yaml_config
from sift_homography.core.exceptions import PipelineError
from sift_homography.homography import Homography
from sift_homography.pipeline import FrameProcessor, MatchPipeline
from sift_homography.services.scorer import MatchDecision
from sift_homography.utils.image import load_image
from tests.factories import (
    SAMPLE_HOMOGRAPHY,
    create_collection,
    create_feature_image,
    create_png_bytes,
    create_transformed_pair,
    warp_image,
)

if TYPE_CHECKING:
    from pathlib import Path


def _one_hot(count: int) -> np.ndarray:
    desc = np.zeros((count, 128), dtype=np.float32)
    desc[np.arange(count), np.arange(count)] = 1.0
    return desc


@pytest.mark.integration
class TestMatchCollections:
    """Matching on precomputed keypoints."""

    def test_three_identical_keypoints(self) -> None:
        """Three points, identity transform: all match, refinement cannot refit."""
        positions = [(10.0, 10.0), (60.0, 12.0), (15.0, 70.0)]
        coll1 = create_collection(positions, _one_hot(3))
        coll2 = create_collection(positions, _one_hot(3))
        pipeline = MatchPipeline(Settings())

        outcome = pipeline.match_collections(coll1, coll2, initial=Homography.identity())

        np.testing.assert_array_equal(coll1.match_index, [0, 1, 2])
        scoring = pipeline.scorer.score(coll1, coll2, outcome.refinement.homography)
        assert scoring.decisions() == [MatchDecision.BOTH] * 3
        assert outcome.refinement.underdetermined
        assert outcome.refinement.homography.is_close(Homography.identity())
        assert outcome.refinement.fit_count == 3
        assert outcome.num_found == 3
        assert "Number of matching features: 3 3 100.00% 1.00 3.50" in outcome.summary.format()

    def test_known_transform_recovered(self) -> None:
        coll1, coll2 = create_transformed_pair(count=60, seed=5)
        pipeline = MatchPipeline(Settings())

        outcome = pipeline.match_collections(coll1, coll2)

        assert outcome.estimation.ok
        assert outcome.refinement.fit_count == 60
        assert outcome.refinement.homography.is_close(Homography(SAMPLE_HOMOGRAPHY), atol=1e-4)
        assert np.all(coll1.match_error < 1e-3)
        assert outcome.summary.fit_percentage == pytest.approx(100.0)

    def test_diagnostics_dump(self) -> None:
        coll1, coll2 = create_transformed_pair(count=8)
        settings = Settings(matching={"dump_diagnostics": True})

        outcome = MatchPipeline(settings).match_collections(coll1, coll2)

        assert outcome.diagnostics is not None
        assert outcome.diagnostics.splitlines()[-1] == "Number of founds: 8"

    def test_no_dump_by_default(self) -> None:
        coll1, coll2 = create_transformed_pair(count=8)

        outcome = MatchPipeline(Settings()).match_collections(coll1, coll2)

        assert outcome.diagnostics is None


@pytest.mark.integration
class TestRun:
    """Full runs on images."""

    def test_warped_image(self) -> None:
        image1 = create_feature_image(width=320, height=240, seed=11)
        image2 = warp_image(image1)
        original = image1.copy()

        result = MatchPipeline(Settings()).run(image1, image2)

        np.testing.assert_array_equal(image1, original)
        assert len(result.keypoints1) > 0
        assert result.outcome.refinement.fit_count >= 10

        centre = np.array([[160.0, 120.0], [120.0, 100.0], [200.0, 140.0]])
        expected = Homography(SAMPLE_HOMOGRAPHY).project(centre)
        actual = result.outcome.refinement.homography.project(centre)
        assert np.max(np.abs(actual - expected)) < 3.0

    def test_annotation_changes_image(self) -> None:
        image1 = create_feature_image(seed=2)
        image2 = warp_image(image1)

        result = MatchPipeline(Settings()).run(image1, image2)
        annotated = result.annotated.to_array()

        assert annotated.shape == image1.shape
        assert not np.array_equal(annotated, image1)

    def test_run_files(self, config_file: Path, tmp_path: Path) -> None:
        settings = load_settings(Settings, load_yaml_config(config_file))

        result = MatchPipeline(settings).run_files()

        output = load_image(tmp_path / "out" / "limg_pts.pgm")
        assert output.shape == (240, 320)
        assert result.outcome.summary.num_features1 == len(result.keypoints1)

    def test_missing_image(self, tmp_path: Path) -> None:
        settings = Settings(io={"image1": tmp_path / "nope.png", "image2": tmp_path / "nope2.png"})

        with pytest.raises(PipelineError) as exc_info:
            MatchPipeline(settings).run_files()

        assert exc_info.value.error == "image_not_found"


@pytest.mark.integration
class TestFrameProcessor:
    """Per-frame extraction."""

    def test_counts_frames(self) -> None:
        processor = FrameProcessor(MatchPipeline(Settings()).extractor)
        frame = create_feature_image()

        first = processor.process(frame)
        second = processor.process(frame)

        assert first > 0
        assert first == second
        assert processor.frames == 2

    def test_color_frame(self) -> None:
        processor = FrameProcessor(MatchPipeline(Settings()).extractor)
        gray = create_feature_image()
        frame = np.repeat(gray[:, :, None], 3, axis=2)

        assert processor.process(frame) == processor.process(gray)

    def test_color_frame_saturates(self) -> None:
        """Values above 255 clip to white instead of wrapping around."""
        processor = FrameProcessor(MatchPipeline(Settings()).extractor)
        bright = create_feature_image()
        bright[bright >= 200] = 300.0
        frame = np.repeat(bright[:, :, None], 3, axis=2)

        assert processor.process(frame) == processor.process(np.clip(bright, 0, 255))

    def test_encoded_frame(self) -> None:
        processor = FrameProcessor(MatchPipeline(Settings()).extractor)
        gray = create_feature_image()

        assert processor.process_encoded(create_png_bytes(gray)) == processor.process(gray)
        assert processor.frames == 2

    def test_undecodable_frame(self) -> None:
        processor = FrameProcessor(MatchPipeline(Settings()).extractor)

        with pytest.raises(PipelineError) as exc_info:
            processor.process_encoded(b"not an image")

        assert exc_info.value.error == "invalid_image"
        assert processor.frames == 0
