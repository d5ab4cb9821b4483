"""Unit tests for structured logging."""

from __future__ import annotations

import json
import logging

import pytest

from sift_homography.logging import JSONFormatter, get_logger, setup_logging


@pytest.mark.unit
class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_formats_extra_fields(self) -> None:
        record = logging.LogRecord(
            name="sift_homography.refiner",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Refinement finished",
            args=(),
            exc_info=None,
        )
        record.fit_count = 12

        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "sift_homography.refiner"
        assert payload["message"] == "Refinement finished"
        assert payload["extra"] == {"fit_count": 12}

    def test_no_extra_key_without_extras(self) -> None:
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "plain", (), None)

        payload = json.loads(JSONFormatter().format(record))

        assert "extra" not in payload


@pytest.mark.unit
class TestSetupLogging:
    """Tests for setup_logging and get_logger."""

    def test_invalid_level(self) -> None:
        with pytest.raises(ValueError):
            setup_logging("LOUD")

    def test_single_handler(self) -> None:
        setup_logging("INFO")
        logger = setup_logging("DEBUG")

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        assert logger.propagate is False

    def test_get_logger_namespace(self) -> None:
        assert get_logger("pipeline").name == "sift_homography.pipeline"
