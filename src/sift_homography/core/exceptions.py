"""Exceptions raised by the pipeline's collaborators."""

from __future__ import annotations


class PipelineError(Exception):
    """
    Fatal failure in a collaborator (image I/O, extraction, buffer setup).

    The matching core never raises this; per-point and per-round anomalies
    are reported through result values instead.

    Attributes:
        error: Machine-readable error code
        message: Human-readable description
        details: Additional context
    """

    def __init__(
        self,
        error: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> None:
        self.error = error
        self.message = message
        if details is None:
            self.details: dict[str, object] = {}
        else:
            self.details = details
        super().__init__(message)
