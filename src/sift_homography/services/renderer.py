"""
Report rendering: match trajectories, keypoint markers and the text summary.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from sift_homography.logging import get_logger
from sift_homography.schemas import MatchSummary, fit_percentage
from sift_homography.utils.image import pixel

if TYPE_CHECKING:
    from sift_homography.keypoints import Keypoint, KeypointCollection
    from sift_homography.utils.image import ImageBuffer

logger = get_logger("renderer")


class ReportRenderer:
    """Draw matches into an image-1 buffer and summarise a run."""

    def __init__(
        self,
        max_match_error: float = 5.0,
        line_value: float = 255.0,
        outer_value: float = 255.0,
        inner_value: float = 0.0,
        marker_scale: float = 1.41,
    ) -> None:
        """
        Initialize renderer.

        Args:
            max_match_error: Only matches with a smaller error (pixels) get a line
            line_value: Pixel value of match trajectories
            outer_value: Pixel value of the marker frame
            inner_value: Pixel value of the marker's offset shadow frame
            marker_scale: Marker half-size as a multiple of keypoint scale
        """
        self.max_match_error = max_match_error
        self.line_value = line_value
        self.outer_value = outer_value
        self.inner_value = inner_value
        self.marker_scale = marker_scale

    def annotate(
        self,
        coll1: KeypointCollection,
        coll2: KeypointCollection,
        buffer: ImageBuffer,
    ) -> int:
        """
        Draw into ``buffer`` in place.

        Every image-1 keypoint with an acceptable match error gets a line
        towards its match's position; every image-1 keypoint gets a marker.
        Writes outside the image are dropped.

        Returns:
            Number of trajectories drawn
        """
        lines = 0
        for kp in coll1:
            if kp.match_error < self.max_match_error and 0 <= kp.match_index < len(coll2):
                target = coll2[kp.match_index]
                self._draw_line(buffer, kp.x, kp.y, target.x, target.y)
                lines += 1
            self._draw_marker(buffer, kp)

        logger.debug(
            "Annotated image",
            extra={"keypoints": len(coll1), "trajectories": lines},
        )
        return lines

    def _draw_line(
        self,
        buffer: ImageBuffer,
        x0: float,
        y0: float,
        x1: float,
        y1: float,
    ) -> None:
        """Step along the longer axis from (x0, y0) towards (x1, y1), end excluded."""
        if not all(math.isfinite(v) for v in (x0, y0, x1, y1)):
            return
        dx = x1 - x0
        dy = y1 - y0
        length = int(max(abs(dx), abs(dy)))
        for step in range(length):
            x = pixel(x0 + dx * step / length)
            y = pixel(y0 + dy * step / length)
            buffer.put(x, y, self.line_value)

    def marker_size(self, buffer: ImageBuffer, kp: Keypoint) -> int:
        """Marker half-size, clamped so both frames stay inside the image."""
        x = pixel(kp.x + 0.5)
        y = pixel(kp.y + 0.5)
        wanted = int(self.marker_scale * kp.scale) if math.isfinite(kp.scale) else 0
        return max(0, min(x, y, buffer.width - x - 2, buffer.height - y - 2, wanted))

    def _draw_marker(self, buffer: ImageBuffer, kp: Keypoint) -> None:
        if not (math.isfinite(kp.x) and math.isfinite(kp.y)):
            return
        x = pixel(kp.x + 0.5)
        y = pixel(kp.y + 0.5)
        size = self.marker_size(buffer, kp)
        if size == 0:
            return
        # Shadow frame one pixel down-right, then the frame itself on top
        self._draw_square(buffer, x + 1, y + 1, size, self.inner_value)
        self._draw_square(buffer, x, y, size, self.outer_value)

    @staticmethod
    def _draw_square(buffer: ImageBuffer, cx: int, cy: int, half: int, value: float) -> None:
        for k in range(-half, half + 1):
            buffer.put(cx + k, cy - half, value)
            buffer.put(cx + k, cy + half, value)
            buffer.put(cx - half, cy + k, value)
            buffer.put(cx + half, cy + k, value)

    def summarize(
        self,
        num_features1: int,
        num_features2: int,
        num_fit: int,
        num_matches: int,
        init_blur: float,
        threshold: float,
        num_found: int | None = None,
        refinement_rounds: int = 0,
        underdetermined: bool = False,
    ) -> MatchSummary:
        """Build the text summary of a run."""
        return MatchSummary(
            num_features1=num_features1,
            num_features2=num_features2,
            num_fit=num_fit,
            num_matches=num_matches,
            fit_percentage=fit_percentage(num_fit, num_features1, num_features2),
            init_blur=init_blur,
            threshold=threshold,
            num_found=num_found,
            refinement_rounds=refinement_rounds,
            underdetermined=underdetermined,
        )
