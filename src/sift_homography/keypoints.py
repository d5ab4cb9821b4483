"""
Keypoint store.

A ``KeypointCollection`` owns the keypoints of one image in column form
(positions, scales, orientations, descriptors) next to the mutable match
fields written by the matcher and the refiner. ``Keypoint`` is a read-only
snapshot of one row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from sift_homography.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from numpy.typing import ArrayLike, NDArray

DESCRIPTOR_SIZE = 128
NO_MATCH = -1
LARGE_MATCH_ERROR = 1.0e6

logger = get_logger("keypoints")


@dataclass(frozen=True, slots=True)
class Keypoint:
    """One detected feature and its current match state."""

    x: float
    y: float
    scale: float
    orientation: float
    descriptor: NDArray[np.float32] = field(repr=False)
    match_index: int = NO_MATCH
    match_error: float = LARGE_MATCH_ERROR
    score: float = 0.0
    ambiguity: float = 1.0

    @property
    def orientation_deg(self) -> int:
        """Orientation rounded to whole degrees, as reported."""
        return int(round(self.orientation))

    @property
    def has_match(self) -> bool:
        return self.match_index != NO_MATCH


def _readonly(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.setflags(write=False)
    return view


class KeypointCollection:
    """
    Ordered, capacity-bounded keypoints of one image.

    Detections beyond ``capacity`` are dropped, never an error. Geometry and
    descriptors are fixed once stored; only the match fields change.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._positions = np.zeros((0, 2), dtype=np.float64)
        self._scales = np.zeros(0, dtype=np.float64)
        self._orientations = np.zeros(0, dtype=np.float64)
        self._descriptors = np.zeros((0, DESCRIPTOR_SIZE), dtype=np.float32)
        self._match_index = np.zeros(0, dtype=np.int64)
        self._match_error = np.zeros(0, dtype=np.float64)
        self._score = np.zeros(0, dtype=np.float64)
        self._ambiguity = np.zeros(0, dtype=np.float64)

    @classmethod
    def from_arrays(
        cls,
        positions: ArrayLike,
        scales: ArrayLike,
        orientations: ArrayLike,
        descriptors: ArrayLike,
        capacity: int,
    ) -> KeypointCollection:
        """
        Build a collection from column arrays, truncating to capacity.

        Args:
            positions: (N, 2) pixel coordinates
            scales: (N,) non-negative scales
            orientations: (N,) angles in degrees
            descriptors: (N, 128) descriptor vectors
            capacity: Maximum number of keypoints kept

        Returns:
            New collection holding min(N, capacity) keypoints
        """
        pos = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
        scl = np.asarray(scales, dtype=np.float64).reshape(-1)
        ori = np.asarray(orientations, dtype=np.float64).reshape(-1)
        desc = np.asarray(descriptors, dtype=np.float32).reshape(-1, DESCRIPTOR_SIZE)

        n = len(pos)
        if not (len(scl) == len(ori) == len(desc) == n):
            raise ValueError("positions, scales, orientations and descriptors differ in length")
        if np.any(scl < 0):
            raise ValueError("keypoint scales must be non-negative")

        collection = cls(capacity)
        keep = min(n, capacity)
        if keep < n:
            logger.debug(
                "Keypoints dropped at capacity",
                extra={"detected": n, "capacity": capacity, "dropped": n - keep},
            )
        collection._positions = pos[:keep].copy()
        collection._scales = scl[:keep].copy()
        collection._orientations = ori[:keep].copy()
        collection._descriptors = desc[:keep].copy()
        collection._match_index = np.full(keep, NO_MATCH, dtype=np.int64)
        collection._match_error = np.full(keep, LARGE_MATCH_ERROR, dtype=np.float64)
        collection._score = np.zeros(keep, dtype=np.float64)
        collection._ambiguity = np.ones(keep, dtype=np.float64)
        return collection

    @classmethod
    def from_keypoints(cls, keypoints: Iterable[Keypoint], capacity: int) -> KeypointCollection:
        """Build a collection from keypoint snapshots, keeping their match state."""
        kps = list(keypoints)[:capacity]
        collection = cls.from_arrays(
            positions=[(kp.x, kp.y) for kp in kps] or np.zeros((0, 2)),
            scales=[kp.scale for kp in kps],
            orientations=[kp.orientation for kp in kps],
            descriptors=[kp.descriptor for kp in kps] or np.zeros((0, DESCRIPTOR_SIZE)),
            capacity=capacity,
        )
        collection.set_matches(
            match_index=[kp.match_index for kp in kps],
            score=[kp.score for kp in kps],
            ambiguity=[kp.ambiguity for kp in kps],
            match_error=[kp.match_error for kp in kps],
        )
        return collection

    def append(self, keypoint: Keypoint) -> bool:
        """
        Add one keypoint.

        Returns:
            False if the collection is full and the keypoint was dropped
        """
        if len(self) >= self.capacity:
            logger.debug("Keypoint dropped at capacity", extra={"capacity": self.capacity})
            return False
        descriptor = np.asarray(keypoint.descriptor, dtype=np.float32).reshape(1, DESCRIPTOR_SIZE)
        self._positions = np.vstack([self._positions, [[keypoint.x, keypoint.y]]])
        self._scales = np.append(self._scales, keypoint.scale)
        self._orientations = np.append(self._orientations, keypoint.orientation)
        self._descriptors = np.vstack([self._descriptors, descriptor])
        self._match_index = np.append(self._match_index, keypoint.match_index)
        self._match_error = np.append(self._match_error, keypoint.match_error)
        self._score = np.append(self._score, keypoint.score)
        self._ambiguity = np.append(self._ambiguity, keypoint.ambiguity)
        return True

    def __len__(self) -> int:
        return len(self._positions)

    @property
    def count(self) -> int:
        return len(self)

    def __getitem__(self, index: int) -> Keypoint:
        return Keypoint(
            x=float(self._positions[index, 0]),
            y=float(self._positions[index, 1]),
            scale=float(self._scales[index]),
            orientation=float(self._orientations[index]),
            descriptor=_readonly(self._descriptors[index]),
            match_index=int(self._match_index[index]),
            match_error=float(self._match_error[index]),
            score=float(self._score[index]),
            ambiguity=float(self._ambiguity[index]),
        )

    def __iter__(self) -> Iterator[Keypoint]:
        for i in range(len(self)):
            yield self[i]

    # Column accessors. All views are read-only; writes go through set_matches
    # and apply_match_errors.

    @property
    def positions(self) -> NDArray[np.float64]:
        return _readonly(self._positions)

    @property
    def scales(self) -> NDArray[np.float64]:
        return _readonly(self._scales)

    @property
    def orientations(self) -> NDArray[np.float64]:
        return _readonly(self._orientations)

    @property
    def descriptors(self) -> NDArray[np.float32]:
        return _readonly(self._descriptors)

    @property
    def match_index(self) -> NDArray[np.int64]:
        return _readonly(self._match_index)

    @property
    def match_error(self) -> NDArray[np.float64]:
        return _readonly(self._match_error)

    @property
    def score(self) -> NDArray[np.float64]:
        return _readonly(self._score)

    @property
    def ambiguity(self) -> NDArray[np.float64]:
        return _readonly(self._ambiguity)

    def set_matches(
        self,
        match_index: ArrayLike,
        score: ArrayLike,
        ambiguity: ArrayLike,
        match_error: ArrayLike | None = None,
    ) -> None:
        """
        Store the result of a cross-collection matching pass.

        Args:
            match_index: (N,) index into the other collection, NO_MATCH for none
            score: (N,) best descriptor similarity
            ambiguity: (N,) second-best / best similarity
            match_error: (N,) optional errors; reset to the sentinel when omitted
        """
        n = len(self)
        idx = np.asarray(match_index, dtype=np.int64).reshape(-1)
        scr = np.asarray(score, dtype=np.float64).reshape(-1)
        amb = np.asarray(ambiguity, dtype=np.float64).reshape(-1)
        if not (len(idx) == len(scr) == len(amb) == n):
            raise ValueError(f"match arrays must have length {n}")
        self._match_index = idx.copy()
        self._score = scr.copy()
        self._ambiguity = amb.copy()
        if match_error is None:
            self._match_error = np.full(n, LARGE_MATCH_ERROR, dtype=np.float64)
        else:
            self.apply_match_errors(match_error)

    def apply_match_errors(self, match_error: ArrayLike) -> None:
        """Overwrite match errors; non-finite values become the sentinel."""
        err = np.asarray(match_error, dtype=np.float64).reshape(-1)
        if len(err) != len(self):
            raise ValueError(f"match_error must have length {len(self)}")
        self._match_error = np.where(np.isfinite(err), err, LARGE_MATCH_ERROR)

    def matched_positions(self, other: KeypointCollection) -> NDArray[np.float64]:
        """
        Positions of each keypoint's match in ``other``.

        Returns:
            (N, 2) array, NaN rows where there is no valid match
        """
        out = np.full((len(self), 2), np.nan, dtype=np.float64)
        valid = (self._match_index >= 0) & (self._match_index < len(other))
        out[valid] = other._positions[self._match_index[valid]]
        return out
