"""
Planar projective transforms between image 1 and image 2.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

# Relative tolerance: denominators against the norm of the third row, the
# smallest singular value against the largest
DEGENERATE_EPS = 1e-10

MIN_CORRESPONDENCES = 4


class Homography:
    """
    3x3 transform mapping image-1 pixels to image-2 pixels.

    Stored as nine scalars in row-major order. Projection divides by the
    third homogeneous component; a near-zero denominator yields ``inf``
    coordinates rather than a finite but meaningless point.
    """

    __slots__ = ("_h",)

    def __init__(self, matrix: ArrayLike) -> None:
        h = np.asarray(matrix, dtype=np.float64)
        if h.size != 9:
            raise ValueError(f"homography needs 9 values, got {h.size}")
        self._h = h.reshape(3, 3).copy()
        self._h.setflags(write=False)

    @classmethod
    def identity(cls) -> Homography:
        return cls(np.eye(3))

    @classmethod
    def from_row_major(cls, values: Sequence[float]) -> Homography:
        return cls(np.asarray(values, dtype=np.float64))

    @property
    def matrix(self) -> NDArray[np.float64]:
        return self._h

    def as_row_major(self) -> tuple[float, ...]:
        return tuple(float(v) for v in self._h.ravel())

    def __repr__(self) -> str:
        return f"Homography({np.array2string(self._h, precision=6)})"

    def denominators(self, points: ArrayLike) -> NDArray[np.float64]:
        """Third homogeneous component of H applied to each point."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return self._h[2, 0] * pts[:, 0] + self._h[2, 1] * pts[:, 1] + self._h[2, 2]

    def project(self, points: ArrayLike) -> NDArray[np.float64]:
        """
        Map points from image 1 to image 2.

        Args:
            points: (N, 2) pixel coordinates

        Returns:
            (N, 2) projected coordinates; rows are ``inf`` where the
            denominator is degenerate
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        den = self.denominators(pts)
        num_x = self._h[0, 0] * pts[:, 0] + self._h[0, 1] * pts[:, 1] + self._h[0, 2]
        num_y = self._h[1, 0] * pts[:, 0] + self._h[1, 1] * pts[:, 1] + self._h[1, 2]

        limit = DEGENERATE_EPS * float(np.linalg.norm(self._h[2]))
        degenerate = ~np.isfinite(den) | (np.abs(den) <= limit)
        safe_den = np.where(degenerate, 1.0, den)
        out = np.stack([num_x / safe_den, num_y / safe_den], axis=1)
        out[degenerate] = np.inf
        out[~np.isfinite(out).all(axis=1)] = np.inf
        return out

    def project_point(self, x: float, y: float) -> tuple[float, float]:
        px, py = self.project([[x, y]])[0]
        return float(px), float(py)

    def is_degenerate(self) -> bool:
        """True when the matrix is numerically singular or not finite."""
        if not np.all(np.isfinite(self._h)):
            return True
        singular_values = np.linalg.svd(self._h, compute_uv=False)
        return bool(singular_values[-1] <= DEGENERATE_EPS * singular_values[0])

    def inverse(self) -> Homography | None:
        """Inverse transform, or None for a singular matrix."""
        if self.is_degenerate():
            return None
        return Homography(np.linalg.inv(self._h))

    def normalized(self) -> Homography:
        """Scale so that h[2][2] == 1 when that entry is usable."""
        h22 = self._h[2, 2]
        if abs(h22) <= DEGENERATE_EPS * float(np.linalg.norm(self._h)):
            return self
        return Homography(self._h / h22)

    def is_close(self, other: Homography, atol: float = 1e-6) -> bool:
        """Compare up to scale."""
        return bool(np.allclose(self.normalized().matrix, other.normalized().matrix, atol=atol))

    @classmethod
    def fit(cls, src: ArrayLike, dst: ArrayLike) -> Homography | None:
        """
        Least-squares homography from point correspondences.

        Solves the linear eight-parameter system with h[2][2] fixed to 1,
        on Hartley-normalised coordinates.

        Args:
            src: (N, 2) image-1 points
            dst: (N, 2) image-2 points

        Returns:
            Fitted transform, or None when fewer than four correspondences
            are given or the system is rank deficient
        """
        p1 = np.asarray(src, dtype=np.float64).reshape(-1, 2)
        p2 = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
        if len(p1) != len(p2):
            raise ValueError("src and dst differ in length")
        if len(p1) < MIN_CORRESPONDENCES:
            return None
        if not (np.all(np.isfinite(p1)) and np.all(np.isfinite(p2))):
            return None

        t1 = _normalizing_transform(p1)
        t2 = _normalizing_transform(p2)
        if t1 is None or t2 is None:
            return None
        n1 = _apply(t1, p1)
        n2 = _apply(t2, p2)

        x, y = n1[:, 0], n1[:, 1]
        u, v = n2[:, 0], n2[:, 1]
        zeros = np.zeros_like(x)
        ones = np.ones_like(x)
        rows_u = np.stack([x, y, ones, zeros, zeros, zeros, -x * u, -y * u], axis=1)
        rows_v = np.stack([zeros, zeros, zeros, x, y, ones, -x * v, -y * v], axis=1)
        a = np.vstack([rows_u, rows_v])
        b = np.concatenate([u, v])

        params, _, rank, _ = np.linalg.lstsq(a, b, rcond=None)
        if rank < 8:
            return None

        hn = np.append(params, 1.0).reshape(3, 3)
        h = np.linalg.inv(t2) @ hn @ t1
        if not np.all(np.isfinite(h)) or abs(h[2, 2]) <= DEGENERATE_EPS * float(np.linalg.norm(h)):
            return None
        return cls(h / h[2, 2])


def _normalizing_transform(points: NDArray[np.float64]) -> NDArray[np.float64] | None:
    centroid = points.mean(axis=0)
    mean_dist = np.sqrt(((points - centroid) ** 2).sum(axis=1)).mean()
    if mean_dist <= DEGENERATE_EPS:
        return None
    s = np.sqrt(2.0) / mean_dist
    return np.array(
        [
            [s, 0.0, -s * centroid[0]],
            [0.0, s, -s * centroid[1]],
            [0.0, 0.0, 1.0],
        ]
    )


def _apply(t: NDArray[np.float64], points: NDArray[np.float64]) -> NDArray[np.float64]:
    return points * t[0, 0] + t[:2, 2]
