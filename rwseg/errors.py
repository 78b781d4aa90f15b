# rwseg/errors.py
"""Error kinds raised by graph building, weighting and random walker solve."""

from __future__ import annotations


class SegmentationError(Exception):
    """Base class for segmentation errors."""


class InvalidInputError(SegmentationError, ValueError):
    """Empty cloud, non-positive parameter or malformed seeds."""


class DegenerateSeedingError(SegmentationError):
    """No seed labels at all; nothing to diffuse."""


class DisconnectedSeedComponentError(SegmentationError):
    """Unseeded vertices unreachable from any seed; raised only by a strict solver."""

    def __init__(self, message: str, n_vertices: int = 0) -> None:
        super().__init__(message)
        self.n_vertices = n_vertices


class SingularSystemError(SegmentationError):
    """Factorization or solve of the restricted Laplacian failed."""


class IOFailureError(SegmentationError, OSError):
    """External artifact could not be decoded."""
