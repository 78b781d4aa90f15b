# rwseg/cloud.py
"""Point cloud container used by the core (no file I/O here)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .errors import InvalidInputError


@dataclass(frozen=True)
class Cloud:
    """
    Immutable point set.

    xyz       : (N,3) float64 positions, NaN rows mark organized-cloud holes
    rgb       : (N,3) uint8 colors or None
    normals   : (N,3) float64 precomputed normals or None
    curvature : (N,) float64 curvature magnitudes (only with normals)
    shape     : (height, width) when the cloud is organized
    """

    xyz: np.ndarray
    rgb: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    curvature: Optional[np.ndarray] = None
    shape: Optional[Tuple[int, int]] = None

    def __post_init__(self) -> None:
        xyz = np.asarray(self.xyz, dtype=np.float64).reshape(-1, 3)
        xyz.setflags(write=False)
        object.__setattr__(self, "xyz", xyz)
        n = len(xyz)
        if self.rgb is not None:
            rgb = np.asarray(self.rgb)
            if rgb.dtype != np.uint8:
                # float colors in [0,1] as produced by Open3D
                rgb = np.clip(np.round(rgb * 255.0), 0, 255).astype(np.uint8)
            rgb = rgb.reshape(-1, 3)
            if len(rgb) != n:
                raise InvalidInputError(f"rgb has {len(rgb)} rows, xyz has {n}")
            rgb.setflags(write=False)
            object.__setattr__(self, "rgb", rgb)
        if self.normals is not None:
            nrm = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
            if len(nrm) != n:
                raise InvalidInputError(
                    f"normals has {len(nrm)} rows, xyz has {n}"
                )
            nrm.setflags(write=False)
            object.__setattr__(self, "normals", nrm)
        if self.curvature is not None:
            cur = np.asarray(self.curvature, dtype=np.float64).reshape(-1)
            if len(cur) != n:
                raise InvalidInputError(
                    f"curvature has {len(cur)} rows, xyz has {n}"
                )
            cur.setflags(write=False)
            object.__setattr__(self, "curvature", cur)
        if self.shape is not None and self.shape[0] * self.shape[1] != n:
            raise InvalidInputError(f"organized shape {self.shape} != {n} points")

    def __len__(self) -> int:
        return len(self.xyz)

    @property
    def is_organized(self) -> bool:
        return self.shape is not None and self.shape[0] > 1

    @property
    def has_colors(self) -> bool:
        return self.rgb is not None

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    def valid_mask(self) -> np.ndarray:
        """True for points with finite coordinates."""
        return np.isfinite(self.xyz).all(axis=1)
