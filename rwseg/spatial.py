# rwseg/spatial.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np
from scipy.spatial import cKDTree

from utils.logger import Logger

LOG = Logger.get_logger("spatial")

CHUNK = 250_000


class SpatialIndex(ABC):
    """
    Nearest-neighbor / radius queries over a fixed point set.

    Results are padded (M,k) arrays: missing neighbors have index == size
    and distance == inf.
    """

    @property
    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def knn(self, queries: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]: ...

    @abstractmethod
    def radius(
        self, queries: np.ndarray, r: float, max_nn: int
    ) -> Tuple[np.ndarray, np.ndarray]: ...

    def nearest(self, queries: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        d, i = self.knn(queries, 1)
        return d[:, 0], i[:, 0]


class KDTreeIndex(SpatialIndex):
    """scipy cKDTree backed index; ``workers`` parallelizes per-point queries."""

    def __init__(self, points: np.ndarray, workers: int = 1) -> None:
        self.P = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        self.workers = workers
        self.tree = cKDTree(self.P)

    @property
    def size(self) -> int:
        return len(self.P)

    def _query(self, Q: np.ndarray, k: int, upper: float):
        Q = np.asarray(Q, dtype=np.float64).reshape(-1, 3)
        D = np.full((len(Q), k), np.inf)
        I = np.full((len(Q), k), self.size, np.int64)
        if len(Q) == 0 or k == 0 or self.size == 0:
            return D, I
        starts = range(0, len(Q), CHUNK)
        it = (
            Logger.progress(starts, desc="neighbors", total=len(starts))
            if len(Q) > CHUNK
            else starts
        )
        for s in it:
            d, i = self.tree.query(
                Q[s : s + CHUNK],
                k=k,
                distance_upper_bound=upper,
                workers=self.workers,
            )
            D[s : s + CHUNK] = np.asarray(d).reshape(-1, k)
            I[s : s + CHUNK] = np.asarray(i).reshape(-1, k)
        return D, I

    def knn(self, queries: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        return self._query(queries, k, np.inf)

    def radius(
        self, queries: np.ndarray, r: float, max_nn: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        # closest max_nn with distance <= r; cKDTree's bound is strict, so
        # nudge it up one ulp. The rest are marked with index == size.
        return self._query(queries, max_nn, float(np.nextafter(r, np.inf)))
