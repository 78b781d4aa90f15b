# rwseg/builders.py
"""Graph construction: voxel grid, K nearest neighbors, radius neighbors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import product
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from utils.logger import Logger

from .cloud import Cloud
from .config import GraphBuilderCfg
from .errors import InvalidInputError
from .graph import NO_VERTEX, Graph, canonical_edges
from .spatial import KDTreeIndex, SpatialIndex

LOG = Logger.get_logger("builder")

# 13 of the 26 neighbor offsets; the mirrored half is implied by undirected edges
HALF_OFFSETS = np.array(
    [o for o in product((-1, 0, 1), repeat=3) if o > (0, 0, 0)], dtype=np.int64
)


@dataclass
class BuildResult:
    graph: Graph
    point_to_vertex: np.ndarray  # (N,) vertex id or NO_VERTEX

    def __iter__(self):
        return iter((self.graph, self.point_to_vertex))


# ============================== BASE =========================================


class GraphBuilder(ABC):
    """Turns a cloud (optionally a subset of it) into a vertex/edge graph."""

    name = "base"

    def compute(
        self, cloud: Cloud, indices: Optional[np.ndarray] = None
    ) -> BuildResult:
        sel = self._select(cloud, indices)
        res = self._build(cloud, sel)
        LOG.info(
            f"[{self.name}] {len(cloud)} points -> "
            f"{res.graph.num_vertices} vertices {res.graph.num_edges} edges"
        )
        return res

    @abstractmethod
    def _build(self, cloud: Cloud, sel: np.ndarray) -> BuildResult: ...

    @staticmethod
    def _select(cloud: Cloud, indices: Optional[np.ndarray]) -> np.ndarray:
        """Point indices that may become vertices (finite, inside ``indices``)."""
        if len(cloud) == 0:
            raise InvalidInputError("input cloud is empty")
        mask = cloud.valid_mask()
        if indices is not None:
            idx = np.asarray(indices, dtype=np.int64).reshape(-1)
            if idx.size and (idx.min() < 0 or idx.max() >= len(cloud)):
                raise InvalidInputError("indices out of cloud range")
            keep = np.zeros(len(cloud), bool)
            keep[idx] = True
            mask &= keep
        sel = np.flatnonzero(mask)
        if sel.size == 0:
            raise InvalidInputError("no valid points to build a graph from")
        dropped = len(cloud) - sel.size
        if dropped:
            LOG.debug(f"{dropped} points excluded (invalid or not indexed)")
        return sel

    @staticmethod
    def _point_attributes(cloud: Cloud, sel: np.ndarray) -> Dict[str, np.ndarray]:
        attrs: Dict[str, np.ndarray] = {"xyz": cloud.xyz[sel]}
        if cloud.rgb is not None:
            attrs["rgb"] = cloud.rgb[sel].astype(np.float64) / 255.0
        if cloud.normals is not None:
            attrs["normals"] = np.nan_to_num(cloud.normals[sel])
        if cloud.curvature is not None:
            attrs["curvature"] = np.nan_to_num(cloud.curvature[sel])
        return attrs


# ============================== NEIGHBOR SEARCH ==============================


class _NeighborSearchBuilder(GraphBuilder):
    """One vertex per selected point; edges from a spatial index query."""

    def __init__(
        self,
        workers: int = 1,
        index_factory: Callable[[np.ndarray], SpatialIndex] | None = None,
    ) -> None:
        self.workers = workers
        self.index_factory = index_factory or (
            lambda P: KDTreeIndex(P, workers=self.workers)
        )

    @abstractmethod
    def _query(self, index: SpatialIndex, P: np.ndarray) -> Tuple[np.ndarray, int]:
        """Padded neighbor ids and the number of neighbors to keep per row."""

    def _build(self, cloud: Cloud, sel: np.ndarray) -> BuildResult:
        attrs = self._point_attributes(cloud, sel)
        P = attrs["xyz"]
        n = len(P)
        p2v = np.full(len(cloud), NO_VERTEX, np.int64)
        p2v[sel] = np.arange(n)

        index = self.index_factory(P)
        I, keep_k = self._query(index, P)
        if keep_k == 0 or I.size == 0:
            edges = np.empty((0, 2), np.int64)
        else:
            rows = np.repeat(np.arange(n)[:, None], I.shape[1], axis=1)
            valid = (I < index.size) & (I != rows)
            # duplicates of the query point may push self out of column 0
            valid &= np.cumsum(valid, axis=1) <= keep_k
            edges = canonical_edges(rows[valid], I[valid])
        return BuildResult(Graph(edges=edges, **attrs), p2v)


class NearestNeighborsGraphBuilder(_NeighborSearchBuilder):
    """Edge from every point to each of its ``k`` nearest neighbors."""

    name = "knn"

    def __init__(self, k: int = 14, workers: int = 1, index_factory=None) -> None:
        if k < 0:
            raise InvalidInputError(f"k must be >= 0, got {k}")
        super().__init__(workers, index_factory)
        self.k = int(k)

    def _query(self, index, P):
        if self.k == 0:
            return np.empty((len(P), 0), np.int64), 0
        _, I = index.knn(P, min(self.k + 1, index.size))
        return I, self.k


class RadiusGraphBuilder(_NeighborSearchBuilder):
    """Edges to at most ``max_neighbors`` closest points at distance <= ``radius``."""

    name = "radius"

    def __init__(
        self,
        radius: float,
        max_neighbors: int = 14,
        workers: int = 1,
        index_factory=None,
    ) -> None:
        if not radius > 0:
            raise InvalidInputError(f"radius must be > 0, got {radius}")
        if max_neighbors <= 0:
            raise InvalidInputError(
                f"max_neighbors must be > 0, got {max_neighbors}"
            )
        super().__init__(workers, index_factory)
        self.radius = float(radius)
        self.max_neighbors = int(max_neighbors)

    def _query(self, index, P):
        k = min(self.max_neighbors + 1, index.size)
        _, I = index.radius(P, self.radius, k)
        return I, self.max_neighbors


# ============================== VOXEL GRID ===================================


class VoxelGridGraphBuilder(GraphBuilder):
    """
    One vertex per occupied cubic cell of side ``resolution`` placed at the
    centroid of its points; cells touching by face, edge or corner are linked.
    """

    name = "voxel_grid"

    def __init__(self, resolution: float) -> None:
        if not resolution > 0:
            raise InvalidInputError(f"resolution must be > 0, got {resolution}")
        self.resolution = float(resolution)

    def _build(self, cloud: Cloud, sel: np.ndarray) -> BuildResult:
        attrs = self._point_attributes(cloud, sel)
        P = attrs["xyz"]
        keys = np.floor((P - P.min(0)) / self.resolution).astype(np.int64)
        cells, inv = np.unique(keys, axis=0, return_inverse=True)
        inv = inv.reshape(-1)
        V = len(cells)
        counts = np.bincount(inv, minlength=V).astype(np.float64)

        def _mean(X: np.ndarray) -> np.ndarray:
            cols = [np.bincount(inv, weights=X[:, c], minlength=V) for c in range(X.shape[1])]
            return np.stack(cols, axis=1) / counts[:, None]

        out: Dict[str, np.ndarray] = {"xyz": _mean(P)}
        if "rgb" in attrs:
            out["rgb"] = _mean(attrs["rgb"])
        if "normals" in attrs:
            N = _mean(attrs["normals"])
            nn = np.linalg.norm(N, axis=1, keepdims=True)
            out["normals"] = np.where(nn > 1e-12, N / np.maximum(nn, 1e-12), 0.0)
        if "curvature" in attrs:
            out["curvature"] = _mean(attrs["curvature"][:, None])[:, 0]

        edges = self._cell_adjacency(cells)
        p2v = np.full(len(cloud), NO_VERTEX, np.int64)
        p2v[sel] = inv
        return BuildResult(Graph(edges=edges, **out), p2v)

    @staticmethod
    def _cell_adjacency(cells: np.ndarray) -> np.ndarray:
        """26-neighborhood edges between occupied cells (``cells`` sorted)."""
        shifted = cells + 1  # room for the -1 offsets
        dims = shifted.max(0) + 2
        stride = np.array([dims[1] * dims[2], dims[2], 1], np.int64)
        lin = shifted @ stride  # ascending: cells come lexicographically sorted
        src, dst = [], []
        for off in HALF_OFFSETS:
            target = lin + int(off @ stride)
            pos = np.searchsorted(lin, target)
            pos_c = np.minimum(pos, len(lin) - 1)
            hit = (pos < len(lin)) & (lin[pos_c] == target)
            src.append(np.flatnonzero(hit))
            dst.append(pos_c[hit])
        return canonical_edges(np.concatenate(src), np.concatenate(dst))


# ============================== FACTORY ======================================

BUILDERS: Dict[str, Callable[[GraphBuilderCfg], GraphBuilder]] = {
    "voxel_grid": lambda c: VoxelGridGraphBuilder(c.resolution),
    "knn": lambda c: NearestNeighborsGraphBuilder(c.k, workers=c.n_jobs),
    "radius": lambda c: RadiusGraphBuilder(
        c.radius, c.max_neighbors, workers=c.n_jobs
    ),
}


def make_builder(cfg: GraphBuilderCfg) -> GraphBuilder:
    """Instantiate the builder named by ``cfg.kind``."""
    cfg.validate()
    return BUILDERS[cfg.kind](cfg)


def build(cloud: Cloud, cfg: GraphBuilderCfg, indices=None) -> BuildResult:
    return make_builder(cfg).compute(cloud, indices)
