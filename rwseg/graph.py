# rwseg/graph.py
"""Arena-style vertex/edge graph shared by builders, features, weights, solver."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix
from scipy.sparse.csgraph import connected_components

NO_VERTEX = -1


def canonical_edges(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """(E,2) int64 with u < v, no self-loops, no duplicates, sorted."""
    src = np.asarray(src, dtype=np.int64).reshape(-1)
    dst = np.asarray(dst, dtype=np.int64).reshape(-1)
    keep = src != dst
    src, dst = src[keep], dst[keep]
    if src.size == 0:
        return np.empty((0, 2), np.int64)
    E = np.stack([np.minimum(src, dst), np.maximum(src, dst)], axis=1)
    return np.unique(E, axis=0)


@dataclass
class Graph:
    """
    Vertices and edges as dense integer-indexed records.

    Per vertex: xyz, rgb (float in [0,1]), normal, curvature, convex flag,
    label (0 = unlabeled). Per edge: endpoints (u < v) and weight.
    """

    xyz: np.ndarray
    edges: np.ndarray
    rgb: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    curvature: Optional[np.ndarray] = None
    convex: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    labels: np.ndarray = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        self.xyz = np.asarray(self.xyz, dtype=np.float64).reshape(-1, 3)
        self.edges = np.asarray(self.edges, dtype=np.int64).reshape(-1, 2)
        n = len(self.xyz)
        if self.rgb is None:
            self.rgb = np.zeros((n, 3), np.float64)
        if self.normals is None:
            self.normals = np.zeros((n, 3), np.float64)
        if self.curvature is None:
            self.curvature = np.zeros(n, np.float64)
        if self.convex is None:
            self.convex = np.ones(n, bool)
        if self.weights is None:
            self.weights = np.ones(len(self.edges), np.float64)
        if self.labels is None:
            self.labels = np.zeros(n, np.int32)

    # ------------------------------------------------------------------ sizes
    @property
    def num_vertices(self) -> int:
        return int(len(self.xyz))

    @property
    def num_edges(self) -> int:
        return int(len(self.edges))

    def __repr__(self) -> str:
        return f"Graph(V={self.num_vertices}, E={self.num_edges})"

    # -------------------------------------------------------------- topology
    def adjacency(self, weighted: bool = True) -> csr_matrix:
        """Symmetric (V,V) CSR; entries are edge weights or ones."""
        n = self.num_vertices
        if self.num_edges == 0:
            return csr_matrix((n, n), dtype=np.float64)
        u, v = self.edges[:, 0], self.edges[:, 1]
        w = self.weights if weighted else np.ones(self.num_edges)
        rows = np.concatenate([u, v])
        cols = np.concatenate([v, u])
        data = np.concatenate([w, w]).astype(np.float64)
        return coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()

    def degree(self) -> np.ndarray:
        deg = np.zeros(self.num_vertices, np.int64)
        if self.num_edges:
            np.add.at(deg, self.edges[:, 0], 1)
            np.add.at(deg, self.edges[:, 1], 1)
        return deg

    def neighbors(self, v: int) -> np.ndarray:
        A = self.adjacency(weighted=False)
        return A.indices[A.indptr[v] : A.indptr[v + 1]]

    def components(self) -> Tuple[int, np.ndarray]:
        """Connected components: (count, per-vertex component id)."""
        return connected_components(
            self.adjacency(weighted=False), directed=False
        )

    def edge_weight(self, u: int, v: int) -> float:
        """Weight of edge (u,v) in either order; KeyError if absent."""
        a, b = (u, v) if u < v else (v, u)
        hit = np.flatnonzero((self.edges[:, 0] == a) & (self.edges[:, 1] == b))
        if hit.size == 0:
            raise KeyError((u, v))
        return float(self.weights[hit[0]])

    def copy(self) -> "Graph":
        return Graph(
            xyz=self.xyz.copy(),
            edges=self.edges.copy(),
            rgb=self.rgb.copy(),
            normals=self.normals.copy(),
            curvature=self.curvature.copy(),
            convex=self.convex.copy(),
            weights=self.weights.copy(),
            labels=self.labels.copy(),
        )
