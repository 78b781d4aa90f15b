# rwseg/features.py
"""Per-vertex normals, curvature magnitude and convexity from graph topology."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.sparse import identity

from utils.logger import Logger

from .graph import Graph

LOG = Logger.get_logger("features")

MIN_NEIGHBORS = 3
# |cos| below this between normal and centroid offset counts as flat
FLAT_TOL = 1e-6


def compute_normals_and_curvatures(
    graph: Graph, viewpoint: Sequence[float] = (0.0, 0.0, 0.0)
) -> None:
    """
    Fill ``graph.normals`` and ``graph.curvature`` in place.

    Each vertex uses itself plus its graph neighbors. The normal is the
    eigenvector of the smallest covariance eigenvalue, flipped to face
    ``viewpoint``; curvature is lambda_min / (lambda_0 + lambda_1 + lambda_2).
    Vertices with fewer than 3 neighbors get a zero normal and curvature 0.
    """
    V = graph.num_vertices
    normals = np.zeros((V, 3), np.float64)
    curvature = np.zeros(V, np.float64)
    if V == 0:
        graph.normals, graph.curvature = normals, curvature
        return

    A = graph.adjacency(weighted=False)
    deg = np.diff(A.indptr)
    ok = deg >= MIN_NEIGHBORS
    if not ok.any():
        LOG.warning("no vertex has enough neighbors for a normal")
        graph.normals, graph.curvature = normals, curvature
        return

    X = graph.xyz - graph.xyz.mean(0)
    M = (A + identity(V, format="csr")).tocsr()
    cnt = (deg + 1).astype(np.float64)[:, None]
    mean = (M @ X) / cnt
    outer = (X[:, :, None] * X[:, None, :]).reshape(V, 9)
    second = (M @ outer) / cnt
    cov = second.reshape(V, 3, 3) - mean[:, :, None] * mean[:, None, :]

    w, vecs = np.linalg.eigh(cov[ok])
    w = np.clip(w, 0.0, None)
    total = w.sum(1)
    n = vecs[:, :, 0]
    vp = np.asarray(viewpoint, dtype=np.float64).reshape(1, 3)
    flip = np.einsum("ij,ij->i", n, vp - graph.xyz[ok]) < 0
    n[flip] *= -1.0

    normals[ok] = n
    curvature[ok] = np.where(total > 0, w[:, 0] / np.where(total > 0, total, 1.0), 0.0)
    graph.normals, graph.curvature = normals, curvature
    LOG.debug(f"normals: {int(ok.sum())}/{V} vertices, {int((~ok).sum())} degenerate")


def compute_signed_curvatures(graph: Graph) -> None:
    """
    Fill ``graph.convex`` in place.

    A vertex is concave when the centroid of its neighbors lies behind the
    surface along its normal, convex otherwise. Degenerate vertices (zero
    normal, no neighbors) are convex.
    """
    V = graph.num_vertices
    convex = np.ones(V, bool)
    if V == 0 or graph.num_edges == 0:
        graph.convex = convex
        return

    A = graph.adjacency(weighted=False)
    deg = np.diff(A.indptr).astype(np.float64)
    has = deg > 0
    centroid = np.zeros((V, 3))
    centroid[has] = (A @ graph.xyz)[has] / deg[has, None]
    d = centroid - graph.xyz
    s = np.einsum("ij,ij->i", graph.normals, d)
    behind = s < -FLAT_TOL * np.linalg.norm(d, axis=1)
    valid = has & (np.linalg.norm(graph.normals, axis=1) > 0)
    convex[valid & behind] = False
    graph.convex = convex
    LOG.debug(f"curvature signs: {int((~convex).sum())}/{V} concave")
