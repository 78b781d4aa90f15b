# rwseg/io.py
"""I/O helpers for graphs, seeds, labels and configs (no Open3D logic here)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from utils.logger import Logger

from .config import SegmentationCfg, config_from_dict, config_to_dict
from .errors import IOFailureError
from .graph import Graph
from .seeds import SeedSet

LOG = Logger.get_logger("io")

GRAPH_KEYS = ("xyz", "edges", "rgb", "normals", "curvature", "convex", "weights", "labels")


# ============================================================================ #
# Graph cache (.npz)
# ============================================================================ #
def save_graph(
    graph: Graph, path: Path | str, point_to_vertex: Optional[np.ndarray] = None
) -> Path:
    """Save vertices, edges, weights and vertex features as compressed npz."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    arrays = {k: getattr(graph, k) for k in GRAPH_KEYS}
    if point_to_vertex is not None:
        arrays["point_to_vertex"] = np.asarray(point_to_vertex, np.int64)
    with path.open("wb") as fh:
        np.savez_compressed(fh, **arrays)
    LOG.info(f"saved graph: {path} V={graph.num_vertices} E={graph.num_edges}")
    return path


def load_graph(path: Path | str) -> Tuple[Graph, Optional[np.ndarray]]:
    """Load a graph saved by save_graph(); returns (graph, point_to_vertex|None)."""
    path = Path(path)
    with np.load(path) as data:
        missing = [k for k in GRAPH_KEYS if k not in data.files]
        if missing:
            raise IOFailureError(f"{path}: not a graph file, missing {missing}")
        graph = Graph(**{k: data[k] for k in GRAPH_KEYS})
        p2v = data["point_to_vertex"] if "point_to_vertex" in data.files else None
    if len(graph.weights) != graph.num_edges:
        raise IOFailureError(f"{path}: {len(graph.weights)} weights for {graph.num_edges} edges")
    LOG.info(f"loaded graph: {path} V={graph.num_vertices} E={graph.num_edges}")
    return graph, p2v


# ============================================================================ #
# Seeds / configs (JSON)
# ============================================================================ #
def save_seeds(seeds: SeedSet, path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"labels": seeds.to_dict()}, indent=2))
    LOG.info(f"saved seeds: {path} ({seeds.num_labels} labels, {len(seeds)} vertices)")
    return path


def load_seeds(path: Path | str) -> SeedSet:
    path = Path(path)
    try:
        data = json.loads(path.read_text())
        seeds = SeedSet.from_dict(data["labels"])
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise IOFailureError(f"{path}: bad seeds file ({e})") from e
    LOG.info(f"loaded seeds: {path} ({seeds.num_labels} labels)")
    return seeds


def save_config(cfg: SegmentationCfg, path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config_to_dict(cfg), indent=2))
    LOG.info(f"saved config: {path}")
    return path


def load_config(path: Path | str) -> SegmentationCfg:
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise IOFailureError(f"{path}: bad config file ({e})") from e
    cfg = config_from_dict(data)
    LOG.info(f"loaded config: {path}")
    return cfg


# ============================================================================ #
# Labeled points (text: x y z label; .gz handled by numpy)
# ============================================================================ #
def save_labeled_points(path: Path | str, xyz: np.ndarray, labels: np.ndarray) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    xyz = np.asarray(xyz, np.float64).reshape(-1, 3)
    labels = np.asarray(labels, np.int64).reshape(-1)
    if len(xyz) != len(labels):
        raise ValueError("xyz and labels differ in length")
    table = np.column_stack([xyz, labels])
    np.savetxt(path, table, fmt=["%.6f", "%.6f", "%.6f", "%d"])
    LOG.info(f"saved labeled points: {path} ({len(labels)} points)")
    return path


def load_labeled_points(path: Path | str) -> Tuple[np.ndarray, np.ndarray]:
    path = Path(path)
    try:
        table = np.loadtxt(path, ndmin=2)
    except ValueError as e:
        raise IOFailureError(f"{path}: bad labeled points file ({e})") from e
    if table.size == 0:
        return np.empty((0, 3)), np.empty(0, np.int64)
    if table.shape[1] != 4:
        raise IOFailureError(f"{path}: expected 4 columns, got {table.shape[1]}")
    return table[:, :3], table[:, 3].astype(np.int64)
