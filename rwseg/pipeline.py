# rwseg/pipeline.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from utils.logger import Logger

from .builders import make_builder
from .cloud import Cloud
from .config import SegmentationCfg
from .errors import DegenerateSeedingError
from .features import compute_normals_and_curvatures, compute_signed_curvatures
from .graph import NO_VERTEX, Graph
from .random_walker import RandomWalkerSegmentation
from .seeds import SeedSet
from .weights import EdgeWeightComputer

LOG = Logger.get_logger("pipeline")


@dataclass
class SegmentationResult:
    graph: Graph
    point_to_vertex: np.ndarray
    vertex_labels: np.ndarray
    point_labels: np.ndarray
    solver: RandomWalkerSegmentation

    @property
    def potentials(self) -> Optional[np.ndarray]:
        return self.solver.potentials

    def clusters(self) -> Dict[int, np.ndarray]:
        """Point indices per nonzero label."""
        return {
            int(l): np.flatnonzero(self.point_labels == l)
            for l in range(1, self.solver.num_labels + 1)
        }


def vertex_to_point_labels(vertex_labels: np.ndarray, point_to_vertex: np.ndarray) -> np.ndarray:
    """Per-point labels; points without a vertex get 0."""
    out = np.zeros(len(point_to_vertex), np.int32)
    has = point_to_vertex != NO_VERTEX
    out[has] = vertex_labels[point_to_vertex[has]]
    return out


def prepare_graph(cloud: Cloud, cfg: SegmentationCfg, indices=None):
    """Build graph, compute features and weights. Returns (graph, point_to_vertex)."""
    cfg.validate()
    builder = make_builder(cfg.graph)
    with Logger.timed(LOG, "Building graph..."):
        graph, p2v = builder.compute(cloud, indices)

    keep_normals = cfg.features.use_cloud_normals and cloud.has_normals
    if keep_normals:
        LOG.info("using normals from the input cloud")
    else:
        with Logger.timed(LOG, "Computing normals..."):
            compute_normals_and_curvatures(graph, cfg.features.viewpoint)
    with Logger.timed(LOG, "Computing curvature signs..."):
        compute_signed_curvatures(graph)
    with Logger.timed(LOG, "Computing edge weights..."):
        EdgeWeightComputer.from_config(cfg.weights).compute(graph)
    LOG.info(
        f"Built a graph with {graph.num_vertices} vertices and {graph.num_edges} edges"
    )
    return graph, p2v


def run_segmentation(
    cloud: Cloud,
    seeds: SeedSet,
    cfg: SegmentationCfg | None = None,
    graph: Graph | None = None,
    point_to_vertex: np.ndarray | None = None,
) -> SegmentationResult:
    """
    points -> graph -> features -> weights -> solve -> labels.
    A prebuilt (e.g. cached) graph and its point map skip the first stages.
    """
    if seeds.num_labels == 0:
        raise DegenerateSeedingError("no seed labels given")
    cfg = cfg or SegmentationCfg()
    if graph is None or point_to_vertex is None:
        graph, point_to_vertex = prepare_graph(cloud, cfg)

    solver = RandomWalkerSegmentation(
        mode=cfg.solver.mode, n_jobs=cfg.solver.n_jobs, strict=cfg.solver.strict
    )
    with Logger.timed(LOG, "Solving..."):
        vlabels = solver.segment(graph, seeds)
    plabels = vertex_to_point_labels(vlabels, point_to_vertex)
    counts = np.bincount(vlabels, minlength=solver.num_labels + 1)
    LOG.info(f"[DONE] state={solver.state.value} vertices per label={counts.tolist()}")
    return SegmentationResult(graph, point_to_vertex, vlabels, plabels, solver)
