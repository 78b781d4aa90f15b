# rwseg/seeds.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from utils.logger import Logger

from .errors import InvalidInputError
from .graph import NO_VERTEX, Graph
from .spatial import KDTreeIndex

LOG = Logger.get_logger("seeds")


def _densify(labels: np.ndarray) -> np.ndarray:
    """Map positive label ids to 1..L preserving order; 0 stays 0."""
    out = np.zeros_like(labels)
    pos = labels > 0
    uniq = np.unique(labels[pos])
    out[pos] = np.searchsorted(uniq, labels[pos]) + 1
    return out


@dataclass(frozen=True)
class SeedSet:
    """
    Label id (1..L, dense) -> vertex ids. A vertex carries at most one label.
    """

    members: Mapping[int, np.ndarray]

    def __post_init__(self) -> None:
        clean: Dict[int, np.ndarray] = {}
        for lbl, ids in self.members.items():
            lbl = int(lbl)
            arr = np.unique(np.asarray(ids, dtype=np.int64).reshape(-1))
            if lbl <= 0:
                raise InvalidInputError(f"seed label must be positive, got {lbl}")
            if arr.size and arr.min() < 0:
                raise InvalidInputError(f"label {lbl}: negative vertex id")
            if arr.size:
                clean[lbl] = arr
        keys = sorted(clean)
        if keys != list(range(1, len(keys) + 1)):
            raise InvalidInputError(f"seed labels must be dense from 1, got {keys}")
        if clean:
            allv = np.concatenate(list(clean.values()))
            uniq, cnt = np.unique(allv, return_counts=True)
            if (cnt > 1).any():
                raise InvalidInputError(
                    f"vertices seeded with several labels: {uniq[cnt > 1][:10].tolist()}"
                )
        object.__setattr__(self, "members", dict(sorted(clean.items())))

    # ----------------------------------------------------------------- views
    @property
    def labels(self) -> List[int]:
        return list(self.members)

    @property
    def num_labels(self) -> int:
        return len(self.members)

    def __len__(self) -> int:
        return int(sum(len(v) for v in self.members.values()))

    def vertex_labels(self, n_vertices: int) -> np.ndarray:
        """(V,) int32 with the seed label per vertex, 0 for unseeded."""
        out = np.zeros(n_vertices, np.int32)
        for lbl, ids in self.members.items():
            if ids.size and ids.max() >= n_vertices:
                raise InvalidInputError(
                    f"label {lbl}: vertex id {int(ids.max())} >= {n_vertices}"
                )
            out[ids] = lbl
        return out

    def to_dict(self) -> Dict[str, List[int]]:
        return {str(k): v.tolist() for k, v in self.members.items()}

    # ---------------------------------------------------------- constructors
    @classmethod
    def from_dict(cls, data: Mapping[str, Iterable[int]]) -> "SeedSet":
        return cls({int(k): np.asarray(list(v), np.int64) for k, v in data.items()})

    @classmethod
    def from_vertex_labels(cls, labels: np.ndarray, densify: bool = False) -> "SeedSet":
        """Per-vertex labels, 0 meaning unseeded."""
        labels = np.asarray(labels, dtype=np.int64).reshape(-1)
        if (labels < 0).any():
            raise InvalidInputError("negative seed label")
        if densify:
            labels = _densify(labels)
        return cls({int(l): np.flatnonzero(labels == l) for l in np.unique(labels[labels > 0])})

    @classmethod
    def from_point_labels(
        cls,
        point_indices: Iterable[int],
        labels: Iterable[int],
        point_to_vertex: np.ndarray,
        densify: bool = False,
    ) -> "SeedSet":
        """Picked (point index, label) pairs routed through the point-to-vertex map."""
        pi = np.asarray(list(point_indices), np.int64)
        lb = np.asarray(list(labels), np.int64)
        if pi.shape != lb.shape:
            raise InvalidInputError("point indices and labels differ in length")
        if pi.size and (pi.min() < 0 or pi.max() >= len(point_to_vertex)):
            raise InvalidInputError("seed point index out of cloud range")
        vid = point_to_vertex[pi]
        lost = vid == NO_VERTEX
        if lost.any():
            LOG.warning(f"{int(lost.sum())} seed points have no vertex; ignored")
        return cls._from_pairs(vid[~lost], lb[~lost], densify)

    @classmethod
    def from_labeled_points(
        cls,
        xyz: np.ndarray,
        labels: np.ndarray,
        graph: Graph,
        max_distance: Optional[float] = None,
        densify: bool = True,
    ) -> "SeedSet":
        """Seed cloud (x, y, z, label): each point seeds its nearest vertex."""
        xyz = np.asarray(xyz, np.float64).reshape(-1, 3)
        lb = np.asarray(labels, np.int64).reshape(-1)
        if len(xyz) != len(lb):
            raise InvalidInputError("seed xyz and labels differ in length")
        if graph.num_vertices == 0:
            raise InvalidInputError("graph has no vertices")
        keep = lb > 0
        xyz, lb = xyz[keep], lb[keep]
        d, vid = KDTreeIndex(graph.xyz).nearest(xyz)
        if max_distance is not None:
            far = d > max_distance
            if far.any():
                LOG.warning(f"{int(far.sum())} seed points farther than {max_distance}; ignored")
            vid, lb = vid[~far], lb[~far]
        return cls._from_pairs(vid, lb, densify)

    @classmethod
    def _from_pairs(cls, vid: np.ndarray, lb: np.ndarray, densify: bool) -> "SeedSet":
        if (lb < 0).any():
            raise InvalidInputError("negative seed label")
        keep = lb > 0
        vid, lb = vid[keep], lb[keep]
        if densify:
            lb = _densify(lb)
        groups: Dict[int, np.ndarray] = {
            int(l): vid[lb == l] for l in np.unique(lb)
        }
        seeds = cls(groups)
        LOG.info(f"seeds: {seeds.num_labels} labels, {len(seeds)} vertices")
        return seeds
