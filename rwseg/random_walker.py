# rwseg/random_walker.py
"""
Multi-label random walker on a weighted graph.

The last label L is the reference: for every other label l the harmonic
potential x_l solves ``L_U x_l = -B b_l`` over the unseeded vertices, and
the reference potential is ``1 - sum_l x_l``. Each unseeded vertex takes the
label with the largest potential (ties go to the lowest label id).

Unseeded vertices in components without any seed cannot be reached; they
are left at label 0 and recorded in ``unreachable`` (``strict=True``
raises instead). A failed factorization marks the solve FAILED and leaves
all unseeded vertices at 0.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Dict, Optional

import numpy as np
from scipy.sparse import csc_matrix, csr_matrix
from scipy.sparse.csgraph import laplacian
from scipy.sparse.linalg import splu

from utils.logger import Logger

from .errors import (
    DegenerateSeedingError,
    DisconnectedSeedComponentError,
    InvalidInputError,
    SegmentationError,
    SingularSystemError,
)
from .graph import Graph
from .seeds import SeedSet

LOG = Logger.get_logger("rwalker")

MODES = ("labels", "potential")


class SolverState(Enum):
    UNSOLVED = "unsolved"
    SOLVING = "solving"
    SOLVED = "solved"
    FAILED = "failed"


class RandomWalkerSegmentation:
    """Seeded random walker segmentation of a weighted graph."""

    def __init__(self, mode: str = "labels", n_jobs: int = 1, strict: bool = False) -> None:
        if mode not in MODES:
            raise InvalidInputError(f"mode must be one of {MODES}, got {mode!r}")
        if n_jobs == 0:
            raise InvalidInputError("n_jobs must be != 0")
        self.mode = mode
        self.n_jobs = n_jobs
        self.strict = strict
        self._reset()

    def _reset(self) -> None:
        self.state = SolverState.UNSOLVED
        self.labels: Optional[np.ndarray] = None
        self.potentials: Optional[np.ndarray] = None
        self.unreachable: Optional[np.ndarray] = None
        self.failure: Optional[SegmentationError] = None
        self.num_labels = 0
        self.solved_linear_system = False

    @property
    def reference_label(self) -> int:
        return self.num_labels

    # ============================== PUBLIC ===================================

    def segment(self, graph: Graph, seeds: SeedSet) -> np.ndarray:
        """Per-vertex labels (0 = unassigned); also stored on ``graph.labels``."""
        self._reset()
        V = graph.num_vertices
        seed_lbl = seeds.vertex_labels(V)
        L = seeds.num_labels
        self.num_labels = L
        if L == 0:
            self.state = SolverState.FAILED
            raise DegenerateSeedingError("no seed labels given")
        if L == 1:
            LOG.warning("single seed label; every vertex gets label 1")
            labels = np.ones(V, np.int32)
            self.unreachable = np.zeros(V, bool)
            if self.mode == "potential":
                self.potentials = np.zeros((V, 0), np.float64)
            return self._finish(graph, labels)

        self.state = SolverState.SOLVING
        seeded = seed_lbl > 0
        S = np.flatnonzero(seeded)
        labels = seed_lbl.copy()

        self.unreachable = self._unreachable(graph, S)
        n_lost = int(self.unreachable.sum())
        if n_lost:
            msg = f"{n_lost} vertices are in components without seeds"
            self.failure = DisconnectedSeedComponentError(msg, n_lost)
            if self.strict:
                self.state = SolverState.FAILED
                raise self.failure
            LOG.warning(f"{msg}; left unlabeled")

        U = np.flatnonzero(~seeded & ~self.unreachable)
        LOG.info(
            f"labels={L} seeded={S.size} unseeded={U.size} "
            f"unreachable={n_lost} (reference label {L})"
        )

        potentials = np.zeros((V, L - 1), np.float64)
        ref_seeded = seed_lbl[S] < L
        potentials[S[ref_seeded], seed_lbl[S[ref_seeded]] - 1] = 1.0

        if U.size:
            try:
                X = self._solve_potentials(graph, U, S, seed_lbl[S], L)
            except SingularSystemError as e:
                self.failure = e
                self.state = SolverState.FAILED
                LOG.error(f"solve failed: {e}; {U.size} vertices left unlabeled")
                if self.strict:
                    raise
                labels[U] = 0
                self.labels = labels
                graph.labels = labels
                return labels
            full = np.column_stack([X, 1.0 - X.sum(axis=1)])
            labels[U] = np.argmax(full, axis=1).astype(np.int32) + 1
            potentials[U] = X

        if self.mode == "potential":
            self.potentials = potentials
        return self._finish(graph, labels)

    def potential_for(self, label: int) -> np.ndarray:
        """(V,) potential of ``label`` including the reference label."""
        if self.potentials is None or self.labels is None:
            raise RuntimeError("potentials are only kept in 'potential' mode after a solve")
        if not 1 <= label <= self.num_labels:
            raise InvalidInputError(f"label {label} not in 1..{self.num_labels}")
        if label < self.num_labels:
            p = self.potentials[:, label - 1].copy()
        else:
            p = 1.0 - self.potentials.sum(axis=1)
        p[self.labels == 0] = 0.0
        return p

    def clusters(self) -> Dict[int, np.ndarray]:
        """Vertex ids per label; key 0 holds unassigned vertices."""
        if self.labels is None:
            raise RuntimeError("segment() has not produced labels")
        return {
            int(l): np.flatnonzero(self.labels == l)
            for l in range(0, self.num_labels + 1)
        }

    # ============================== INTERNALS ================================

    def _finish(self, graph: Graph, labels: np.ndarray) -> np.ndarray:
        labels = labels.astype(np.int32)
        self.labels = labels
        graph.labels = labels
        self.state = SolverState.SOLVED
        return labels

    @staticmethod
    def _unreachable(graph: Graph, S: np.ndarray) -> np.ndarray:
        n_comp, comp = graph.components()
        has_seed = np.zeros(n_comp, bool)
        has_seed[comp[S]] = True
        return ~has_seed[comp]

    def _solve_potentials(
        self,
        graph: Graph,
        U: np.ndarray,
        S: np.ndarray,
        s_lbl: np.ndarray,
        L: int,
    ) -> np.ndarray:
        """(|U|, L-1) potentials of labels 1..L-1 for the unseeded vertices."""
        Lap = csr_matrix(laplacian(graph.adjacency(weighted=True)))
        rows = Lap[U]
        L_U = csc_matrix(rows[:, U])
        B = rows[:, S]
        # boundary indicators for the non-reference labels
        ref = s_lbl < L
        b = csr_matrix(
            (np.ones(int(ref.sum())), (np.flatnonzero(ref), s_lbl[ref] - 1)),
            shape=(S.size, L - 1),
        )
        rhs = -(B @ b).toarray()

        try:
            lu = splu(L_U)
        except RuntimeError as e:
            raise SingularSystemError(f"factorization of L_U failed: {e}") from e
        self.solved_linear_system = True
        X = self._solve_columns(lu, rhs)
        if not np.isfinite(X).all():
            raise SingularSystemError("non-finite potentials")
        return np.clip(X, 0.0, 1.0)

    def _solve_columns(self, lu, rhs: np.ndarray) -> np.ndarray:
        """One solve per label, sharing the read-only factorization."""
        k = rhs.shape[1]
        if self.n_jobs == 1 or k == 1:
            return np.asarray(lu.solve(np.asfortranarray(rhs))).reshape(rhs.shape)
        workers = None if self.n_jobs < 0 else self.n_jobs
        X = np.empty_like(rhs)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(lu.solve, np.ascontiguousarray(rhs[:, j])): j
                for j in range(k)
            }
            for fut, j in futures.items():
                X[:, j] = fut.result()
        return X


def segment(
    graph: Graph,
    seeds: SeedSet,
    mode: str = "labels",
    n_jobs: int = 1,
    strict: bool = False,
) -> np.ndarray:
    return RandomWalkerSegmentation(mode, n_jobs, strict).segment(graph, seeds)
