# rwseg/weights.py
"""
Composable edge weighting.

Each term turns the features of an edge's endpoints into a nonnegative
distance. The computer normalizes every term, damps it on convex edges by
the term's multiplier, sums ``influence * value`` over terms and maps the
total distance to a weight with ``exp(-d)``, clamped from below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Type, Union

import numpy as np

from utils.logger import Logger

from .config import NORMALIZATIONS, WeightsCfg
from .errors import InvalidInputError
from .graph import Graph

LOG = Logger.get_logger("weights")

# ============================== TERMS ========================================


class WeightTerm(ABC):
    """Stateless per-edge distance with its own influence and multiplier."""

    name = "base"

    def __init__(
        self,
        influence: float = 1.0,
        multiplier: float = 1.0,
        normalization: str = "none",
    ) -> None:
        if influence < 0:
            raise InvalidInputError(f"{self.name}: influence must be >= 0")
        if not 0.0 <= multiplier <= 1.0:
            raise InvalidInputError(f"{self.name}: multiplier must be in [0, 1]")
        if normalization not in NORMALIZATIONS:
            raise InvalidInputError(
                f"{self.name}: normalization must be one of {NORMALIZATIONS}"
            )
        self.influence = float(influence)
        self.multiplier = float(multiplier)
        self.normalization = normalization

    @abstractmethod
    def evaluate(self, graph: Graph, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Distances for vertex pairs (a[i], b[i])."""

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(influence={self.influence:g}, "
            f"multiplier={self.multiplier:g}, normalization={self.normalization})"
        )


TERMS: Dict[str, Type[WeightTerm]] = {}


def register_term(name: str) -> Callable[[Type[WeightTerm]], Type[WeightTerm]]:
    def _wrap(cls: Type[WeightTerm]) -> Type[WeightTerm]:
        cls.name = name
        TERMS[name] = cls
        return cls

    return _wrap


def make_term(name: str, **kwargs) -> WeightTerm:
    try:
        cls = TERMS[name]
    except KeyError:
        raise InvalidInputError(
            f"unknown weight term {name!r}; known: {sorted(TERMS)}"
        ) from None
    return cls(**kwargs)


@register_term("xyz")
class XYZTerm(WeightTerm):
    """Squared Euclidean distance between positions."""

    def evaluate(self, graph, a, b):
        d = graph.xyz[a] - graph.xyz[b]
        return np.einsum("ij,ij->i", d, d)


@register_term("normal")
class NormalTerm(WeightTerm):
    """1 - |cos| of the angle between normals; 0 if either is degenerate."""

    def evaluate(self, graph, a, b):
        na, nb = graph.normals[a], graph.normals[b]
        cos = np.abs(np.einsum("ij,ij->i", na, nb))
        ok = (np.linalg.norm(na, axis=1) > 0) & (np.linalg.norm(nb, axis=1) > 0)
        return np.where(ok, np.clip(1.0 - cos, 0.0, 1.0), 0.0)


@register_term("curvature")
class CurvatureTerm(WeightTerm):
    """Product of curvature magnitudes."""

    def evaluate(self, graph, a, b):
        return np.abs(graph.curvature[a]) * np.abs(graph.curvature[b])


@register_term("rgb")
class RGBTerm(WeightTerm):
    """Squared Euclidean distance between colors in [0,1]^3."""

    def evaluate(self, graph, a, b):
        d = graph.rgb[a] - graph.rgb[b]
        return np.einsum("ij,ij->i", d, d)


# ============================== NORMALIZATION ================================


def _normalize_local(graph: Graph, raw: np.ndarray) -> np.ndarray:
    """Divide by the mean over all edges incident to either endpoint."""
    V = graph.num_vertices
    u, v = graph.edges[:, 0], graph.edges[:, 1]
    S = np.bincount(u, raw, V) + np.bincount(v, raw, V)
    deg = np.bincount(u, minlength=V) + np.bincount(v, minlength=V)
    # the edge itself is incident to both endpoints; count it once
    scale = (S[u] + S[v] - raw) / (deg[u] + deg[v] - 1)
    return np.divide(raw, scale, out=np.zeros_like(raw), where=scale > 0)


def _normalize(graph: Graph, raw: np.ndarray, mode: str) -> np.ndarray:
    if mode == "local":
        return _normalize_local(graph, raw)
    if mode == "global":
        m = float(raw.mean()) if raw.size else 0.0
        return raw / m if m > 0 else raw
    return raw


# ============================== COMPUTER =====================================


class EdgeWeightComputer:
    """Ordered list of active terms combined into one weight per edge."""

    def __init__(self, small_weight: float = 1e-4) -> None:
        if not 0.0 < small_weight <= 1.0:
            raise InvalidInputError(
                f"small_weight must be in (0, 1], got {small_weight}"
            )
        self.small_weight = float(small_weight)
        self._terms: List[WeightTerm] = []

    @property
    def terms(self) -> List[WeightTerm]:
        return list(self._terms)

    def add_term(
        self,
        term: Union[str, WeightTerm],
        influence: float = 1.0,
        multiplier: float = 1.0,
        normalization: str = "none",
    ) -> "EdgeWeightComputer":
        if isinstance(term, str):
            term = make_term(
                term,
                influence=influence,
                multiplier=multiplier,
                normalization=normalization,
            )
        self._terms.append(term)
        return self

    @classmethod
    def from_config(cls, cfg: WeightsCfg) -> "EdgeWeightComputer":
        cfg.validate()
        wc = cls(cfg.small_weight)
        for name, t in cfg.terms().items():
            if t.enabled:
                wc.add_term(name, t.influence, t.multiplier, t.normalization)
        return wc

    def distances(self, graph: Graph) -> np.ndarray:
        """Combined (pre-exponential) distance per edge."""
        E = graph.num_edges
        total = np.zeros(E, np.float64)
        if E == 0 or not self._terms:
            return total
        a, b = graph.edges[:, 0], graph.edges[:, 1]
        convex_edge = graph.convex[a] & graph.convex[b]
        for term in self._terms:
            raw = np.asarray(term.evaluate(graph, a, b), dtype=np.float64)
            value = _normalize(graph, raw, term.normalization)
            factor = np.where(convex_edge, term.multiplier, 1.0)
            total += term.influence * factor * value
            LOG.debug(
                f"{term.name}: raw mean={raw.mean():.4g} "
                f"scaled mean={(term.influence * factor * value).mean():.4g}"
            )
        return total

    def compute(self, graph: Graph) -> np.ndarray:
        """Assign ``graph.weights`` and return them."""
        d = self.distances(graph)
        w = np.maximum(np.exp(-d), self.small_weight)
        n_small = int((d > -np.log(self.small_weight)).sum())
        if n_small:
            LOG.debug(f"{n_small} weights coerced to {self.small_weight:g}")
        graph.weights = w
        return w

    __call__ = compute

    def __repr__(self) -> str:
        return f"EdgeWeightComputer(terms={self._terms}, small_weight={self.small_weight:g})"


def compute_weights(graph: Graph, cfg: Optional[WeightsCfg] = None) -> np.ndarray:
    return EdgeWeightComputer.from_config(cfg or WeightsCfg()).compute(graph)
