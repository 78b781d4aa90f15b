# rwseg/config.py
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, is_dataclass, replace
from typing import Any, Dict, Literal, Optional, Tuple

from .errors import InvalidInputError

BuilderKind = Literal["voxel_grid", "knn", "radius"]
Normalization = Literal["none", "local", "global"]
SolverMode = Literal["labels", "potential"]

BUILDER_KINDS: Tuple[str, ...] = ("voxel_grid", "knn", "radius")
NORMALIZATIONS: Tuple[str, ...] = ("none", "local", "global")
SOLVER_MODES: Tuple[str, ...] = ("labels", "potential")

# ============================== CONFIG TYPES =================================


@dataclass(frozen=True)
class GraphBuilderCfg:
    """Connectivity policy and its numeric parameters."""

    kind: BuilderKind = "knn"
    resolution: float = 0.006  # voxel_grid: cell side
    k: int = 14  # knn: neighbors per point
    radius: float = 0.01  # radius: search radius
    max_neighbors: int = 14  # radius: cap on neighbors per point
    n_jobs: int = 1  # cKDTree workers, -1 = all cores

    def validate(self) -> None:
        if self.kind not in BUILDER_KINDS:
            raise InvalidInputError(f"unknown graph builder kind: {self.kind!r}")
        if self.kind == "voxel_grid" and not self.resolution > 0:
            raise InvalidInputError(f"resolution must be > 0, got {self.resolution}")
        if self.kind == "knn" and self.k < 0:
            raise InvalidInputError(f"k must be >= 0, got {self.k}")
        if self.kind == "radius":
            if not self.radius > 0:
                raise InvalidInputError(f"radius must be > 0, got {self.radius}")
            if self.max_neighbors <= 0:
                raise InvalidInputError(
                    f"max_neighbors must be > 0, got {self.max_neighbors}"
                )


@dataclass(frozen=True)
class TermCfg:
    """One weighting term: enable flag, influence, concave-only switch."""

    enabled: bool = True
    influence: float = 1.0
    only_concave: bool = False
    normalization: Normalization = "none"

    @property
    def multiplier(self) -> float:
        """Factor applied on convex edges (0 drops the term there)."""
        return 0.0 if self.only_concave else 1.0

    def validate(self, name: str = "term") -> None:
        if self.influence < 0:
            raise InvalidInputError(f"{name}.influence must be >= 0")
        if self.normalization not in NORMALIZATIONS:
            raise InvalidInputError(
                f"{name}.normalization must be one of {NORMALIZATIONS}"
            )


@dataclass(frozen=True)
class WeightsCfg:
    """Edge weighting terms and small-weight coercion.

    Influences multiply the (normalized) term distances; the defaults are the
    inverses of the scales the interactive tool shipped with.
    """

    xyz: TermCfg = TermCfg(True, 1.0 / 3.0, False, "local")
    normal: TermCfg = TermCfg(True, 100.0, True, "none")
    curvature: TermCfg = TermCfg(True, 10_000.0, True, "none")
    rgb: TermCfg = TermCfg(True, 1.0 / 3.0, False, "global")
    small_weight: float = 1e-4

    def terms(self) -> Dict[str, TermCfg]:
        return {
            "xyz": self.xyz,
            "normal": self.normal,
            "curvature": self.curvature,
            "rgb": self.rgb,
        }

    def validate(self) -> None:
        for name, t in self.terms().items():
            t.validate(name)
        if not 0.0 < self.small_weight <= 1.0:
            raise InvalidInputError(
                f"small_weight must be in (0, 1], got {self.small_weight}"
            )


@dataclass(frozen=True)
class FeaturesCfg:
    # normals are flipped to face this point
    viewpoint: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    use_cloud_normals: bool = False


@dataclass(frozen=True)
class SolverCfg:
    mode: SolverMode = "labels"
    n_jobs: int = 1  # parallel per-label solves
    strict: bool = False  # raise on disconnected / singular instead of label 0

    def validate(self) -> None:
        if self.mode not in SOLVER_MODES:
            raise InvalidInputError(f"solver mode must be one of {SOLVER_MODES}")
        if self.n_jobs == 0:
            raise InvalidInputError("solver n_jobs must be != 0")


@dataclass(frozen=True)
class SegmentationCfg:
    """Top-level knobs for the segmentation pipeline."""

    graph: GraphBuilderCfg = GraphBuilderCfg()
    features: FeaturesCfg = FeaturesCfg()
    weights: WeightsCfg = WeightsCfg()
    solver: SolverCfg = SolverCfg()

    # Batch I/O
    cloud_path: Optional[str] = None
    seeds_path: Optional[str] = None
    output_dir: str = ".data_segmentation"
    save_graph: bool = False
    save_clusters: bool = False
    save_segmentation: bool = True

    def validate(self) -> None:
        self.graph.validate()
        self.weights.validate()
        self.solver.validate()


# ============================== DICT CONVERSION ==============================


def config_to_dict(cfg: Any) -> Dict[str, Any]:
    """Nested plain dict of a config dataclass (tuples become lists)."""
    d = asdict(cfg)

    def _plain(v):
        if isinstance(v, dict):
            return {k: _plain(x) for k, x in v.items()}
        if isinstance(v, tuple):
            return [_plain(x) for x in v]
        return v

    return _plain(d)


def _from_dict(base: Any, data: Dict[str, Any]):
    kwargs = {}
    for f in fields(base):
        if f.name not in data:
            continue
        v = data[f.name]
        default = getattr(base, f.name)
        if is_dataclass(default) and isinstance(v, dict):
            v = _from_dict(default, v)
        elif isinstance(default, tuple) and isinstance(v, list):
            v = tuple(v)
        kwargs[f.name] = v
    return replace(base, **kwargs)


def config_from_dict(data: Dict[str, Any]) -> SegmentationCfg:
    """Build SegmentationCfg from a nested dict; missing keys keep defaults."""
    unknown = set(data) - {f.name for f in fields(SegmentationCfg)}
    if unknown:
        raise InvalidInputError(f"unknown config keys: {sorted(unknown)}")
    cfg = _from_dict(SegmentationCfg(), data)
    cfg.validate()
    return cfg
