# rwseg/main.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from utils.error_tracker import ErrorTracker
from utils.logger import Logger

from .cloud_io import load_cloud, save_clusters
from .config import SegmentationCfg
from .errors import DegenerateSeedingError, InvalidInputError
from .io import load_config, load_labeled_points, load_seeds, save_graph, save_labeled_points
from .pipeline import SegmentationResult, prepare_graph, run_segmentation
from .seeds import SeedSet

LOG = Logger.get_logger("main")


def _read_seeds(path: Path) -> Tuple[Optional[SeedSet], Optional[Tuple[np.ndarray, np.ndarray]]]:
    """
    JSON seed sets address vertices directly; text files hold x y z label
    points that are snapped to vertices once the graph exists.
    """
    if path.suffix == ".json":
        seeds = load_seeds(path)
        if seeds.num_labels == 0:
            raise DegenerateSeedingError(f"{path}: no seed labels")
        return seeds, None
    xyz, labels = load_labeled_points(path)
    if not (labels > 0).any():
        raise DegenerateSeedingError(f"{path}: no labeled seed points")
    return None, (xyz, labels)


def run(cfg: SegmentationCfg | None = None) -> SegmentationResult:
    """
    Entry point: install ErrorTracker, read seeds, run pipeline, save outputs.
    Seeds must come from a file (no interactive picking here).
    """
    ErrorTracker.install_excepthook()
    ErrorTracker.install_signal_handlers()

    cfg = cfg or SegmentationCfg()
    if not cfg.cloud_path or not cfg.seeds_path:
        raise InvalidInputError("cloud_path and seeds_path are required")
    LOG.info(f"[START] cloud={cfg.cloud_path} seeds={cfg.seeds_path}")

    seeds, seed_points = _read_seeds(Path(cfg.seeds_path))
    cloud = load_cloud(cfg.cloud_path)
    graph, p2v = prepare_graph(cloud, cfg)
    if seeds is None:
        seeds = SeedSet.from_labeled_points(*seed_points, graph)
    res = run_segmentation(cloud, seeds, cfg, graph=graph, point_to_vertex=p2v)
    if res.solver.failure is not None:
        ErrorTracker.report(res.solver.failure)

    out = Path(cfg.output_dir)
    if cfg.save_graph:
        save_graph(res.graph, out / "graph.npz", p2v)
    if cfg.save_segmentation:
        save_labeled_points(out / "segmentation.txt", cloud.xyz, res.point_labels)
    if cfg.save_clusters:
        save_clusters(cloud, res.point_labels, out)
    return res


def _main() -> None:
    """Module runner for `python -m rwseg.main [config.json]`; RWSEG_LOG_LEVEL sets verbosity."""
    cfg = load_config(sys.argv[1]) if len(sys.argv) > 1 else SegmentationCfg()
    run(cfg)


if __name__ == "__main__":
    _main()
