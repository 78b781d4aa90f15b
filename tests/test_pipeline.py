# tests/test_pipeline.py
"""End-to-end tests: cloud -> graph -> weights -> labels."""

import signal

import numpy as np
import pytest

from rwseg.cloud import Cloud
from rwseg.config import FeaturesCfg, GraphBuilderCfg, SegmentationCfg, SolverCfg
from rwseg.errors import DegenerateSeedingError, InvalidInputError
from rwseg.graph import NO_VERTEX
from rwseg.pipeline import prepare_graph, run_segmentation, vertex_to_point_labels
from rwseg.random_walker import SolverState
from rwseg.seeds import SeedSet

TRUTH = np.repeat([1, 2], 150)


class TestRunSegmentation:
    """run_segmentation on two well separated blobs."""

    @pytest.mark.parametrize(
        "graph_cfg",
        [
            GraphBuilderCfg(kind="knn", k=10),
            GraphBuilderCfg(kind="radius", radius=0.5, max_neighbors=12),
            GraphBuilderCfg(kind="voxel_grid", resolution=0.2),
        ],
    )
    def test_two_clusters(self, two_clusters, graph_cfg):
        cfg = SegmentationCfg(graph=graph_cfg)
        graph, p2v = prepare_graph(two_clusters, cfg)
        seeds = SeedSet.from_point_labels([0, 299], [1, 2], p2v)
        res = run_segmentation(two_clusters, seeds, cfg, graph=graph, point_to_vertex=p2v)
        assert res.solver.state is SolverState.SOLVED
        np.testing.assert_array_equal(res.point_labels, TRUTH)
        cl = res.clusters()
        np.testing.assert_array_equal(cl[1], np.arange(150))
        np.testing.assert_array_equal(cl[2], np.arange(150, 300))

    def test_builds_graph_when_missing(self, two_clusters):
        cfg = SegmentationCfg(graph=GraphBuilderCfg(kind="knn", k=8))
        # knn keeps one vertex per point
        res = run_segmentation(two_clusters, SeedSet({1: [10], 2: [160]}), cfg)
        np.testing.assert_array_equal(res.point_labels, TRUTH)
        assert res.graph.weights.shape == (res.graph.num_edges,)
        assert res.potentials is None

    def test_potential_mode(self, two_clusters):
        cfg = SegmentationCfg(
            graph=GraphBuilderCfg(kind="knn", k=8),
            solver=SolverCfg(mode="potential"),
        )
        res = run_segmentation(two_clusters, SeedSet({1: [10], 2: [160]}), cfg)
        assert res.potentials.shape == (300, 1)
        np.testing.assert_allclose(res.potentials[:150, 0], 1.0, atol=1e-6)

    def test_cloud_normals_reused(self, grid_cloud):
        nrm = np.tile([0.0, 0.0, 1.0], (len(grid_cloud), 1))
        cloud = Cloud(grid_cloud.xyz, normals=nrm)
        cfg = SegmentationCfg(
            graph=GraphBuilderCfg(kind="knn", k=4),
            features=FeaturesCfg(use_cloud_normals=True),
        )
        graph, _ = prepare_graph(cloud, cfg)
        np.testing.assert_array_equal(graph.normals, nrm)

    def test_invalid_config_rejected(self, grid_cloud):
        cfg = SegmentationCfg(graph=GraphBuilderCfg(kind="knn", k=-2))
        with pytest.raises(InvalidInputError):
            prepare_graph(grid_cloud, cfg)

    def test_empty_seeds_rejected_before_graph_work(self, monkeypatch, grid_cloud):
        calls = []
        monkeypatch.setattr(
            "rwseg.pipeline.prepare_graph", lambda *a, **kw: calls.append(a)
        )
        cfg = SegmentationCfg(graph=GraphBuilderCfg(kind="knn", k=4))
        with pytest.raises(DegenerateSeedingError):
            run_segmentation(grid_cloud, SeedSet({}), cfg)
        assert not calls


class TestPointLabels:
    """vertex_to_point_labels."""

    def test_mapping(self):
        p2v = np.array([0, 0, NO_VERTEX, 1, 2])
        out = vertex_to_point_labels(np.array([2, 1, 0]), p2v)
        np.testing.assert_array_equal(out, [2, 2, 0, 1, 0])


class TestMainRun:
    """Batch entry point with files on disk."""

    @pytest.fixture(autouse=True)
    def _restore_handlers(self):
        pytest.importorskip("open3d")
        from utils.error_tracker import ErrorTracker

        old = signal.getsignal(signal.SIGINT), signal.getsignal(signal.SIGTERM)
        yield
        signal.signal(signal.SIGINT, old[0])
        signal.signal(signal.SIGTERM, old[1])
        ErrorTracker.uninstall_excepthook()

    def test_run_writes_outputs(self, tmp_path, two_clusters):
        from rwseg.cloud_io import save_cloud
        from rwseg.io import load_graph, load_labeled_points, save_labeled_points
        from rwseg.main import run

        cloud_path = save_cloud(two_clusters, tmp_path / "cloud.ply")
        seeds_path = save_labeled_points(
            tmp_path / "seeds.txt", two_clusters.xyz[[0, 299]], [5, 9]
        )
        out = tmp_path / "out"
        cfg = SegmentationCfg(
            graph=GraphBuilderCfg(kind="knn", k=10),
            cloud_path=str(cloud_path),
            seeds_path=str(seeds_path),
            output_dir=str(out),
            save_graph=True,
            save_clusters=True,
        )
        res = run(cfg)
        np.testing.assert_array_equal(res.point_labels, TRUTH)

        _, labels = load_labeled_points(out / "segmentation.txt")
        np.testing.assert_array_equal(labels, TRUTH)
        graph, p2v = load_graph(out / "graph.npz")
        assert graph.num_vertices == 300
        assert p2v is not None
        assert (out / "cluster1.ply").exists() and (out / "cluster2.ply").exists()

    def test_json_seeds(self, tmp_path, two_clusters):
        from rwseg.cloud_io import save_cloud
        from rwseg.io import save_seeds
        from rwseg.main import run

        cfg = SegmentationCfg(
            graph=GraphBuilderCfg(kind="knn", k=10),
            cloud_path=str(save_cloud(two_clusters, tmp_path / "c.ply")),
            seeds_path=str(save_seeds(SeedSet({1: [1], 2: [200]}), tmp_path / "s.json")),
            output_dir=str(tmp_path / "out"),
            save_segmentation=False,
        )
        res = run(cfg)
        np.testing.assert_array_equal(res.point_labels, TRUTH)
        assert not (tmp_path / "out" / "segmentation.txt").exists()

    def test_paths_required(self):
        from rwseg.main import run

        with pytest.raises(InvalidInputError):
            run(SegmentationCfg())

    @pytest.mark.parametrize("name", ["seeds.json", "seeds.txt"])
    def test_empty_seed_file_fails_before_loading_cloud(self, monkeypatch, tmp_path, name):
        import rwseg.main as main_mod
        from rwseg.io import save_labeled_points, save_seeds

        seeds_path = tmp_path / name
        if name.endswith(".json"):
            save_seeds(SeedSet({}), seeds_path)
        else:
            save_labeled_points(seeds_path, [[0.0, 0.0, 0.0]], [0])
        calls = []
        monkeypatch.setattr(main_mod, "load_cloud", lambda *a: calls.append(a))
        cfg = SegmentationCfg(cloud_path=str(tmp_path / "c.ply"), seeds_path=str(seeds_path))
        with pytest.raises(DegenerateSeedingError):
            main_mod.run(cfg)
        assert not calls

    def test_run_leaves_logging_configuration_alone(self, monkeypatch):
        from rwseg.main import run
        from utils.logger import Logger

        def _fail(*a, **kw):
            raise AssertionError("logging reconfigured")

        monkeypatch.setattr(Logger, "configure", _fail)
        with pytest.raises(InvalidInputError):
            run(SegmentationCfg())
