# tests/test_builders.py
"""Tests for voxel grid, KNN and radius graph builders."""

import numpy as np
import pytest

from conftest import make_grid_xyz
from rwseg.builders import (
    NearestNeighborsGraphBuilder,
    RadiusGraphBuilder,
    VoxelGridGraphBuilder,
    build,
    make_builder,
)
from rwseg.cloud import Cloud
from rwseg.config import GraphBuilderCfg
from rwseg.errors import InvalidInputError
from rwseg.graph import NO_VERTEX


def assert_well_formed(graph):
    E = graph.edges
    if len(E) == 0:
        return
    assert (E[:, 0] != E[:, 1]).all(), "self-loop"
    assert (E[:, 0] < E[:, 1]).all()
    assert len(np.unique(E, axis=0)) == len(E), "parallel edges"
    A = graph.adjacency()
    assert (A != A.T).nnz == 0, "adjacency not symmetric"


class TestVoxelGrid:
    """Voxel grid policy."""

    def test_vertex_per_nonempty_cell(self):
        rng = np.random.default_rng(0)
        P = rng.uniform(0.0, 1.0, size=(500, 3))
        res = VoxelGridGraphBuilder(0.25).compute(Cloud(P))
        cells = {tuple(k) for k in np.floor((P - P.min(0)) / 0.25).astype(int)}
        assert res.graph.num_vertices == len(cells)
        assert_well_formed(res.graph)

    def test_deterministic(self):
        rng = np.random.default_rng(1)
        cloud = Cloud(rng.uniform(-1.0, 1.0, size=(400, 3)))
        g1, m1 = VoxelGridGraphBuilder(0.3).compute(cloud)
        g2, m2 = VoxelGridGraphBuilder(0.3).compute(cloud)
        np.testing.assert_array_equal(g1.xyz, g2.xyz)
        np.testing.assert_array_equal(g1.edges, g2.edges)
        np.testing.assert_array_equal(m1, m2)

    def test_26_neighborhood(self):
        # one point in the middle of each cell of a 3x3x3 block
        c = np.stack(np.meshgrid(*[np.arange(3)] * 3, indexing="ij"), -1).reshape(-1, 3)
        res = VoxelGridGraphBuilder(1.0).compute(Cloud(c + 0.5))
        g = res.graph
        assert g.num_vertices == 27
        deg = g.degree()
        center = int(np.flatnonzero(np.all(np.isclose(g.xyz, 1.5), axis=1))[0])
        assert deg[center] == 26
        corner = int(np.flatnonzero(np.all(np.isclose(g.xyz, 0.5), axis=1))[0])
        assert deg[corner] == 7
        # each cell pair at Chebyshev distance 1 is linked exactly once
        d = np.abs(g.xyz[:, None, :] - g.xyz[None, :, :]).max(-1)
        expected = int((np.isclose(d, 1.0)).sum() // 2)
        assert g.num_edges == expected

    def test_non_adjacent_cells_not_linked(self):
        P = np.array([[0.1, 0.1, 0.1], [2.1, 0.1, 0.1]])
        g, _ = VoxelGridGraphBuilder(1.0).compute(Cloud(P))
        assert g.num_vertices == 2
        assert g.num_edges == 0

    def test_centroid_and_many_to_one_map(self):
        P = np.array([[0.1, 0.1, 0.1], [0.3, 0.3, 0.3], [1.5, 0.2, 0.2]])
        rgb = np.array([[0, 0, 0], [255, 255, 255], [10, 10, 10]], np.uint8)
        g, p2v = VoxelGridGraphBuilder(1.0).compute(Cloud(P, rgb=rgb))
        assert g.num_vertices == 2
        assert p2v[0] == p2v[1] != p2v[2]
        np.testing.assert_allclose(g.xyz[p2v[0]], [0.2, 0.2, 0.2])
        np.testing.assert_allclose(g.rgb[p2v[0]], [0.5, 0.5, 0.5])
        assert g.num_edges == 1

    def test_non_finite_points_dropped(self):
        P = np.array([[0.0, 0.0, 0.0], [np.nan, 0.0, 0.0], [0.5, 0.0, 0.0]])
        g, p2v = VoxelGridGraphBuilder(1.0).compute(Cloud(P))
        assert p2v[1] == NO_VERTEX
        assert g.num_vertices == 1

    @pytest.mark.parametrize("res", [0.0, -1.0])
    def test_bad_resolution(self, res):
        with pytest.raises(InvalidInputError):
            VoxelGridGraphBuilder(res)


class TestNearestNeighbors:
    """K-nearest-neighbor policy."""

    def test_k_zero_gives_vertices_without_edges(self, grid_cloud):
        g, p2v = NearestNeighborsGraphBuilder(0).compute(grid_cloud)
        assert g.num_vertices == 100
        assert g.num_edges == 0
        np.testing.assert_array_equal(p2v, np.arange(100))

    def test_every_vertex_has_k_neighbors(self):
        rng = np.random.default_rng(2)
        cloud = Cloud(rng.normal(size=(300, 3)))
        g, _ = NearestNeighborsGraphBuilder(6).compute(cloud)
        assert g.num_vertices == 300
        assert (g.degree() >= 6).all()
        assert g.num_edges <= 300 * 6
        assert_well_formed(g)

    def test_reciprocal_edges_deduplicated(self):
        P = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        g, _ = NearestNeighborsGraphBuilder(1).compute(Cloud(P))
        assert g.num_edges == 1

    def test_k_larger_than_cloud(self):
        P = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        g, _ = NearestNeighborsGraphBuilder(10).compute(Cloud(P))
        assert g.num_edges == 3

    def test_duplicate_points(self):
        P = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        g, _ = NearestNeighborsGraphBuilder(1).compute(Cloud(P))
        assert_well_formed(g)
        assert g.num_vertices == 3

    def test_invalid_and_unindexed_points(self):
        P = make_grid_xyz(4)
        P[5] = np.nan
        g, p2v = NearestNeighborsGraphBuilder(3).compute(
            Cloud(P), indices=np.arange(8)
        )
        assert g.num_vertices == 7
        assert p2v[5] == NO_VERTEX
        assert (p2v[8:] == NO_VERTEX).all()
        kept = p2v[p2v != NO_VERTEX]
        np.testing.assert_array_equal(np.sort(kept), np.arange(7))
        np.testing.assert_allclose(g.xyz, P[[0, 1, 2, 3, 4, 6, 7]])

    def test_organized_cloud_holes(self):
        P = make_grid_xyz(4)
        P[[0, 15]] = np.nan
        cloud = Cloud(P, shape=(4, 4))
        assert cloud.is_organized
        g, p2v = NearestNeighborsGraphBuilder(4).compute(cloud)
        assert g.num_vertices == 14
        assert p2v[0] == NO_VERTEX and p2v[15] == NO_VERTEX

    def test_negative_k(self):
        with pytest.raises(InvalidInputError):
            NearestNeighborsGraphBuilder(-1)

    def test_empty_cloud(self):
        with pytest.raises(InvalidInputError):
            NearestNeighborsGraphBuilder(4).compute(Cloud(np.empty((0, 3))))

    def test_all_points_invalid(self):
        with pytest.raises(InvalidInputError):
            NearestNeighborsGraphBuilder(4).compute(Cloud(np.full((3, 3), np.nan)))


class TestRadius:
    """Radius-neighbor policy."""

    def test_grid_four_neighborhood(self, grid_cloud):
        g, _ = RadiusGraphBuilder(1.1, 8).compute(grid_cloud)
        deg = g.degree().reshape(10, 10)
        assert deg[5, 5] == 4
        assert deg[0, 0] == 2
        assert g.num_edges == 2 * 10 * 9
        assert_well_formed(g)
        np.testing.assert_array_equal(np.sort(g.neighbors(55)), [45, 54, 56, 65])

    def test_radius_is_inclusive(self):
        P = np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [1.5, 0.0, 0.0]])
        g, _ = RadiusGraphBuilder(0.5, 4).compute(Cloud(P))
        np.testing.assert_array_equal(g.edges, [[0, 1]])

    def test_isolated_point_kept(self):
        P = np.vstack([make_grid_xyz(3), [[50.0, 50.0, 50.0]]])
        g, p2v = RadiusGraphBuilder(1.1, 8).compute(Cloud(P))
        assert g.num_vertices == 10
        assert g.degree()[p2v[9]] == 0

    def test_max_neighbors_caps_queries(self, grid_cloud):
        g, _ = RadiusGraphBuilder(3.0, 2).compute(grid_cloud)
        assert g.num_edges <= 100 * 2
        assert_well_formed(g)

    @pytest.mark.parametrize("radius,max_nn", [(0.0, 4), (-1.0, 4), (1.0, 0)])
    def test_bad_parameters(self, radius, max_nn):
        with pytest.raises(InvalidInputError):
            RadiusGraphBuilder(radius, max_nn)


class TestFactory:
    """Config driven construction."""

    @pytest.mark.parametrize(
        "cfg,cls",
        [
            (GraphBuilderCfg(kind="voxel_grid", resolution=0.5), VoxelGridGraphBuilder),
            (GraphBuilderCfg(kind="knn", k=5), NearestNeighborsGraphBuilder),
            (GraphBuilderCfg(kind="radius", radius=1.0), RadiusGraphBuilder),
        ],
    )
    def test_make_builder(self, cfg, cls):
        assert isinstance(make_builder(cfg), cls)

    def test_invalid_config(self):
        with pytest.raises(InvalidInputError):
            make_builder(GraphBuilderCfg(kind="voxel_grid", resolution=0.0))
        with pytest.raises(InvalidInputError):
            make_builder(GraphBuilderCfg(kind="octree"))

    def test_build_helper(self, grid_cloud):
        res = build(grid_cloud, GraphBuilderCfg(kind="knn", k=4))
        assert res.graph.num_vertices == 100
        assert len(res.point_to_vertex) == 100
