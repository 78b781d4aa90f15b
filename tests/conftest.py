# tests/conftest.py
"""Shared fixtures: small synthetic clouds and graphs."""

import numpy as np
import pytest

from utils.logger import Logger

Logger.configure(level="DEBUG", json_format=False, to_file=False)

from rwseg.cloud import Cloud  # noqa: E402
from rwseg.graph import Graph  # noqa: E402


def make_grid_xyz(n: int = 10, spacing: float = 1.0, z=None) -> np.ndarray:
    """n x n planar grid, row-major (index = i * n + j)."""
    i, j = np.meshgrid(np.arange(n), np.arange(n), indexing="ij")
    x = i.reshape(-1) * spacing
    y = j.reshape(-1) * spacing
    zz = np.zeros_like(x, dtype=float) if z is None else z(x, y)
    return np.column_stack([x, y, zz]).astype(float)


def make_path_graph(n: int) -> Graph:
    xyz = np.column_stack([np.arange(n, dtype=float), np.zeros(n), np.zeros(n)])
    edges = np.column_stack([np.arange(n - 1), np.arange(1, n)])
    return Graph(xyz=xyz, edges=edges)


@pytest.fixture
def grid_cloud() -> Cloud:
    return Cloud(make_grid_xyz(10))


@pytest.fixture
def two_clusters() -> Cloud:
    rng = np.random.default_rng(7)
    a = rng.normal(0.0, 0.05, size=(150, 3))
    b = rng.normal(0.0, 0.05, size=(150, 3)) + np.array([5.0, 0.0, 0.0])
    rgb = np.vstack(
        [
            np.tile([200, 30, 30], (150, 1)),
            np.tile([30, 30, 200], (150, 1)),
        ]
    ).astype(np.uint8)
    return Cloud(np.vstack([a, b]), rgb=rgb)


@pytest.fixture
def path_graph() -> Graph:
    return make_path_graph(9)
