# rwseg/cloud_io.py
"""Open3D point cloud files <-> Cloud."""

from __future__ import annotations

from pathlib import Path
from typing import Dict

import numpy as np
import open3d as o3d

from utils.logger import Logger, SuppressO3DInfo

from .cloud import Cloud
from .errors import IOFailureError

LOG = Logger.get_logger("cloud_io")


def cloud_from_o3d(pcd: o3d.geometry.PointCloud) -> Cloud:
    P = np.asarray(pcd.points, dtype=np.float64)
    rgb = np.asarray(pcd.colors) if pcd.has_colors() else None
    nrm = np.asarray(pcd.normals) if pcd.has_normals() else None
    return Cloud(P, rgb=rgb, normals=nrm)


def cloud_to_o3d(cloud: Cloud) -> o3d.geometry.PointCloud:
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(cloud.xyz)
    if cloud.rgb is not None:
        pcd.colors = o3d.utility.Vector3dVector(cloud.rgb.astype(np.float64) / 255.0)
    if cloud.normals is not None:
        pcd.normals = o3d.utility.Vector3dVector(cloud.normals)
    return pcd


def load_cloud(path: Path | str) -> Cloud:
    """Load PLY/PCD/XYZ via Open3D. Missing file or empty cloud raise."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    with SuppressO3DInfo():
        pcd = o3d.io.read_point_cloud(str(path))
    if len(pcd.points) == 0:
        raise IOFailureError(f"empty cloud at {path}")
    cloud = cloud_from_o3d(pcd)
    LOG.info(
        f"loaded cloud: {path} N={len(cloud)} colors={cloud.has_colors} "
        f"normals={cloud.has_normals}"
    )
    return cloud


def save_cloud(cloud: Cloud, path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ok = o3d.io.write_point_cloud(str(path), cloud_to_o3d(cloud))
    if not ok:
        raise IOFailureError(f"write failed: {path}")
    LOG.info(f"saved cloud: {path} ({len(cloud)} points)")
    return path


def save_clusters(
    cloud: Cloud, point_labels: np.ndarray, out_dir: Path | str, prefix: str = "cluster"
) -> Dict[int, Path]:
    """One PLY per nonzero label holding the cloud points with that label."""
    out_dir = Path(out_dir)
    point_labels = np.asarray(point_labels).reshape(-1)
    out: Dict[int, Path] = {}
    for lbl in np.unique(point_labels):
        if lbl <= 0:
            continue
        idx = np.flatnonzero(point_labels == lbl)
        part = Cloud(
            cloud.xyz[idx],
            rgb=None if cloud.rgb is None else cloud.rgb[idx],
            normals=None if cloud.normals is None else cloud.normals[idx],
        )
        out[int(lbl)] = save_cloud(part, out_dir / f"{prefix}{int(lbl)}.ply")
    return out
