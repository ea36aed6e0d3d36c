from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .config import Config
from .pixel_grid import PixelGrid

### Depth map -> coloured point cloud, with a plain OBJ writer.


@dataclass(frozen=True)
class PointCloud:
    vertices: np.ndarray  # (N, 3) float64 x, y, z
    colors: np.ndarray  # (N, 3) float64 in [0, 1]

    def __len__(self):
        return len(self.vertices)


def point_cloud(depth: PixelGrid, depth_factor: float = Config.DEFAULT_DEPTH_FACTOR,
                texture: PixelGrid | None = None) -> PointCloud:
    """
    One vertex per pixel whose texture colour is not black.

    x and y are scaled so the longer image side spans 100 units, z is the red
    channel of the depth map mapped to 0..100 and multiplied by `depth_factor`.
    """
    if texture is None:
        texture = depth
    if texture.shape != depth.shape:
        raise ValueError(f"Texture of size {texture.shape} does not match depth map of size {depth.shape}")
    if depth.is_empty:
        return PointCloud(np.zeros((0, 3)), np.zeros((0, 3)))

    rgb = texture.buffer[..., :3].astype(np.float64)
    if texture.buffer.dtype == np.uint8:
        rgb /= 255
    depth_value = depth.buffer[..., 0].astype(np.float64)
    if depth.buffer.dtype == np.uint8:
        depth_value /= 255

    # column-major order, top to bottom within a column
    keep = np.any(rgb != 0, axis=-1).T
    x, y = np.nonzero(keep)
    max_dimension = max(depth.width, depth.height)

    vertices = np.stack([
        (x / max_dimension - 0.5) * 100,
        (1 - y / max_dimension - 0.75) * 100,
        depth_value[y, x] * 100 * depth_factor,
    ], axis=-1)
    return PointCloud(vertices=vertices, colors=rgb[y, x])


def save_obj(cloud: PointCloud, path: str) -> Path:
    """Write vertices only (`v x y z` lines)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        for x, y, z in cloud.vertices:
            f.write(f"v {x} {y} {z}\n")
    return path
