from __future__ import annotations
import logging

import numpy as np

from .config import Config
from .glsl import Float, Image, Shader, Vector4
from .pixel_grid import PixelGrid
from .raster import render

### Comparing a reconstructed depth map against a ground truth depth map.

logger = logging.getLogger(__name__)


def difference_map(depth: PixelGrid, truth: PixelGrid, edge: float = Config.MASK_EDGE,
                   backend=None) -> PixelGrid:
    """
    Per pixel |depth - truth|, saturated where the ground truth has a surface
    but the reconstruction is black. Pixels that are background in the ground
    truth come out as 0.
    """
    if depth.shape != truth.shape:
        raise ValueError(f"Depth map of size {depth.shape} does not match ground truth of size {truth.shape}")
    if depth.is_empty:
        return depth

    with Shader(depth.width, depth.height, backend=backend):
        depth_value = Image.load(depth).channel(0)
        truth_value = Image.load(truth).channel(0)
        background = Float(1) - depth_value.step(Float(edge)) / truth_value.step(Float(edge))
        difference = (depth_value - truth_value).abs() + background
        grid = render(Vector4([difference, difference, difference, Float(1)]), backend=backend).image()
    return grid


def difference_value(difference: PixelGrid) -> float:
    """Mean error in [0, 1]. The last row and column are left out of the sum but not the divisor."""
    if difference.is_empty:
        return 0.0
    red = difference.channel(0)[:-1, :-1].astype(np.float64) / 255
    value = float(red.sum() / (difference.width * difference.height))
    logger.debug("Difference value %.5f", value)
    return value
