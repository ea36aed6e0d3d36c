from __future__ import annotations
import logging

import numpy as np

from .glsl import Float, Image, Shader, Vector4
from .pixel_grid import GradientField, PixelGrid
from .raster import render

logger = logging.getLogger(__name__)


def _as_grid(normal_map) -> PixelGrid:
    if isinstance(normal_map, PixelGrid):
        return normal_map
    return PixelGrid.from_array(np.asarray(normal_map))


def extract_gradient(normal_map, backend=None) -> GradientField:
    """
    Turn a normal map into a byte encoded slope field.

    Per pixel the output is (r / b, g / b, min(b, r, g), 1). Red and green hold
    the surface slope along x / y, blue is zero wherever the normal has a zero
    component (background or invalid normals).
    """
    grid = _as_grid(normal_map)
    if grid.is_empty:
        return GradientField.empty(grid.width, grid.height)

    with Shader(grid.width, grid.height, backend=backend):
        normal = Image.load(grid)
        red, green, blue = normal.channel(0), normal.channel(1), normal.channel(2)
        gradient = Vector4([
            red / blue,
            green / blue,
            blue.minimum(red, green),
            Float(1),
        ])
        pixels = render(gradient).pixel_array()

    logger.debug("Extracted %dx%d gradient field", grid.width, grid.height)
    return GradientField(width=grid.width, height=grid.height, buffer=pixels)
