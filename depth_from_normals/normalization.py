from __future__ import annotations
import logging

import numpy as np

from .config import Config
from .glsl import Float, Image, Shader, Vector2, Vector4
from .integration import IntegralAccumulator
from .pixel_grid import PixelGrid
from .raster import render

logger = logging.getLogger(__name__)

MID_GRAY = 128


def normalize(accumulator: IntegralAccumulator) -> PixelGrid:
    """
    Rescale the summed integrals into an 8 bit gray image (alpha 255).

    Sums are scaled by max(count) / max(count - 1, 1), then min/max stretched
    into 0..255. A flat result becomes mid gray.
    """
    width, height = accumulator.width, accumulator.height
    if width == 0 or height == 0:
        return PixelGrid.empty(width, height)

    counts = accumulator.count.astype(np.float64)
    max_count = counts.max()
    scaled = accumulator.sum.astype(np.float64) * max_count / np.maximum(counts - 1, 1)

    low, high = scaled.min(), scaled.max()
    if low == high:
        gray = np.full(scaled.shape, MID_GRAY, dtype=np.uint8)
    else:
        gray = np.rint((scaled - low) * 255 / (high - low)).astype(np.uint8)

    gray = gray.reshape(height, width)
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = gray[..., None]
    pixels[..., 3] = 255
    return PixelGrid(width=width, height=height, buffer=pixels)


def perspective_correct(depth: PixelGrid, factor: float = Config.DEFAULT_PERSPECTIVE_FACTOR,
                        backend=None) -> PixelGrid:
    """Lift the image towards its borders by distance(uv, centre)^2 * factor * 5. Zero is a no-op."""
    if factor < 0:
        raise ValueError(f"Perspective factor must not be negative, got {factor}")
    if factor == 0 or depth.is_empty:
        return depth

    with Shader(depth.width, depth.height, backend=backend) as shader:
        color = Image.load(depth)
        distance = shader.uv().distance(Vector2([Float(0.5), Float(0.5)]))
        lift = distance * distance * Float(factor * Config.PERSPECTIVE_FACTOR_SCALE)
        corrected = color.channel(0) + lift
        result = Vector4([corrected, corrected, corrected, color.channel(3)])
        grid = render(result, backend=backend).image()
    return grid


def apply_mask(depth: PixelGrid, normal_map: PixelGrid, edge: float = Config.MASK_EDGE,
               backend=None) -> PixelGrid:
    """Zero the RGB channels wherever the normal map's red channel is below `edge`. Alpha becomes 1."""
    if depth.shape != normal_map.shape:
        raise ValueError(f"Mask of size {normal_map.shape} does not match image of size {depth.shape}")
    if depth.is_empty:
        return depth

    with Shader(depth.width, depth.height, backend=backend):
        color = Image.load(depth)
        normal = Image.load(normal_map)
        mask = normal.channel(0).step(Float(edge))
        masked = color * mask
        result = Vector4([masked.channel(0), masked.channel(1), masked.channel(2), Float(1)])
        grid = render(result, backend=backend).image()
    return grid


def apply_masks(mask: PixelGrid, images: list[PixelGrid], edge: float = Config.MASK_EDGE,
                backend=None) -> list[PixelGrid]:
    """Mask every image with the red channel of `mask`."""
    masked = [apply_mask(image, mask, edge=edge, backend=backend) for image in images]
    logger.debug("Masked %d images", len(masked))
    return masked
