from __future__ import annotations
import logging

import numpy as np

from .config import Config
from .generation import GLOBAL_GENERATION, CancellationToken, RenderGeneration, RenderObsolete
from .glsl import Float, Image, Matrix3, Shader, Vector3
from .pixel_grid import PixelGrid
from .raster import render

### Normal maps from images lit from different directions.
### Light k comes from azimuth Config.LIGHT_AZIMUTHS[k] (0 = +x, counter clockwise) and a shared polar angle.

logger = logging.getLogger(__name__)

# (origin, orthogonal, opposite) azimuth triples, one normal estimate per triple
LIGHT_TRIPLES = (
    (180, 270, 0),
    (180, 90, 0),
    (90, 180, 270),
    (90, 0, 270),
    (225, 315, 45),
    (225, 135, 45),
    (315, 45, 135),
    (315, 225, 135),
)


def _as_grid(image) -> PixelGrid:
    if isinstance(image, PixelGrid):
        return image
    return PixelGrid.from_array(np.asarray(image))


def _check_sizes(grids: list[PixelGrid]):
    shapes = {grid.shape for grid in grids}
    if len(shapes) != 1:
        raise ValueError(f"All light images must have the same size, got {sorted(shapes)}")


def light_direction(azimuth: float, polar_angle: float) -> Vector3:
    """Unit vector towards a light, built in the shader so it shows up in the GLSL source."""
    polar = Float(polar_angle).radians()
    azimuthal = Float(azimuth).radians()
    return Vector3([
        polar.sin() * azimuthal.cos(),
        polar.sin() * azimuthal.sin(),
        polar.cos(),
    ]).normalize()


def _triple_normal(luminances: dict, triple, polar_angle: float) -> Vector3:
    """Solve L n = I for three lights and encode the unit normal to [0, 1]."""
    directions = [light_direction(azimuth, polar_angle) for azimuth in triple]
    lights = Matrix3([[direction.channel(i) for i in range(3)] for direction in directions])
    reflection = Vector3([luminances[azimuth] for azimuth in triple])
    normal = (lights.inverse() * reflection).normalize()
    return (normal + Float(1)) / Float(2)


def photometric_stereo_normal_map(light_images, polar_angle: float, ambient=None,
                                  mask_threshold: float = Config.DEFAULT_MASK_THRESHOLD,
                                  token: CancellationToken | None = None,
                                  generation: RenderGeneration = GLOBAL_GENERATION,
                                  backend=None) -> PixelGrid | None:
    """
    Estimate a normal map from eight images lit at the azimuths of Config.LIGHT_AZIMUTHS.

    Each image's luminance is divided by the brightest luminance of all lights.
    Every triple of LIGHT_TRIPLES gives one Lambertian normal estimate; the
    encoded estimates are averaged and normalized. With an `ambient` (unlit)
    image its luminance is subtracted first, and pixels whose brightest light
    adds less than `mask_threshold` over ambient come out black.

    Returns None when the request was superseded via cancel_all().
    """
    grids = [_as_grid(image) for image in light_images]
    if len(grids) != len(Config.LIGHT_AZIMUTHS):
        raise ValueError(f"Expected {len(Config.LIGHT_AZIMUTHS)} light images, got {len(grids)}")
    if not 0 < polar_angle < 90:
        raise ValueError(f"Light polar angle must be in (0, 90) degrees, got {polar_angle}")
    ambient_grid = _as_grid(ambient) if ambient is not None else None
    _check_sizes(grids + ([ambient_grid] if ambient_grid is not None else []))

    first = grids[0]
    if first.is_empty:
        return PixelGrid.empty(first.width, first.height)
    if token is None:
        token = generation.token()

    try:
        token.check()
        with Shader(first.width, first.height, backend=backend):
            luminances = [Image.load(grid).luminance() for grid in grids]
            brightest = Float(0).maximum(*luminances)

            mask = Float(1)
            if ambient_grid is not None and not ambient_grid.is_empty:
                ambient_luminance = Image.load(ambient_grid).luminance()
                luminances = [luminance - ambient_luminance for luminance in luminances]
                mask = (brightest - ambient_luminance).step(Float(mask_threshold))

            by_azimuth = {
                azimuth: luminance / brightest for azimuth, luminance in zip(Config.LIGHT_AZIMUTHS, luminances)
            }
            estimates = [_triple_normal(by_azimuth, triple, polar_angle) for triple in LIGHT_TRIPLES]

            normal = Vector3([Float(0), Float(0), Float(0)]).add(*estimates) / Float(len(estimates))
            normal = normal.normalize() * mask
            token.check()
            normal_map = render(normal.to_vector4(), backend=backend).image()
    except RenderObsolete as exc:
        logger.info("Normal map abandoned: %s", exc)
        return None

    logger.info("Photometric stereo normal map %dx%d", first.width, first.height)
    return normal_map


def rapid_gradient_normal_map(light_images, all_lights, front, ambient=None,
                              token: CancellationToken | None = None,
                              generation: RenderGeneration = GLOBAL_GENERATION,
                              backend=None) -> PixelGrid | None:
    """
    Quick normal map from four images lit at 0, 90, 180 and 270 degrees.

    The x / y components are the brightness differences of opposite lights
    relative to `all_lights`, the z component is the `front` lit image.
    """
    grids = [_as_grid(image) for image in light_images]
    if len(grids) != 4:
        raise ValueError(f"Expected 4 light images (0, 90, 180, 270 degrees), got {len(grids)}")
    all_grid, front_grid = _as_grid(all_lights), _as_grid(front)
    ambient_grid = _as_grid(ambient) if ambient is not None else None
    _check_sizes(grids + [all_grid, front_grid] + ([ambient_grid] if ambient_grid is not None else []))

    first = grids[0]
    if first.is_empty:
        return PixelGrid.empty(first.width, first.height)
    if token is None:
        token = generation.token()

    try:
        token.check()
        with Shader(first.width, first.height, backend=backend):
            all_luminance = Image.load(all_grid).luminance()
            luminances = [Image.load(grid).luminance() for grid in grids + [front_grid]]
            if ambient_grid is not None:
                ambient_luminance = Image.load(ambient_grid).luminance()
                luminances = [luminance - ambient_luminance for luminance in luminances]
                all_luminance = all_luminance - ambient_luminance
            east, north, west, south, front_luminance = [luminance / all_luminance for luminance in luminances]

            horizontal = (east - west + Float(1)) / Float(2)
            vertical = (south - north + Float(1)) / Float(2)
            normal = Vector3([horizontal, vertical, front_luminance]).normalize()
            token.check()
            normal_map = render(normal.to_vector4(), backend=backend).image()
    except RenderObsolete as exc:
        logger.info("Normal map abandoned: %s", exc)
        return None

    logger.info("Rapid gradient normal map %dx%d", first.width, first.height)
    return normal_map
