from __future__ import annotations
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

import numpy as np

from .config import Config
from .generation import GLOBAL_GENERATION, CancellationToken, RenderGeneration, RenderObsolete
from .gradient import extract_gradient
from .integration import integrate
from .normalization import apply_mask, normalize, perspective_correct
from .pixel_grid import GradientField, PixelGrid
from .planning import angle_count, plan_angles, plan_start_frame

### Normal map -> depth map pipeline:
### gradient extraction, angle planning, parallel line integration, normalization, perspective and mask.

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def _as_grid(image) -> PixelGrid:
    if isinstance(image, PixelGrid):
        return image
    return PixelGrid.from_array(np.asarray(image))


def calculate_depth_map(normal_map, quality_percent: float = Config.DEFAULT_QUALITY_PERCENT,
                        perspective_factor: float = Config.DEFAULT_PERSPECTIVE_FACTOR,
                        mask=None, start_frame: str = Config.DEFAULT_START_FRAME,
                        worker_count: int | None = None, token: CancellationToken | None = None,
                        generation: RenderGeneration = GLOBAL_GENERATION, backend=None,
                        on_progress: ProgressCallback | None = None,
                        gradient: GradientField | None = None) -> PixelGrid | None:
    """
    Reconstruct a relative depth map from a normal map.

    A `gradient` already extracted from the same normal map skips the gradient pass.

    Returns a gray PixelGrid of the same size as the input, or None when the
    request was superseded via cancel_all() before it finished.
    """
    grid = _as_grid(normal_map)
    mask_source = grid if mask is None else _as_grid(mask)
    angle_count(max(grid.width, 1), max(grid.height, 1), quality_percent)  # validates quality_percent
    if perspective_factor < 0:
        raise ValueError(f"Perspective factor must not be negative, got {perspective_factor}")
    if mask_source.shape != grid.shape:
        raise ValueError(f"Mask of size {mask_source.shape} does not match normal map of size {grid.shape}")
    if gradient is not None and gradient.shape != grid.shape:
        raise ValueError(f"Gradient of size {gradient.shape} does not match normal map of size {grid.shape}")

    if grid.is_empty:
        return PixelGrid.empty(grid.width, grid.height)

    if token is None:
        token = generation.token()

    def progress(stage: str):
        if on_progress is not None:
            on_progress(stage)
        token.check()

    try:
        progress("gradient")
        if gradient is None:
            gradient = extract_gradient(grid, backend=backend)

        progress("planning")
        angles = plan_angles(grid.width, grid.height, quality_percent)
        frame = plan_start_frame(grid.width, grid.height, start_frame)

        progress("integrating")
        accumulator = integrate(gradient, angles, frame, worker_count=worker_count, token=token)

        progress("normalizing")
        depth = normalize(accumulator)
        depth = perspective_correct(depth, perspective_factor, backend=backend)

        progress("masking")
        depth = apply_mask(depth, mask_source, backend=backend)
        token.check()
    except RenderObsolete as exc:
        logger.info("Depth map abandoned: %s", exc)
        return None

    logger.info("Depth map %dx%d from %d angles", grid.width, grid.height, len(angles))
    return depth


class DepthMapService:
    """
    Runs reconstructions on a single coordinator thread.

    Futures of superseded requests are never resolved. Failures of the raster
    backend or the workers are set on the future.
    """

    def __init__(self, generation: RenderGeneration = GLOBAL_GENERATION, backend=None,
                 worker_count: int | None = None):
        self.generation = generation
        self.backend = backend
        self.worker_count = worker_count
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="depth-map")

    def __enter__(self) -> DepthMapService:
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=False)
        return False

    def submit(self, normal_map, quality_percent: float = Config.DEFAULT_QUALITY_PERCENT,
               perspective_factor: float = Config.DEFAULT_PERSPECTIVE_FACTOR, mask=None,
               on_progress: ProgressCallback | None = None) -> Future:
        future: Future = Future()
        token = self.generation.token()

        def run():
            try:
                depth = calculate_depth_map(
                    normal_map,
                    quality_percent=quality_percent,
                    perspective_factor=perspective_factor,
                    mask=mask,
                    worker_count=self.worker_count,
                    token=token,
                    backend=self.backend,
                    on_progress=on_progress,
                )
            except Exception as exc:
                future.set_exception(exc)
                return
            if depth is not None and not token.is_stale():
                future.set_result(depth)

        self._executor.submit(run)
        return future

    def cancel_all(self) -> int:
        return self.generation.cancel_all()

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
