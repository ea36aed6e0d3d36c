from __future__ import annotations
import logging
import math
import os
import time
from dataclasses import dataclass
from multiprocessing.pool import ThreadPool as Pool

import numpy as np
from numba import njit

from .config import Config
from .generation import CancellationToken
from .pixel_grid import GradientField
from .planning import AngleSet, StartFrame

### Multi angle line integration of a gradient field.
### Every worker marches rays for its own share of the angles and only ever
### adds into its own accumulator stripe. The coordinator sums the stripes when all workers are done.

logger = logging.getLogger(__name__)

INT32_MIN = int(np.iinfo(np.int32).min)
INT32_MAX = int(np.iinfo(np.int32).max)
INT32_RANGE = 2 ** 32


@dataclass
class IntegralAccumulator:
    width: int
    height: int
    sum: np.ndarray  # (height * width,) int32, row major from the top
    count: np.ndarray  # (height * width,) uint32

    @classmethod
    def zeros(cls, width: int, height: int) -> IntegralAccumulator:
        return cls(
            width=width,
            height=height,
            sum=np.zeros(width * height, dtype=np.int32),
            count=np.zeros(width * height, dtype=np.uint32),
        )

    @classmethod
    def from_stripes(cls, width: int, height: int, sums: np.ndarray, counts: np.ndarray,
                     overflowed: bool = False) -> IntegralAccumulator:
        """
        Reduce per worker stripes in int64.

        Stripes wrap like int32 on their own, which leaves the wrapped total
        unchanged. `overflowed` reports a wrap inside a stripe, totals outside
        the int32 range are detected here. Either way a warning is logged.
        """
        total = sums.sum(axis=0, dtype=np.int64)
        if total.size and (overflowed or total.min() < INT32_MIN or total.max() > INT32_MAX):
            logger.warning(
                "Int32 overflow in integral sum (range %d..%d), values wrap", total.min(), total.max()
            )
        wrapped = (total - INT32_MIN) % INT32_RANGE + INT32_MIN
        return cls(
            width=width,
            height=height,
            sum=wrapped.astype(np.int32),
            count=counts.sum(axis=0, dtype=np.uint64).astype(np.uint32),
        )


@njit(nogil=True, cache=True)
def _march(slope_x, slope_y, valid, steps, points, circular, center_x, center_y, radius,
           sums, counts, overflow, stop):
    """Integrate along every ray of every step vector. `sums`, `counts` and `overflow` belong to this worker only."""
    height, width = valid.shape
    radius_squared = radius * radius
    for a in range(steps.shape[0]):
        step_x = steps[a, 0]
        step_y = steps[a, 1]

        for p in range(points.shape[0]):
            if stop[0] != 0:
                return
            position_x = points[p, 0]
            position_y = points[p, 1]
            pixel_x = math.floor(position_x + 0.5)
            pixel_y = math.floor(position_y + 0.5)
            integral_value = 0.0

            while True:
                next_x = pixel_x
                next_y = pixel_y
                while next_x == pixel_x and next_y == pixel_y:
                    position_x += step_x
                    position_y += step_y
                    next_x = math.floor(position_x + 0.5)
                    next_y = math.floor(position_y + 0.5)
                pixel_x = next_x
                pixel_y = next_y

                inside = 0 <= pixel_x < width and 0 <= pixel_y < height
                if circular:
                    dx = position_x - center_x
                    dy = position_y - center_y
                    if dx * dx + dy * dy > radius_squared:
                        break
                elif not inside:
                    break
                if not inside:
                    continue

                row = height - 1 - pixel_y
                slope = 0.0
                if valid[row, pixel_x]:
                    slope = step_x * slope_x[row, pixel_x] + step_y * slope_y[row, pixel_x]
                integral_value -= slope

                index = row * width + pixel_x
                total = sums[index] + int(integral_value)
                if total < INT32_MIN or total > INT32_MAX:
                    overflow[0] = 1
                    total = (total - INT32_MIN) % INT32_RANGE + INT32_MIN
                sums[index] = total
                counts[index] += 1


def worker_count_for(angle_count: int, cpu_count: int | None = None) -> int:
    if cpu_count is None:
        cpu_count = os.cpu_count() or 1
    return max(1, min(cpu_count - 1, angle_count))


def integrate(gradient_field: GradientField, angle_set: AngleSet, start_frame: StartFrame,
              worker_count: int | None = None, token: CancellationToken | None = None,
              poll_interval: float = Config.WORKER_POLL_INTERVAL) -> IntegralAccumulator:
    """
    Line integrate the gradient field along every angle of `angle_set`.

    Raises RenderObsolete (after stopping the workers) when `token` goes stale.
    """
    width, height = gradient_field.width, gradient_field.height
    if gradient_field.is_empty or len(angle_set) == 0:
        return IntegralAccumulator.zeros(width, height)

    if worker_count is None:
        worker_count = worker_count_for(len(angle_set))
    worker_count = max(1, min(worker_count, len(angle_set)))

    slope_x, slope_y = gradient_field.slopes()
    valid = gradient_field.validity()
    points = np.ascontiguousarray(start_frame.points, dtype=np.float64)
    center_x, center_y = start_frame.center

    # 8 bytes per pixel and worker
    sums = np.zeros((worker_count, width * height), dtype=np.int32)
    counts = np.zeros((worker_count, width * height), dtype=np.uint32)
    overflow = np.zeros((worker_count, 1), dtype=np.uint8)
    stop = np.zeros(1, dtype=np.uint8)
    partitions = angle_set.partition(worker_count)

    logger.debug(
        "Integrating %d angles from %d start points on %d workers", len(angle_set), len(points), worker_count
    )

    with Pool(processes=worker_count) as pool:
        jobs = [
            pool.apply_async(_march, (
                slope_x, slope_y, valid, partition.step_vectors(), points, start_frame.circular,
                float(center_x), float(center_y), float(start_frame.radius),
                sums[i], counts[i], overflow[i], stop,
            ))
            for i, partition in enumerate(partitions)
        ]
        try:
            while not all(job.ready() for job in jobs):
                if token is not None and token.is_stale():
                    stop[0] = 1
                time.sleep(poll_interval)
            for job in jobs:
                job.get()  # re-raise worker errors
        finally:
            stop[0] = 1
            pool.close()
            pool.join()

    if token is not None:
        token.check()
    return IntegralAccumulator.from_stripes(width, height, sums, counts, overflowed=bool(overflow.any()))
