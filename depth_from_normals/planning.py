from __future__ import annotations
import math
from dataclasses import dataclass

import numpy as np

from .config import Config

### Which directions to integrate along, and where rays enter the image.

START_FRAME_POLICIES = ("circular", "rectangular")


@dataclass(frozen=True)
class AngleSet:
    angles: tuple[float, ...]  # degrees, every angle followed by its antipode

    def __len__(self):
        return len(self.angles)

    def __iter__(self):
        return iter(self.angles)

    def step_vectors(self) -> np.ndarray:
        """(N, 2) march steps. Rays travel away from the light, so every angle is turned by 180 degrees."""
        steps = [direction_step_vector(angle + 180) for angle in self.angles]
        return np.asarray(steps, dtype=np.float64).reshape(-1, 2)

    def partition(self, parts: int) -> list[AngleSet]:
        """Round robin split, so every part spans the whole circle."""
        return [AngleSet(self.angles[i::parts]) for i in range(parts)]


@dataclass(frozen=True)
class StartFrame:
    policy: str
    points: np.ndarray  # (N, 2) float64 x, y in y-up marching coordinates
    center: tuple[float, float]
    radius: float

    @property
    def circular(self) -> bool:
        return self.policy == "circular"

    def __len__(self):
        return len(self.points)


def direction_step_vector(angle: float, minimum_step: float = Config.MINIMUM_STEP) -> tuple[float, float]:
    """Unit step for an azimuth in degrees. Tiny components are snapped to zero."""
    radians = math.radians(angle)
    step_x, step_y = math.cos(radians), math.sin(radians)
    if abs(step_x) < minimum_step:
        step_x = 0.0
    if abs(step_y) < minimum_step:
        step_y = 0.0
    return step_x, step_y


def angle_count(width: int, height: int, quality_percent: float) -> int:
    if not 0 < quality_percent <= 1:
        raise ValueError(f"quality_percent must be in (0, 1], got {quality_percent}")
    maximum_angle_count = 2 * width + 2 * height
    return max(2, math.floor(maximum_angle_count * quality_percent + 0.5))


def plan_angles(width: int, height: int, quality_percent: float = Config.DEFAULT_QUALITY_PERCENT) -> AngleSet:
    """
    Angles of integration, refined dyadically: 0 and 180 first, then 90 / 270,
    then the 45 degree diagonals and so on until `angle_count` is reached.
    Every angle is paired with its antipode, so the set size is always even.
    """
    count = angle_count(width, height, quality_percent)

    angles: list[float] = []
    seen: set[float] = set()
    divisor = 1
    while divisor < count:
        for k in range(divisor):
            angle = k * 360 / divisor
            if angle in seen:
                continue
            opposite = (angle + 180) % 360
            angles.extend((angle, opposite))
            seen.update((angle, opposite))
        divisor *= 2

    return AngleSet(tuple(angles))


def plan_start_frame(width: int, height: int, policy: str = Config.DEFAULT_START_FRAME) -> StartFrame:
    if policy not in START_FRAME_POLICIES:
        raise ValueError(f"Unknown start frame policy '{policy}', expected one of {START_FRAME_POLICIES}")

    if policy == "circular":
        radius = max(width, height)
        center = (width / 2, height / 2)
        resolution = round(2 * math.pi * radius)
        phi = np.arange(resolution, dtype=np.float64) * 2 * math.pi / max(resolution, 1)
        points = np.stack([center[0] + radius * np.cos(phi), center[1] + radius * np.sin(phi)], axis=-1)
        return StartFrame(policy, points.reshape(-1, 2), center, float(radius))

    xs = np.arange(width, dtype=np.float64)
    ys = np.arange(height, dtype=np.float64)
    points = np.concatenate([
        np.stack([xs, np.full(width, -1.0)], axis=-1),
        np.stack([xs, np.full(width, float(height))], axis=-1),
        np.stack([np.full(height, -1.0), ys], axis=-1),
        np.stack([np.full(height, float(width)), ys], axis=-1),
    ])
    return StartFrame(policy, points.reshape(-1, 2), (width / 2, height / 2), float(max(width, height)))
