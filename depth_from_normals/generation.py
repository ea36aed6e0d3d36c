from __future__ import annotations
import threading


class RenderObsolete(Exception):
    """Raised inside a pipeline when a newer request has superseded it. Never reaches the caller."""


class CancellationToken:
    def __init__(self, generation: RenderGeneration, captured: int):
        self._generation = generation
        self.captured = captured

    def is_stale(self) -> bool:
        return self.captured < self._generation.generation

    def check(self):
        if self.is_stale():
            raise RenderObsolete(f"Render {self.captured} superseded by {self._generation.generation}")


class RenderGeneration:
    """Monotonic epoch. Bumping it invalidates every token taken before."""

    def __init__(self):
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def cancel_all(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def token(self) -> CancellationToken:
        return CancellationToken(self, self._generation)


# Shared by the module level cancel_all() and the default DepthMapService
GLOBAL_GENERATION = RenderGeneration()


def cancel_all() -> int:
    return GLOBAL_GENERATION.cancel_all()
