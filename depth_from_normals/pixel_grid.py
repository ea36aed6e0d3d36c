from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from .config import Config

### Pixel containers passed between the pipeline stages. Buffers are always HxWx4 and read-only.

CHANNELS = 4


@dataclass(frozen=True)
class PixelGrid:
    width: int
    height: int
    buffer: np.ndarray  # (height, width, 4), uint8 0-255 or float

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Invalid dimensions {self.width}x{self.height}")
        if self.buffer.size != self.width * self.height * CHANNELS:
            raise ValueError(
                f"Buffer of {self.buffer.size} values does not match {self.width}x{self.height}x{CHANNELS}"
            )
        buffer = self.buffer.reshape(self.height, self.width, CHANNELS)
        if buffer.flags.writeable:
            buffer = buffer.copy()
            buffer.setflags(write=False)
        object.__setattr__(self, "buffer", buffer)

    @classmethod
    def from_array(cls, img: np.ndarray, alpha: float | int | None = None) -> PixelGrid:
        """
        Wrap an image array as a PixelGrid.

        HxW images are replicated to RGB, HxWx3 images get an opaque alpha
        channel (255 for uint8, 1.0 for float input) unless `alpha` is given.
        """
        img = np.asarray(img)
        if img.ndim == 2:
            img = np.repeat(img[..., None], 3, axis=-1)
        if img.ndim != 3 or img.shape[-1] not in (3, 4):
            raise ValueError(f"Expected HxW, HxWx3 or HxWx4 image, got shape {img.shape}")
        if img.shape[-1] == 3:
            if alpha is None:
                alpha = 255 if img.dtype == np.uint8 else 1.0
            a = np.full(img.shape[:2] + (1,), alpha, dtype=img.dtype)
            img = np.concatenate([img, a], axis=-1)
        H, W = img.shape[:2]
        return cls(width=W, height=H, buffer=img)

    @classmethod
    def empty(cls, width: int = 0, height: int = 0) -> PixelGrid:
        return cls(width=width, height=height, buffer=np.zeros((height, width, CHANNELS), dtype=np.uint8))

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    @property
    def shape(self) -> tuple[int, int]:
        return self.height, self.width

    def channel(self, index: int) -> np.ndarray:
        return self.buffer[..., index]

    def pixel_array(self) -> np.ndarray:
        """Flat RGBA array, row by row from the top."""
        return self.buffer.reshape(-1)

    def as_float(self) -> np.ndarray:
        """Buffer scaled to [0, 1] when stored as bytes."""
        if self.buffer.dtype == np.uint8:
            return self.buffer.astype(np.float32) / 255.0
        return self.buffer.astype(np.float32)


class GradientField(PixelGrid):
    """
    Byte encoded slope field. Channel 0 and 1 hold the x / y slope shifted by
    half the byte range, channel 2 is zero where the surface is unusable.
    """

    def slopes(self, slope_shift: float = Config.SLOPE_SHIFT) -> tuple[np.ndarray, np.ndarray]:
        b = self.buffer.astype(np.float64)
        return b[..., 0] + slope_shift, b[..., 1] + slope_shift

    def validity(self) -> np.ndarray:
        return self.buffer[..., 2] != 0
