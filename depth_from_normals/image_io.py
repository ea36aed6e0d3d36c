from pathlib import Path
import numpy as np
import cv2
from .pixel_grid import PixelGrid

### This script handles image loading and saving operations to isolate the I/O logic from the rest of the program
###
def load_image(path: str) -> PixelGrid:
    """Load an 8 bit image as an RGBA PixelGrid (colour order converted from OpenCV's BGR)."""
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ValueError(f"Failed to read: {path}")
    if img.dtype == np.uint16:
        img = (img / 257).round().astype(np.uint8)
    elif img.dtype != np.uint8:
        raise ValueError(f"Unsupported image depth {img.dtype} in {path}")

    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    elif img.shape[-1] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    else:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    return PixelGrid.from_array(img)


def load_normal_map(path: str) -> PixelGrid:
    """Normal maps are stored as RGB, x -> red, y -> green, z -> blue."""
    return load_image(path)


def save_image(img, path: str, convert_bgr: bool = True):
    """Save a PixelGrid or array to disk, converting RGB(A) to OpenCV's BGR(A) order by default."""
    if isinstance(img, PixelGrid):
        img = np.asarray(img.buffer)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if convert_bgr and img.ndim == 3:
        code = cv2.COLOR_RGBA2BGRA if img.shape[-1] == 4 else cv2.COLOR_RGB2BGR
        img = cv2.cvtColor(img, code)
    if not cv2.imwrite(str(path), img):
        raise ValueError(f"Failed to write: {path}")


def save_float_array(arr: np.ndarray, path: str, format: str = "npy"):
    """Save float array as .npy or .pfm."""
    if format == "npy":
        np.save(path, np.nan_to_num(arr, nan=0.0).astype(np.float32))
    elif format == "pfm":
        cv2.imwrite(path, np.nan_to_num(arr, nan=0.0).astype(np.float32))
    else:
        raise ValueError(f"Unsupported format: {format}")


def depth_as_float(depth: PixelGrid) -> np.ndarray:
    """Red channel of a gray depth map in [0, 1]."""
    return depth.as_float()[..., 0]
