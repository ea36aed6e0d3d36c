import numpy as np
from pathlib import Path
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from .image_io import save_image, depth_as_float
from .pixel_grid import GradientField, PixelGrid

### The purpose of this script is to handle visualization and data output generation.
def save_gradient_rgb(gradient: GradientField, path: str):
    """Save the slope field as an RGB image (red = x slope, green = y slope, blue = validity)."""
    img = np.asarray(gradient.buffer[..., :3])
    save_image(img, path, convert_bgr=True)

def save_depth_plot(depth: PixelGrid, out_path: str, mask: np.ndarray = None):
    """
    Create a 3D surface plot from a depth map and save it as an image.

    Parameters:
        depth   : PixelGrid
                  Gray depth map, the red channel is used.
        mask    : np.ndarray, shape (H, W), optional
                  Boolean mask of valid pixels. Defaults to the non black pixels.
        out_path: str
                  Path to save the output image.
    """
    z = depth_as_float(depth)
    if mask is None:
        mask = z > 0

    # Mask out invalid areas
    z_masked = np.where(mask, z, np.nan)
    H, W = z_masked.shape
    X, Y = np.meshgrid(np.arange(W), np.arange(H))

    # Create figure
    fig = plt.figure(figsize=(8, 6))
    ax = fig.add_subplot(111, projection='3d')

    # Plot surface
    ax.plot_surface(X, Y, z_masked, rstride=1, cstride=1, cmap='viridis', edgecolor='none')

    # Labels and view
    ax.set_xlabel('X')
    ax.set_ylabel('Y')
    ax.set_zlabel('Depth')
    ax.view_init(elev=30, azim=120)

    # Save figure
    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, bbox_inches='tight')
    plt.close(fig)

def save_quality_chart(qualities, differences, out_path: str, title: str = "Depth map accuracy"):
    """Plot accuracy (1 - difference value) against the quality setting."""
    qualities = np.asarray(qualities, dtype=np.float64)
    accuracy = 1 - np.asarray(differences, dtype=np.float64)

    fig, ax = plt.subplots(figsize=(8, 4))
    ax.plot(qualities * 100, accuracy * 100, marker='o')
    ax.set_xlabel('Quality [%]')
    ax.set_ylabel('Accuracy [%]')
    ax.set_title(title)
    ax.grid(True, alpha=0.3)

    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, bbox_inches='tight')
    plt.close(fig)
