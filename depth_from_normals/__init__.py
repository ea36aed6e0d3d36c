from .config import Config
from .pixel_grid import PixelGrid, GradientField
from .glsl import (
    Shader, Image, FloatUniform, Float, Integer, Boolean, Vector2, Vector3, Vector4, Matrix3,
    OperandMismatchError, ShaderNotBoundError, ShaderContextError,
)
from .raster import render, NumpyRasterBackend, RasterBackendError
from .gradient import extract_gradient
from .planning import AngleSet, StartFrame, plan_angles, plan_start_frame
from .integration import IntegralAccumulator, integrate
from .normalization import normalize, perspective_correct, apply_mask, apply_masks
from .generation import RenderGeneration, CancellationToken, RenderObsolete, cancel_all
from .depth_map import calculate_depth_map, DepthMapService
from .evaluation import difference_map, difference_value
from .normal_map import photometric_stereo_normal_map, rapid_gradient_normal_map
from .point_cloud import PointCloud, point_cloud, save_obj
from .image_io import load_image, load_normal_map, save_image, save_float_array
