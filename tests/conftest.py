# tests/conftest.py

import numpy as np
import pytest

from depth_from_normals.generation import RenderGeneration
from depth_from_normals.glsl import get_bound_shader, ShaderNotBoundError
from depth_from_normals.pixel_grid import PixelGrid


def make_normal_map(width: int, height: int, rgb=(128, 128, 255)) -> PixelGrid:
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[..., :3] = rgb
    img[..., 3] = 255
    return PixelGrid.from_array(img)


@pytest.fixture
def flat_normal_map():
    return make_normal_map(8, 6)


@pytest.fixture
def generation():
    return RenderGeneration()


@pytest.fixture(autouse=True)
def no_shader_left_bound():
    """Every test must leave the thread without a bound shader."""
    yield
    try:
        shader = get_bound_shader()
    except ShaderNotBoundError:
        return
    shader.unbind()
    pytest.fail("Test left a shader bound")
