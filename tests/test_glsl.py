import logging
import threading

import numpy as np
import pytest

from depth_from_normals.glsl import (
    Boolean, Float, FloatUniform, Image, Integer, Matrix3, OperandMismatchError, Shader,
    ShaderContextError, ShaderNotBoundError, Vector2, Vector3, Vector4, get_bound_shader,
)
from depth_from_normals.pixel_grid import PixelGrid
from depth_from_normals.raster import RasterBackendError, render


def test_constants_do_not_need_a_shader():
    assert Float(2).name == "(2.0)"
    assert Integer(3).name == "3"
    assert Boolean(False).name == "false"


def test_building_a_node_without_shader_fails():
    with pytest.raises(ShaderNotBoundError):
        Vector3([1, 2, 3])
    with pytest.raises(ShaderNotBoundError):
        Float(1) + Float(2)


def test_not_bound_error_is_a_runtime_error():
    assert issubclass(ShaderNotBoundError, RuntimeError)
    assert issubclass(OperandMismatchError, TypeError)


def test_operand_mismatch_is_raised_at_the_call_site():
    with Shader(2, 2):
        a = Vector3([1, 2, 3])
        b = Vector4([1, 2, 3, 4])
        with pytest.raises(OperandMismatchError):
            a + b
        with pytest.raises(OperandMismatchError):
            a.dot(b)
        with pytest.raises(OperandMismatchError):
            Vector3([1, 2])
        with pytest.raises(OperandMismatchError):
            a.channel(3)
        with pytest.raises(OperandMismatchError):
            Integer(1) + Float(1)


def test_binding_a_second_shader_fails():
    with Shader(2, 2):
        with pytest.raises(ShaderContextError):
            Shader(2, 2).bind()


def test_bound_shader_is_per_thread():
    errors = []

    def build():
        try:
            Vector2([1, 2])
        except ShaderNotBoundError as e:
            errors.append(e)

    with Shader(2, 2) as shader:
        thread = threading.Thread(target=build)
        thread.start()
        thread.join()
        assert get_bound_shader() is shader
    assert len(errors) == 1


def test_purge_without_bound_shader_warns(caplog):
    with caplog.at_level(logging.WARNING):
        Shader(2, 2).purge()
    assert "No shader bound to purge" in caplog.text


def test_instructions_are_recorded_in_creation_order():
    with Shader(1, 1) as shader:
        a = FloatUniform(1.0).get_value()
        b = a + 1
        c = b * a
        assert [i.result for i in shader.instructions] == [b, c]
        assert shader.instructions[1].operands == (b, a)


def test_fragment_source_declares_uniforms_and_output():
    grid = PixelGrid.from_array(np.zeros((2, 2, 3), dtype=np.uint8))
    with Shader(2, 2) as shader:
        color = Image.load(grid)
        out = Vector4([color.channel(0), color.channel(1), color.luminance(), Float(1)])
        source = shader.fragment_source(out)
        vertex = shader.vertex_source()

    assert source.startswith("#version 300 es")
    assert "uniform sampler2D uniform_" in source
    assert "texture(uniform_" in source
    assert "luminance(vec4_" in source
    assert f"fragColor = {out.name};" in source
    assert "gl_Position" in vertex


def test_minimum_of_three_folds_left():
    with Shader(1, 1) as shader:
        a, b, c = (FloatUniform(v).get_value() for v in (1, 2, 3))
        a.minimum(b, c)
        declaration = shader.instructions[-1].declaration()
    assert f"min(min({a.name}, {b.name}), {c.name})" in declaration


def test_mixed_minimum_keeps_the_float_second():
    # GLSL only has min(genType, float), not min(float, genType)
    with Shader(1, 1) as shader:
        a = Vector3([Float(1), Float(2), Float(3)])
        b = Vector3([Float(0), Float(5), Float(1)])
        limit = FloatUniform(2).get_value()
        a.minimum(b, limit)
        declaration = shader.instructions[-1].declaration()
    assert f"min(min({a.name}, {b.name}), {limit.name})" in declaration


def test_matrix_is_emitted_column_major():
    with Shader(1, 1) as shader:
        m = Matrix3([[1, 2, 3], [4, 5, 6], [7, 8, 9]])
        declaration = shader.instructions[-1].declaration()
    assert declaration == (
        f"mat3 {m.name} = mat3((1.0), (4.0), (7.0), (2.0), (5.0), (8.0), (3.0), (6.0), (9.0));"
    )


def test_render_constant_color():
    with Shader(3, 2):
        pixels = render(Vector4([0.5, 0.25, 1, 1])).pixel_array()
    assert pixels.shape == (3 * 2 * 4,)
    assert pixels.reshape(-1, 4).tolist() == [[128, 64, 255, 255]] * 6


def test_render_matrix_inverse_times_vector():
    with Shader(1, 1):
        m = Matrix3([[2, 0, 0], [0, 4, 0], [0, 0, 1]])
        v = m.inverse() * Vector3([1, 2, 0.5])
        pixels = render(v.to_vector4()).pixel_array()
    assert pixels.tolist() == [128, 128, 128, 255]


def test_image_is_sampled_at_pixel_centres():
    rng = np.random.default_rng(1)
    img = rng.integers(0, 256, size=(5, 7, 4), dtype=np.uint8)
    with Shader(7, 5):
        grid = render(Image.load(img)).image()
    np.testing.assert_array_equal(grid.buffer, img)


def test_neighbor_pixel_clamps_to_edge():
    row = np.arange(4, dtype=np.uint8) * 50
    img = np.repeat(row[None, :], 2, axis=0)
    with Shader(4, 2):
        shifted = Image(img).neighbor_pixel(1, 0)
        grid = render(shifted).image()
    assert grid.channel(0)[0].tolist() == [50, 100, 150, 150]


def test_apply_filter_box_blur_keeps_flat_image():
    img = np.full((3, 3, 3), 100, dtype=np.uint8)
    with Shader(3, 3):
        blurred = Image(img).apply_filter(np.ones((3, 3)), normalize=True)
        grid = render(blurred).image()
    assert (grid.channel(0) == 100).all()
    assert (grid.channel(3) == 255).all()


def test_select_and_comparison():
    with Shader(4, 1) as shader:
        u = shader.uv().channel(0)
        value = (u < 0.5).select(Float(1), Float(0))
        pixels = render(Vector4([value, value, value, Float(1)])).image()
    assert pixels.channel(0)[0].tolist() == [255, 255, 0, 0]


def test_float_uniform_value_is_read_at_render_time():
    with Shader(1, 1):
        uniform = FloatUniform(0.0)
        value = uniform.get_value()
        rendering = render(Vector4([value, value, value, Float(1)]))
        uniform.set_value(1.0)
        assert rendering.pixel_array()[0] == 255


def test_empty_target_raises_backend_error():
    with Shader(0, 4):
        rendering = render(Vector4([0, 0, 0, 1]))
        with pytest.raises(RasterBackendError):
            rendering.pixel_array()
    assert issubclass(RasterBackendError, OSError)
