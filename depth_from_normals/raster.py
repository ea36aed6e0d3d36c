from __future__ import annotations
import logging
from dataclasses import dataclass

import cv2
import numpy as np

from .config import Config
from .glsl import (
    Instruction, Operator, OperatorKind, OperandMismatchError, Shader, Uniform, Variable, VarType,
    arithmetic_type, get_bound_shader,
)
from .pixel_grid import PixelGrid

### Executes recorded shader programs over a full-screen pass.
### The numpy backend evaluates every instruction on whole (H, W, ...) arrays,
### texture sampling is bilinear with clamp-to-edge like a GL_LINEAR / CLAMP_TO_EDGE sampler.

logger = logging.getLogger(__name__)


class RasterBackendError(OSError):
    """The raster backend could not produce a framebuffer."""


@dataclass(frozen=True)
class CompiledProgram:
    vertex_source: str
    fragment_source: str
    instructions: tuple[Instruction, ...]
    uniforms: tuple[Uniform, ...]
    output: Variable
    width: int
    height: int


def compile_program(shader: Shader, output: Variable) -> CompiledProgram:
    if output.TYPE is not VarType.VECTOR4:
        raise OperandMismatchError(f"Render output must be a vec4, got {output.TYPE.glsl_name}.")
    fragment_source = shader.fragment_source(output)
    logger.debug("Compiled fragment shader with %d instructions", len(shader.instructions))
    return CompiledProgram(
        vertex_source=shader.vertex_source(),
        fragment_source=fragment_source,
        instructions=tuple(shader.instructions),
        uniforms=tuple(shader.uniforms),
        output=output,
        width=shader.width,
        height=shader.height,
    )


def _expand(value, target: VarType):
    """Give a per-pixel float trailing axes so it broadcasts against vectors or matrices."""
    value = np.asarray(value)
    if value.ndim == 0:
        return value
    if target in (VarType.VECTOR2, VarType.VECTOR3, VarType.VECTOR4):
        return value[..., None]
    if target is VarType.MATRIX3:
        return value[..., None, None]
    return value


def _binary(operator: Operator, left_type: VarType, left, right_type: VarType, right):
    result_type = arithmetic_type(operator, left_type, right_type)
    if operator is Operator.MULTIPLY:
        if left_type is VarType.MATRIX3 and right_type is VarType.MATRIX3:
            return result_type, np.einsum("...ij,...jk->...ik", left, right)
        if left_type is VarType.MATRIX3 and right_type is VarType.VECTOR3:
            return result_type, np.einsum("...ij,...j->...i", left, right)
        if left_type is VarType.VECTOR3 and right_type is VarType.MATRIX3:
            return result_type, np.einsum("...i,...ij->...j", left, right)
    if left_type is VarType.FLOAT and result_type is not VarType.BOOLEAN:
        left = _expand(left, result_type)
    if right_type is VarType.FLOAT and result_type is not VarType.BOOLEAN:
        right = _expand(right, result_type)

    if operator is Operator.ADD:
        return result_type, left + right
    if operator is Operator.SUBTRACT:
        return result_type, left - right
    if operator is Operator.MULTIPLY:
        return result_type, left * right
    if operator is Operator.DIVIDE:
        if result_type is VarType.INTEGER:
            return result_type, np.trunc(np.divide(left, right)).astype(np.int64)
        return result_type, np.divide(left, right)
    if operator is Operator.LESS:
        return result_type, left < right
    if operator is Operator.LESS_EQUAL:
        return result_type, left <= right
    if operator is Operator.GREATER:
        return result_type, left > right
    if operator is Operator.GREATER_EQUAL:
        return result_type, left >= right
    raise AssertionError(f"Unhandled operator {operator}")


def _inverse3(matrix):
    det = np.linalg.det(matrix)
    valid = det != 0
    safe = np.where(valid[..., None, None], matrix, np.eye(3))
    inverse = np.linalg.inv(safe)
    return np.where(valid[..., None, None], inverse, np.nan)


class NumpyRasterBackend:
    """Evaluates a CompiledProgram on the CPU with numpy and OpenCV."""

    name = "numpy"

    def execute(self, program: CompiledProgram, resources: dict | None = None) -> np.ndarray:
        """Run the program for every pixel. Returns (H, W, 4) uint8, top row first."""
        width, height = program.width, program.height
        if width <= 0 or height <= 0:
            raise RasterBackendError(f"Cannot create a {width}x{height} framebuffer")
        if resources is None:
            resources = {}

        self._width, self._height = width, height
        self._resources = resources
        self._values = {}
        # pixel centres, v = 0 at the top
        u = (np.arange(width, dtype=np.float64) + 0.5) / width
        v = (np.arange(height, dtype=np.float64) + 0.5) / height
        uu, vv = np.meshgrid(u, v)
        self._uv = np.stack([uu, vv], axis=-1)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            for instruction in program.instructions:
                self._values[instruction.result.name] = self._evaluate(instruction)
            color = np.broadcast_to(self._value(program.output), (height, width, 4))

        color = np.nan_to_num(color, nan=0.0, posinf=1.0, neginf=0.0)
        return np.rint(np.clip(color, 0.0, 1.0) * 255).astype(np.uint8)

    def _value(self, variable):
        if variable.literal is not None:
            return variable.literal
        if variable.uniform is not None:
            if variable.uniform.value is None:
                raise RasterBackendError(f"Uniform {variable.name} has no value")
            return variable.uniform.value
        if variable.name == Shader.UV_NAME:
            return self._uv
        return self._values[variable.name]

    def _per_pixel(self, value):
        return np.broadcast_to(np.asarray(value, dtype=np.float64), (self._height, self._width))

    def _texture(self, uniform) -> np.ndarray:
        texture = self._resources.get(uniform.name)
        if texture is None:
            grid = uniform.value
            if grid is None:
                raise RasterBackendError(f"Texture {uniform.name} was released")
            texture = grid.as_float()
            self._resources[uniform.name] = texture
        return texture

    def _sample(self, uniform, coordinates) -> np.ndarray:
        texture = self._texture(uniform)
        texture_height, texture_width = texture.shape[:2]
        coordinates = np.broadcast_to(coordinates, (self._height, self._width, 2))
        map_x = (coordinates[..., 0] * texture_width - 0.5).astype(np.float32)
        map_y = (coordinates[..., 1] * texture_height - 0.5).astype(np.float32)
        sampled = cv2.remap(
            texture, map_x, map_y, interpolation=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE
        )
        return sampled.astype(np.float64)

    def _evaluate(self, instruction: Instruction):
        operator = instruction.operator
        operands = instruction.operands
        kind = operator.kind

        if kind is OperatorKind.SYMBOL:
            current_type, current = operands[0].TYPE, self._value(operands[0])
            for operand in operands[1:]:
                current_type, current = _binary(operator, current_type, current, operand.TYPE, self._value(operand))
            return current

        if kind is OperatorKind.METHOD:
            return self._evaluate_method(instruction)

        if kind is OperatorKind.CUSTOM:
            return self._evaluate_custom(instruction)

        raise AssertionError(f"Unhandled operator kind {kind}")

    def _evaluate_method(self, instruction: Instruction):
        operator = instruction.operator
        operands = instruction.operands
        values = [self._value(operand) for operand in operands]
        result_type = instruction.result.TYPE

        if operator in (Operator.MINIMUM, Operator.MAXIMUM):
            reduce = np.minimum if operator is Operator.MINIMUM else np.maximum
            current = values[0]
            for operand, value in zip(operands[1:], values[1:]):
                if operand.TYPE is VarType.FLOAT:
                    value = _expand(value, result_type)
                current = reduce(current, value)
            return current
        if operator is Operator.ABS:
            return np.abs(values[0])
        if operator is Operator.SIGN:
            return np.sign(values[0])
        if operator is Operator.SINE:
            return np.sin(values[0])
        if operator is Operator.COSINE:
            return np.cos(values[0])
        if operator is Operator.ARC_COSINE:
            return np.arccos(values[0])
        if operator is Operator.RADIANS:
            return np.deg2rad(values[0])
        if operator is Operator.STEP:
            edge, x = values
            return np.where(np.asarray(x) < edge, 0.0, 1.0)
        if operator is Operator.DOT:
            return np.sum(np.multiply(values[0], values[1]), axis=-1)
        if operator is Operator.LENGTH:
            return np.linalg.norm(values[0], axis=-1)
        if operator is Operator.DISTANCE:
            return np.linalg.norm(np.subtract(values[0], values[1]), axis=-1)
        if operator is Operator.NORMALIZE:
            vector = np.asarray(values[0])
            return vector / np.linalg.norm(vector, axis=-1, keepdims=True)
        if operator is Operator.INVERSE:
            return _inverse3(values[0])
        raise AssertionError(f"Unhandled method {operator}")

    def _evaluate_custom(self, instruction: Instruction):
        operator = instruction.operator
        operands = instruction.operands

        if operator is Operator.CHANNEL:
            return np.asarray(self._value(operands[0]))[..., operands[1].literal]
        if operator is Operator.CONSTRUCT:
            components = np.stack([self._per_pixel(self._value(operand)) for operand in operands], axis=-1)
            if instruction.result.TYPE is VarType.MATRIX3:
                return components.reshape(self._height, self._width, 3, 3)
            return components
        if operator is Operator.TEXTURE:
            return self._sample(operands[0], self._value(operands[1]))
        if operator is Operator.TO_VECTOR4:
            rgb = np.broadcast_to(self._value(operands[0]), (self._height, self._width, 3))
            return np.concatenate([rgb, self._per_pixel(self._value(operands[1]))[..., None]], axis=-1)
        if operator is Operator.LUMINANCE:
            rgb = np.asarray(self._value(operands[0]))[..., :3]
            return rgb @ np.asarray(Config.LUMINANCE_WEIGHTS)
        if operator is Operator.SELECT:
            condition, if_true, if_false = (self._value(operand) for operand in operands)
            condition = np.asarray(condition)
            if instruction.result.TYPE in (VarType.VECTOR2, VarType.VECTOR3, VarType.VECTOR4):
                condition = _expand(condition, instruction.result.TYPE)
            elif instruction.result.TYPE is VarType.MATRIX3:
                condition = _expand(condition, VarType.MATRIX3)
            return np.where(condition, if_true, if_false)
        raise AssertionError(f"Unhandled custom operator {operator}")


class Rendering:
    """The result of one render call. Pixels are computed once and then cached."""

    def __init__(self, shader: Shader, program: CompiledProgram, backend):
        self.shader = shader
        self.program = program
        self.backend = backend
        self._pixels = None
        self._grid = None

    def _framebuffer(self) -> np.ndarray:
        if self._pixels is None:
            self._pixels = self.backend.execute(self.program, self.shader.resources)
        return self._pixels

    def pixel_array(self) -> np.ndarray:
        """Flat RGBA bytes, top row first."""
        return self._framebuffer().reshape(-1)

    def image(self) -> PixelGrid:
        if self._grid is None:
            pixels = self._framebuffer()
            self._grid = PixelGrid(width=pixels.shape[1], height=pixels.shape[0], buffer=pixels)
        return self._grid


def render(output: Variable, backend=None) -> Rendering:
    """Compile the bound shader with `output` as fragment colour. Pixels are produced on first access."""
    shader = get_bound_shader()
    program = compile_program(shader, output)
    if backend is None:
        backend = shader.backend
    if backend is None:
        backend = NumpyRasterBackend()
    return Rendering(shader, program, backend)
