from __future__ import annotations
import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .config import Config
from .pixel_grid import PixelGrid

### Expression graph that records per-pixel operations and lowers them to GLSL.
### Every node created while a Shader is bound appends one instruction to that shader's program.
### Execution of the recorded program lives in raster.py.

logger = logging.getLogger(__name__)


class ShaderNotBoundError(RuntimeError):
    """A graph node was created without a bound Shader on this thread."""


class ShaderContextError(RuntimeError):
    """Shaders were bound or mixed in an invalid way."""


class OperandMismatchError(TypeError):
    """Operator and operand types do not fit together."""


class VarType(Enum):
    FLOAT = ("float", 1)
    INTEGER = ("int", 1)
    BOOLEAN = ("bool", 1)
    VECTOR2 = ("vec2", 2)
    VECTOR3 = ("vec3", 3)
    VECTOR4 = ("vec4", 4)
    MATRIX3 = ("mat3", 9)

    def __init__(self, glsl_name: str, size: int):
        self.glsl_name = glsl_name
        self.size = size


VECTOR_TYPES = (VarType.VECTOR2, VarType.VECTOR3, VarType.VECTOR4)
FLOATING_TYPES = (VarType.FLOAT, *VECTOR_TYPES, VarType.MATRIX3)


class OperatorKind(Enum):
    SYMBOL = 0  # infix, e.g. a + b + c
    METHOD = 1  # builtin function call, e.g. min(a, b)
    CUSTOM = 2  # anything with its own syntax


class Operator(Enum):
    ADD = (" + ", OperatorKind.SYMBOL)
    SUBTRACT = (" - ", OperatorKind.SYMBOL)
    MULTIPLY = (" * ", OperatorKind.SYMBOL)
    DIVIDE = (" / ", OperatorKind.SYMBOL)
    LESS = (" < ", OperatorKind.SYMBOL)
    LESS_EQUAL = (" <= ", OperatorKind.SYMBOL)
    GREATER = (" > ", OperatorKind.SYMBOL)
    GREATER_EQUAL = (" >= ", OperatorKind.SYMBOL)

    ABS = ("abs", OperatorKind.METHOD)
    MAXIMUM = ("max", OperatorKind.METHOD)
    MINIMUM = ("min", OperatorKind.METHOD)
    DOT = ("dot", OperatorKind.METHOD)
    INVERSE = ("inverse", OperatorKind.METHOD)
    NORMALIZE = ("normalize", OperatorKind.METHOD)
    LENGTH = ("length", OperatorKind.METHOD)
    SINE = ("sin", OperatorKind.METHOD)
    COSINE = ("cos", OperatorKind.METHOD)
    ARC_COSINE = ("acos", OperatorKind.METHOD)
    RADIANS = ("radians", OperatorKind.METHOD)
    SIGN = ("sign", OperatorKind.METHOD)
    STEP = ("step", OperatorKind.METHOD)
    DISTANCE = ("distance", OperatorKind.METHOD)

    CHANNEL = ("channel", OperatorKind.CUSTOM)
    CONSTRUCT = ("construct", OperatorKind.CUSTOM)
    TEXTURE = ("texture", OperatorKind.CUSTOM)
    TO_VECTOR4 = ("vec3_to_vec4", OperatorKind.CUSTOM)
    LUMINANCE = ("luminance", OperatorKind.CUSTOM)
    SELECT = ("select", OperatorKind.CUSTOM)

    def __init__(self, glsl_name: str, kind: OperatorKind):
        self.glsl_name = glsl_name
        self.kind = kind


ARITHMETIC_OPERATORS = (Operator.ADD, Operator.SUBTRACT, Operator.MULTIPLY, Operator.DIVIDE)
COMPARISON_OPERATORS = (Operator.LESS, Operator.LESS_EQUAL, Operator.GREATER, Operator.GREATER_EQUAL)


def arithmetic_type(operator: Operator, left: VarType, right: VarType) -> VarType:
    """Result type of `left <operator> right`, following GLSL's implicit scalar broadcasting."""
    if operator in COMPARISON_OPERATORS:
        if left is right and left in (VarType.FLOAT, VarType.INTEGER):
            return VarType.BOOLEAN
    elif left is VarType.INTEGER and right is VarType.INTEGER:
        return VarType.INTEGER
    elif left in FLOATING_TYPES and right in FLOATING_TYPES:
        if left is right or right is VarType.FLOAT:
            return left
        if left is VarType.FLOAT:
            return right
        if operator is Operator.MULTIPLY and {left, right} == {VarType.MATRIX3, VarType.VECTOR3}:
            return VarType.VECTOR3
    raise OperandMismatchError(
        f"Not possible to combine {left.glsl_name} and {right.glsl_name} with '{operator.glsl_name.strip()}'."
    )


def float_literal(value: float) -> str:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"GLSL has no literal for {value}")
    return f"({value!r})"


@dataclass(frozen=True, eq=False)
class Instruction:
    result: "Variable"
    operator: Operator
    operands: tuple

    def declaration(self) -> str:
        """One GLSL statement declaring and assigning the result."""
        names = [operand.name for operand in self.operands]
        kind = self.operator.kind
        if kind is OperatorKind.SYMBOL:
            expression = self.operator.glsl_name.join(names)
        elif kind is OperatorKind.METHOD:
            if self.operator in (Operator.MINIMUM, Operator.MAXIMUM):
                expression = nested_call(self.operator.glsl_name, names)
            else:
                expression = f"{self.operator.glsl_name}({', '.join(names)})"
        elif kind is OperatorKind.CUSTOM:
            expression = self._custom_expression(names)
        else:
            raise AssertionError(f"Unhandled operator kind {kind}")
        return f"{self.result.TYPE.glsl_name} {self.result.name} = {expression};"

    def _custom_expression(self, names: list[str]) -> str:
        operator = self.operator
        if operator is Operator.CHANNEL:
            return f"{names[0]}[{names[1]}]"
        if operator is Operator.CONSTRUCT:
            if self.result.TYPE is VarType.MATRIX3:
                # operands are stored row by row, GLSL constructors take columns
                names = [names[row * 3 + column] for column in range(3) for row in range(3)]
            return f"{self.result.TYPE.glsl_name}({', '.join(names)})"
        if operator is Operator.TEXTURE:
            return f"texture({names[0]}, {names[1]})"
        if operator is Operator.TO_VECTOR4:
            return f"vec4({names[0]}, {names[1]})"
        if operator is Operator.LUMINANCE:
            return f"luminance({names[0]})"
        if operator is Operator.SELECT:
            return f"{names[0]} ? {names[1]} : {names[2]}"
        raise AssertionError(f"Unhandled custom operator {operator}")


def nested_call(method_name: str, names: list[str]) -> str:
    """min(a, b, c) is not GLSL, so fold it into min(min(a, b), c). Float operands stay second."""
    expression = names[0]
    for name in names[1:]:
        expression = f"{method_name}({expression}, {name})"
    return expression


# ----------------- Compilation context ----------------- #

_bound = threading.local()


def get_bound_shader() -> "Shader":
    shader = getattr(_bound, "shader", None)
    if shader is None:
        raise ShaderNotBoundError("No shader bound on this thread. Call Shader.bind() first.")
    return shader


class Shader:
    """
    A compilation context for one raster program.

    Only one shader can be bound per thread. Use it as a context manager to
    bind on entry and purge (release textures and program) on exit.
    """

    UV_NAME = "uv"
    OUT_NAME = "fragColor"

    def __init__(self, width: int, height: int, backend=None):
        self.width = int(width)
        self.height = int(height)
        self.backend = backend
        self.instructions: list[Instruction] = []
        self.uniforms: list[Uniform] = []
        self.resources: dict = {}  # uploaded textures, filled by the raster backend
        self._name_counter = 0

    def __enter__(self) -> Shader:
        self.bind()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.purge()
        return False

    @property
    def is_bound(self) -> bool:
        return getattr(_bound, "shader", None) is self

    def bind(self):
        current = getattr(_bound, "shader", None)
        if current is not None:
            raise ShaderContextError("A shader is already bound on this thread. Purge it before binding another.")
        _bound.shader = self

    def unbind(self):
        if self.is_bound:
            _bound.shader = None

    def purge(self):
        if not self.is_bound:
            logger.warning("No shader bound to purge!")
            return
        self.resources.clear()
        for uniform in self.uniforms:
            uniform.value = None
        self.instructions.clear()
        self.uniforms.clear()
        self.unbind()

    def unique_name(self, prefix: str) -> str:
        self._name_counter += 1
        return f"{prefix}_{self._name_counter}"

    def record(self, instruction: Instruction):
        self.instructions.append(instruction)

    def add_uniform(self, uniform: Uniform):
        self.uniforms.append(uniform)

    def uv(self) -> Vector2:
        """Texture coordinate of the current pixel, (0, 0) at the top left corner."""
        return Vector2._create(self.UV_NAME, shader=self)

    # ----------------- Source generation ----------------- #

    def vertex_source(self) -> str:
        return "\n".join([
            "#version 300 es",
            "",
            "in vec3 pos;",
            "in vec2 tex;",
            "",
            f"out vec2 {self.UV_NAME};",
            "",
            "void main() {",
            f"{self.UV_NAME} = tex;",
            "gl_Position = vec4(pos, 1.0);",
            "}",
        ])

    def fragment_source(self, output: Vector4) -> str:
        red, green, blue = (float_literal(w) for w in Config.LUMINANCE_WEIGHTS)
        return "\n".join([
            "#version 300 es",
            f"precision {Config.FLOAT_PRECISION} float;",
            "",
            f"in vec2 {self.UV_NAME};",
            f"out vec4 {self.OUT_NAME};",
            "",
            *[uniform.declaration() for uniform in self.uniforms],
            "",
            "float luminance(vec4 image) {",
            f"return image.r * {red} + image.g * {green} + image.b * {blue};",
            "}",
            "",
            "void main() {",
            *[instruction.declaration() for instruction in self.instructions],
            f"{self.OUT_NAME} = {output.name};",
            "}",
        ])


# ----------------- Uniforms ----------------- #

class Uniform:
    GLSL_TYPE = ""

    def __init__(self, value=None):
        shader = get_bound_shader()
        self.shader = shader
        self.name = shader.unique_name("uniform")
        self.value = value
        shader.add_uniform(self)

    def declaration(self) -> str:
        return f"uniform {self.GLSL_TYPE} {self.name};"


class FloatUniform(Uniform):
    GLSL_TYPE = "float"

    def set_value(self, value: float):
        self.value = float(value)

    def get_value(self) -> Float:
        return Float._create(self.name, shader=self.shader, uniform=self)


class ImageUniform(Uniform):
    GLSL_TYPE = "sampler2D"

    def set_value(self, value: PixelGrid):
        self.value = value


class Image:
    """A read-only texture sampled at the current pixel (or at offsets from it)."""

    def __init__(self, source):
        grid = source if isinstance(source, PixelGrid) else PixelGrid.from_array(source)
        self.grid = grid
        self.uniform = ImageUniform(grid)
        shader = self.uniform.shader
        self._color = _record(VarType.VECTOR4, Operator.TEXTURE, [self.uniform, shader.uv()])

    @classmethod
    def load(cls, source) -> Vector4:
        return cls(source).pixel_color()

    def pixel_color(self) -> Vector4:
        return self._color

    def neighbor_pixel(self, offset_x: float, offset_y: float) -> Vector4:
        u = offset_x / self.grid.width
        v = offset_y / self.grid.height
        shader = self.uniform.shader
        coordinates = shader.uv() + Vector2([Float(u), Float(v)])
        return _record(VarType.VECTOR4, Operator.TEXTURE, [self.uniform, coordinates])

    def apply_filter(self, kernel, normalize: bool = False) -> Vector4:
        """Convolve the RGB channels with an NxN kernel. Alpha of the result is 1."""
        kernel = np.asarray(kernel, dtype=np.float64)
        if kernel.ndim != 2 or kernel.shape[0] != kernel.shape[1]:
            raise ValueError(f"Kernel must be square, got shape {kernel.shape}")
        if normalize and kernel.sum() != 0:
            kernel = kernel / kernel.sum()

        center = (kernel.shape[0] - 1) / 2
        filtered = Vector4([Float(0), Float(0), Float(0), Float(1)])
        for row_index, row in enumerate(kernel):
            for column_index, value in enumerate(row):
                if value != 0:
                    neighbor = self.neighbor_pixel(column_index - center, row_index - center)
                    filtered = filtered + Float(value) * neighbor

        return Vector4([filtered.channel(0), filtered.channel(1), filtered.channel(2), Float(1)])


# ----------------- Variables ----------------- #

def _coerce(value) -> Variable:
    if isinstance(value, Variable):
        return value
    if isinstance(value, (int, float, np.integer, np.floating)):
        return Float(value)
    raise OperandMismatchError(f"Cannot use {type(value).__name__} in a shader expression.")


def _record(var_type: VarType, operator: Operator, operands) -> Variable:
    shader = get_bound_shader()
    for operand in operands:
        if operand.shader is not None and operand.shader is not shader:
            raise ShaderContextError(f"{operand.name} belongs to a different shader.")
    result = TYPE_CLASSES[var_type]._create(shader.unique_name(var_type.glsl_name), shader=shader)
    shader.record(Instruction(result, operator, tuple(operands)))
    return result


class Variable:
    TYPE: VarType = None

    name: str
    literal = None  # python value of inlined constants
    shader: Shader | None = None  # None for constants, which are valid in every shader
    uniform: Uniform | None = None

    @classmethod
    def _create(cls, name: str, shader: Shader | None = None, uniform: Uniform | None = None):
        variable = cls.__new__(cls)
        variable.name = name
        variable.shader = shader
        variable.uniform = uniform
        return variable

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"

    def _arithmetic(self, operator: Operator, others) -> Variable:
        others = [_coerce(other) for other in others]
        if not others:
            raise OperandMismatchError(f"'{operator.glsl_name.strip()}' needs at least one more operand.")
        result_type = self.TYPE
        for other in others:
            result_type = arithmetic_type(operator, result_type, other.TYPE)
        return _record(result_type, operator, [self, *others])

    def add(self, *addends):
        return self._arithmetic(Operator.ADD, addends)

    def subtract(self, *subtrahends):
        return self._arithmetic(Operator.SUBTRACT, subtrahends)

    def multiply(self, *factors):
        return self._arithmetic(Operator.MULTIPLY, factors)

    def divide(self, *divisors):
        return self._arithmetic(Operator.DIVIDE, divisors)

    def __add__(self, other):
        return self.add(other)

    def __radd__(self, other):
        return _coerce(other).add(self)

    def __sub__(self, other):
        return self.subtract(other)

    def __rsub__(self, other):
        return _coerce(other).subtract(self)

    def __mul__(self, other):
        return self.multiply(other)

    def __rmul__(self, other):
        return _coerce(other).multiply(self)

    def __truediv__(self, other):
        return self.divide(other)

    def __rtruediv__(self, other):
        return _coerce(other).divide(self)

    def __neg__(self):
        return self.multiply(Float(-1))

    def _compare(self, operator: Operator, other) -> Boolean:
        other = _coerce(other)
        return _record(arithmetic_type(operator, self.TYPE, other.TYPE), operator, [self, other])

    def __lt__(self, other):
        return self._compare(Operator.LESS, other)

    def __le__(self, other):
        return self._compare(Operator.LESS_EQUAL, other)

    def __gt__(self, other):
        return self._compare(Operator.GREATER, other)

    def __ge__(self, other):
        return self._compare(Operator.GREATER_EQUAL, other)

    __hash__ = object.__hash__

    def _same_type_parameters(self, parameters) -> list[Variable]:
        parameters = [_coerce(parameter) for parameter in parameters]
        for parameter in parameters:
            if parameter.TYPE is not self.TYPE and parameter.TYPE is not VarType.FLOAT:
                raise OperandMismatchError(f"Cannot use {parameter.TYPE.glsl_name} with {self.TYPE.glsl_name}.")
        return parameters

    def minimum(self, *parameters):
        return _record(self.TYPE, Operator.MINIMUM, [self, *self._same_type_parameters(parameters)])

    def maximum(self, *parameters):
        return _record(self.TYPE, Operator.MAXIMUM, [self, *self._same_type_parameters(parameters)])

    def abs(self):
        return _record(self.TYPE, Operator.ABS, [self])


class Integer(Variable):
    TYPE = VarType.INTEGER

    def __init__(self, value: int):
        self.literal = int(value)
        self.name = str(self.literal)


class Boolean(Variable):
    TYPE = VarType.BOOLEAN

    def __init__(self, value: bool):
        self.literal = bool(value)
        self.name = "true" if self.literal else "false"

    def select(self, if_true, if_false) -> Variable:
        """GLSL ternary, `self ? if_true : if_false`."""
        if_true, if_false = _coerce(if_true), _coerce(if_false)
        if if_true.TYPE is not if_false.TYPE:
            raise OperandMismatchError(
                f"Both branches must have the same type, got {if_true.TYPE.glsl_name} and {if_false.TYPE.glsl_name}."
            )
        return _record(if_true.TYPE, Operator.SELECT, [self, if_true, if_false])


class Float(Variable):
    TYPE = VarType.FLOAT

    def __init__(self, value: float):
        self.literal = float(value)
        self.name = float_literal(self.literal)

    def radians(self) -> Float:
        return _record(VarType.FLOAT, Operator.RADIANS, [self])

    def sin(self) -> Float:
        return _record(VarType.FLOAT, Operator.SINE, [self])

    def cos(self) -> Float:
        return _record(VarType.FLOAT, Operator.COSINE, [self])

    def acos(self) -> Float:
        return _record(VarType.FLOAT, Operator.ARC_COSINE, [self])

    def sign(self) -> Float:
        """One for positive, zero for zero and minus one for negative input."""
        return _record(VarType.FLOAT, Operator.SIGN, [self])

    def step(self, edge=0.5) -> Float:
        """Zero where the input is smaller than `edge`, otherwise one."""
        edge = _coerce(edge)
        if edge.TYPE is not VarType.FLOAT:
            raise OperandMismatchError(f"Step edge must be a float, got {edge.TYPE.glsl_name}.")
        return _record(VarType.FLOAT, Operator.STEP, [edge, self])


class Vector(Variable):
    def __init__(self, components):
        components = [_coerce(component) for component in components]
        if len(components) != self.TYPE.size:
            raise OperandMismatchError(
                f"{self.TYPE.glsl_name} needs {self.TYPE.size} components, got {len(components)}."
            )
        for component in components:
            if component.TYPE is not VarType.FLOAT:
                raise OperandMismatchError(f"{self.TYPE.glsl_name} components must be floats.")
        shader = get_bound_shader()
        self.name = shader.unique_name(self.TYPE.glsl_name)
        self.shader = shader
        shader.record(Instruction(self, Operator.CONSTRUCT, tuple(components)))

    def channel(self, index: int) -> Float:
        if not 0 <= index < self.TYPE.size:
            raise OperandMismatchError(f"{self.TYPE.glsl_name} has no channel {index}.")
        return _record(VarType.FLOAT, Operator.CHANNEL, [self, Integer(index)])

    def length(self) -> Float:
        return _record(VarType.FLOAT, Operator.LENGTH, [self])

    def normalize(self):
        return _record(self.TYPE, Operator.NORMALIZE, [self])

    def _check_same(self, other) -> Variable:
        if other.TYPE is not self.TYPE:
            raise OperandMismatchError(f"Expected {self.TYPE.glsl_name}, got {other.TYPE.glsl_name}.")
        return other

    def dot(self, other) -> Float:
        return _record(VarType.FLOAT, Operator.DOT, [self, self._check_same(other)])

    def distance(self, other) -> Float:
        return _record(VarType.FLOAT, Operator.DISTANCE, [self, self._check_same(other)])


class Vector2(Vector):
    TYPE = VarType.VECTOR2


class Vector3(Vector):
    TYPE = VarType.VECTOR3

    def to_vector4(self, fourth_channel=1.0) -> Vector4:
        fourth_channel = _coerce(fourth_channel)
        if fourth_channel.TYPE is not VarType.FLOAT:
            raise OperandMismatchError("The fourth channel must be a float.")
        return _record(VarType.VECTOR4, Operator.TO_VECTOR4, [self, fourth_channel])


class Vector4(Vector):
    TYPE = VarType.VECTOR4

    def luminance(self) -> Float:
        return _record(VarType.FLOAT, Operator.LUMINANCE, [self])


class Matrix3(Variable):
    TYPE = VarType.MATRIX3

    def __init__(self, rows):
        rows = [[_coerce(value) for value in row] for row in rows]
        if len(rows) != 3 or any(len(row) != 3 for row in rows):
            raise OperandMismatchError("mat3 needs 3 rows of 3 floats.")
        values = [value for row in rows for value in row]
        if any(value.TYPE is not VarType.FLOAT for value in values):
            raise OperandMismatchError("mat3 entries must be floats.")
        shader = get_bound_shader()
        self.name = shader.unique_name(self.TYPE.glsl_name)
        self.shader = shader
        shader.record(Instruction(self, Operator.CONSTRUCT, tuple(values)))

    def inverse(self) -> Matrix3:
        return _record(VarType.MATRIX3, Operator.INVERSE, [self])


TYPE_CLASSES = {
    VarType.FLOAT: Float,
    VarType.INTEGER: Integer,
    VarType.BOOLEAN: Boolean,
    VarType.VECTOR2: Vector2,
    VarType.VECTOR3: Vector3,
    VarType.VECTOR4: Vector4,
    VarType.MATRIX3: Matrix3,
}
