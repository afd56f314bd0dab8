"""Pervasive scalar kernels with leading-axis broadcasting.

Dyadic kernels take ``(first, second)`` where ``first`` was the top of the
stack, and compute ``second OP first``.
"""

from __future__ import annotations

import os
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, Final

import jax
import jax.numpy as jnp
from jax import lax

from .errors import RuntimeErrorKind, UiuaRuntimeError, shape_error, type_error
from .primitives import Prim, info
from .values import Array, ElementKind, Fill, is_numeric, pad_to_shape, shape_size

_USE_JITTED_KERNELS: Final[bool] = os.environ.get("UIUA_JAX_DISABLE_JITTED_KERNELS", "0") != "1"
_MAX_CODE_POINT: Final[int] = 0x10FFFF

Kernel1 = Callable[[jnp.ndarray], jnp.ndarray]
Kernel2 = Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]


@dataclass(frozen=True)
class Parallelism:
    """Worker pool settings for slicing large elementwise operations."""

    executor: Executor | None = None
    workers: int = 0
    min_size: int = 65536

    def applies(self, size: int) -> bool:
        return self.executor is not None and self.workers > 1 and size >= self.min_size


SEQUENTIAL: Final = Parallelism()


def _round_half_away(x: jnp.ndarray) -> jnp.ndarray:
    return jnp.sign(x) * jnp.floor(jnp.abs(x) + 0.5)


_UNARY_OPS: Final[dict[Prim, Kernel1]] = {
    Prim.NOT: lambda x: 1 - x,
    Prim.SIGN: lambda x: lax.sign(x),
    Prim.NEG: lambda x: -x,
    Prim.ABS: lambda x: jnp.abs(x),
    Prim.SQRT: lambda x: jnp.sqrt(x),
    Prim.SIN: lambda x: jnp.sin(x),
    Prim.FLOOR: lambda x: jnp.floor(x),
    Prim.CEIL: lambda x: jnp.ceil(x),
    Prim.ROUND: _round_half_away,
}

# These leave byte arrays as bytes; the rest widen to numbers.
_BYTE_PRESERVING: Final[frozenset[Prim]] = frozenset({Prim.SIGN, Prim.ABS, Prim.FLOOR, Prim.CEIL, Prim.ROUND})


def _cmp(op: Kernel2) -> Kernel2:
    return lambda w, x: lax.convert_element_type(op(x, w), jnp.uint8)


_BINARY_OPS: Final[dict[Prim, Kernel2]] = {
    Prim.EQ: _cmp(lax.eq),
    Prim.NE: _cmp(lax.ne),
    Prim.LT: _cmp(lax.lt),
    Prim.LE: _cmp(lax.le),
    Prim.GT: _cmp(lax.gt),
    Prim.GE: _cmp(lax.ge),
    Prim.ADD: lambda w, x: x + w,
    Prim.SUB: lambda w, x: x - w,
    Prim.MUL: lambda w, x: x * w,
    Prim.DIV: lambda w, x: x / w,
    Prim.MOD: lambda w, x: jnp.mod(x, w),
    Prim.POW: lambda w, x: x**w,
    Prim.LOG: lambda w, x: jnp.log(x) / jnp.log(w),
    Prim.MIN: lambda w, x: jnp.minimum(w, x),
    Prim.MAX: lambda w, x: jnp.maximum(w, x),
    Prim.ATAN: lambda w, x: jnp.arctan2(w, x),
}

_COMPARISONS: Final[frozenset[Prim]] = frozenset({Prim.EQ, Prim.NE, Prim.LT, Prim.LE, Prim.GT, Prim.GE})

_JITTED_UNARY_OPS: dict[Prim, Kernel1] = {}
_JITTED_BINARY_OPS: dict[Prim, Kernel2] = {}


def is_monadic_pervasive(prim: Prim) -> bool:
    return prim in _UNARY_OPS


def is_dyadic_pervasive(prim: Prim) -> bool:
    return prim in _BINARY_OPS


def unary_kernel(prim: Prim) -> Kernel1:
    if not _USE_JITTED_KERNELS:
        return _UNARY_OPS[prim]
    fn = _JITTED_UNARY_OPS.get(prim)
    if fn is None:
        fn = jax.jit(_UNARY_OPS[prim])
        _JITTED_UNARY_OPS[prim] = fn
    return fn


def binary_kernel(prim: Prim) -> Kernel2:
    if not _USE_JITTED_KERNELS:
        return _BINARY_OPS[prim]
    fn = _JITTED_BINARY_OPS.get(prim)
    if fn is None:
        fn = jax.jit(_BINARY_OPS[prim])
        _JITTED_BINARY_OPS[prim] = fn
    return fn


def _run_sliced(kernel: Callable, operands: tuple[jnp.ndarray, ...], parallel: Parallelism) -> jnp.ndarray:
    """Apply an elementwise kernel, splitting flat operands across workers when large.

    Slices are disjoint and reassembled in order, so the result does not depend
    on scheduling.
    """
    size = int(operands[0].shape[0])
    if not parallel.applies(size):
        return kernel(*operands)
    bounds = [size * i // parallel.workers for i in range(parallel.workers + 1)]

    def run_slice(span: tuple[int, int]) -> jnp.ndarray:
        lo, hi = span
        return kernel(*(operand[lo:hi] for operand in operands))

    pieces = list(parallel.executor.map(run_slice, zip(bounds, bounds[1:])))
    return jnp.concatenate(pieces)


# monadic


def unary(prim: Prim, value: Array, parallel: Parallelism = SEQUENTIAL) -> Array:
    if value.kind is ElementKind.BOX:
        return Array(ElementKind.BOX, value.shape, tuple(unary(prim, item, parallel) for item in value.data))
    if value.kind is ElementKind.CHAR:
        raise type_error(f"Cannot {info(prim).name} characters", value)

    if value.kind is ElementKind.BYTE and prim in _BYTE_PRESERVING:
        kind = ElementKind.BYTE
        data = value.data if prim is not Prim.SIGN else (value.data > 0).astype(jnp.uint8)
        return Array(kind, value.shape, data)

    data = value.converted(ElementKind.NUMBER).data
    out = _run_sliced(unary_kernel(prim), (data,), parallel)
    return Array(ElementKind.NUMBER, value.shape, out)


# dyadic


def _result_kind(prim: Prim, first: ElementKind, second: ElementKind) -> ElementKind | None:
    """Kind of ``second OP first``; None means the kinds cannot be combined."""
    if is_numeric(first) and is_numeric(second):
        return ElementKind.BYTE if prim in _COMPARISONS else ElementKind.NUMBER
    if prim in _COMPARISONS:
        return ElementKind.BYTE
    if first is ElementKind.CHAR and second is ElementKind.CHAR:
        if prim in (Prim.MIN, Prim.MAX):
            return ElementKind.CHAR
        if prim is Prim.SUB:
            return ElementKind.NUMBER
        return None
    if prim is Prim.ADD:
        return ElementKind.CHAR
    if prim is Prim.SUB and second is ElementKind.CHAR:
        return ElementKind.CHAR
    return None


def broadcast_pair(first: Array, second: Array, fill: Fill) -> tuple[Array, Array, tuple[int, ...]]:
    """Align two operands so that one shape is a prefix of the other.

    Returns the (possibly fill-padded) operands and the result shape.
    """
    a, b = first.shape, second.shape
    common = min(len(a), len(b))
    if a[:common] == b[:common]:
        return first, second, a if len(a) >= len(b) else b

    first_fill = fill.for_kind(first.kind)
    second_fill = fill.for_kind(second.kind)
    if first_fill is None or second_fill is None:
        raise shape_error(f"Shapes {list(a)} and {list(b)} do not match", first, second)

    target = tuple(max(x, y) for x, y in zip(a[:common], b[:common]))
    first = pad_to_shape(first, target + a[common:], first_fill)
    second = pad_to_shape(second, target + b[common:], second_fill)
    shape = first.shape if first.rank >= second.rank else second.shape
    return first, second, shape


def _expand(data: jnp.ndarray, shape: tuple[int, ...], target: tuple[int, ...]) -> jnp.ndarray:
    if shape == target:
        return data
    expanded = data.reshape(shape + (1,) * (len(target) - len(shape)))
    return jnp.ravel(jnp.broadcast_to(expanded, target))


def expand_positions(shape: tuple[int, ...], target: tuple[int, ...]) -> list[int]:
    return _expand(jnp.arange(shape_size(shape), dtype=jnp.int64), shape, target).tolist()


def binary(prim: Prim, first: Array, second: Array, fill: Fill, parallel: Parallelism = SEQUENTIAL) -> Array:
    first, second, shape = broadcast_pair(first, second, fill)

    if first.kind is ElementKind.BOX or second.kind is ElementKind.BOX:
        return _binary_boxed(prim, first, second, shape, fill, parallel)

    kind = _result_kind(prim, first.kind, second.kind)
    if kind is None:
        raise type_error(
            f"Cannot {info(prim).name} {second.kind.value} and {first.kind.value}",
            second,
            first,
        )

    if first.kind is not second.kind and not (is_numeric(first.kind) and is_numeric(second.kind)) and prim in _COMPARISONS:
        # Numbers order below characters, so mixed comparisons only see the kind.
        w = jnp.full((first.size,), 0 if is_numeric(first.kind) else 1, dtype=jnp.int32)
        x = jnp.full((second.size,), 0 if is_numeric(second.kind) else 1, dtype=jnp.int32)
    else:
        w = first.data.astype(jnp.float64)
        x = second.data.astype(jnp.float64)

    w = _expand(w, first.shape, shape)
    x = _expand(x, second.shape, shape)

    if prim is Prim.MOD and w.shape[0] and bool(jnp.any(w == 0)):
        raise UiuaRuntimeError(
            RuntimeErrorKind.DIVISION_BY_ZERO,
            "Modulus by zero",
            shapes=(second.shape, first.shape),
            kinds=(second.kind.value, first.kind.value),
        )

    out = _run_sliced(binary_kernel(prim), (w, x), parallel)
    if kind is ElementKind.CHAR:
        valid = (out == jnp.floor(out)) & (out >= 0) & (out <= _MAX_CODE_POINT)
        if out.shape[0] and not bool(jnp.all(valid)):
            raise type_error(
                f"{info(prim).name} of {second.kind.value} and {first.kind.value} is not a valid character",
                second,
                first,
            )
        out = out.astype(jnp.int32)
    return Array(kind, shape, out)


def _binary_boxed(
    prim: Prim, first: Array, second: Array, shape: tuple[int, ...], fill: Fill, parallel: Parallelism
) -> Array:
    """Pervade through boxes element by element; the result stays boxed."""
    first_positions = expand_positions(first.shape, shape)
    second_positions = expand_positions(second.shape, shape)

    def cell(array: Array, position: int) -> Array:
        if array.kind is ElementKind.BOX:
            return array.data[position]
        return array.element(position)

    items = tuple(
        binary(prim, cell(first, i), cell(second, j), fill, parallel)
        for i, j in zip(first_positions, second_positions)
    )
    return Array(ElementKind.BOX, shape, items)
