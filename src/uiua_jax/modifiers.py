"""Modifier implementations.

Each modifier receives the VM and its operand functions. Operands run on the
VM's own stack through ``vm.call`` or ``vm.invoke``.
"""

from __future__ import annotations

import math
import os
from typing import TYPE_CHECKING, Callable, Final, Sequence

import jax
import jax.numpy as jnp
from jax import lax

from . import pervade
from .bytecode import CallPrimitive, Function
from .errors import shape_error, type_error
from .primitives import Prim
from .values import Array, ElementKind, Fill, from_rows, is_numeric

if TYPE_CHECKING:
    from .interpreter import VM

_USE_REDUCE_FAST_PATH: Final[bool] = os.environ.get("UIUA_JAX_DISABLE_REDUCE_FAST_PATH", "0") != "1"
_NO_FAST_PATH: Final = object()

_REDUCE_IDENTITIES: Final[dict[Prim, float]] = {
    Prim.ADD: 0.0,
    Prim.SUB: 0.0,
    Prim.MUL: 1.0,
    Prim.DIV: 1.0,
    Prim.MAX: -math.inf,
    Prim.MIN: math.inf,
}


def _fold_right(op: Callable) -> Callable:
    """Jitted right-to-left fold over the leading axis: ``r0 OP (r1 OP (... OP rn))``."""

    def kernel(x):
        acc, _ = lax.scan(lambda acc, row: (op(row, acc), None), x[-1], x[:-1], reverse=True)
        return acc

    return jax.jit(kernel)


def _running_left(op: Callable) -> Callable:
    """Jitted running fold from the left, keeping every intermediate row."""

    def step(acc, row):
        acc = op(acc, row)
        return acc, acc

    def kernel(x):
        _, tail = lax.scan(step, x[0], x[1:])
        return jnp.concatenate([x[:1], tail], axis=0)

    return jax.jit(kernel)


# Order-sensitive operators fold row by row in the same order as the general
# path so float results do not depend on which path runs.
_REDUCE_KERNELS: Final[dict[Prim, Callable]] = {
    Prim.ADD: _fold_right(jnp.add),
    Prim.SUB: _fold_right(jnp.subtract),
    Prim.MUL: _fold_right(jnp.multiply),
    Prim.DIV: _fold_right(jnp.divide),
    Prim.MAX: lambda x: jnp.max(x, axis=0),
    Prim.MIN: lambda x: jnp.min(x, axis=0),
}

_SCAN_KERNELS: Final[dict[Prim, Callable]] = {
    Prim.ADD: _running_left(jnp.add),
    Prim.SUB: _running_left(jnp.subtract),
    Prim.MUL: _running_left(jnp.multiply),
    Prim.DIV: _running_left(jnp.divide),
    Prim.MAX: lambda x: lax.cummax(x, axis=0),
    Prim.MIN: lambda x: lax.cummin(x, axis=0),
}


def operand_primitive(fn: Function) -> Prim | None:
    """The primitive an operand consists of, if it is a single primitive call."""
    instructions = fn.program.instructions
    if len(instructions) == 1 and isinstance(instructions[0], CallPrimitive):
        return instructions[0].prim
    return None


def _arity(fn: Function, default: int) -> int:
    return fn.signature.inputs if fn.signature is not None else default


def _single(outputs: Sequence, name: str):
    if len(outputs) != 1:
        raise type_error(f"The function given to {name} must return exactly one value, but it returned {len(outputs)}")
    return outputs[0]


def _identity_row(prim: Prim | None, array: Array, name: str) -> Array:
    identity = _REDUCE_IDENTITIES.get(prim) if prim is not None else None
    if identity is None:
        raise type_error(f"Cannot {name} an empty array without an identity value", array)
    return Array(ElementKind.NUMBER, array.row_shape, jnp.full((array.row_len,), identity, dtype=jnp.float64))


def _fast_reduce(prim: Prim | None, array: Array):
    if not _USE_REDUCE_FAST_PATH or prim not in _REDUCE_KERNELS or not is_numeric(array.kind):
        return _NO_FAST_PATH
    data = array.shaped().astype(jnp.float64)
    return Array.from_jax(_REDUCE_KERNELS[prim](data))


def reduce(vm: "VM", f: Function) -> None:
    """Fold the rows right to left: ``/- [1 2 3]`` is ``1 - (2 - 3)``."""
    array = vm.pop_array("reduce")
    prim = operand_primitive(f)
    if array.is_scalar:
        vm.push(array)
        return
    if array.shape[0] == 0:
        vm.push(_identity_row(prim, array, "reduce"))
        return
    if array.shape[0] == 1:
        vm.push(array.row(0))
        return

    fast = _fast_reduce(prim, array)
    if fast is not _NO_FAST_PATH:
        vm.push(fast)
        return

    rows = array.rows()
    acc = rows[-1]
    for row in reversed(rows[:-1]):
        acc = _single(vm.invoke(f, (acc, row)), "reduce")
    vm.push(acc)


def scan(vm: "VM", f: Function) -> None:
    """Running fold from the left, keeping every intermediate row."""
    array = vm.pop_array("scan")
    if array.is_scalar or array.shape[0] <= 1:
        vm.push(array)
        return

    prim = operand_primitive(f)
    if _USE_REDUCE_FAST_PATH and prim in _SCAN_KERNELS and is_numeric(array.kind):
        vm.push(Array.from_jax(_SCAN_KERNELS[prim](array.shaped().astype(jnp.float64))))
        return

    rows = array.rows()
    acc = rows[0]
    out = [acc]
    for row in rows[1:]:
        acc = _single(vm.invoke(f, (row, acc)), "scan")
        out.append(acc)
    vm.push(from_rows(out, vm.fill))


def fold(vm: "VM", f: Function) -> None:
    """Fold the rows of the top array into the accumulator beneath it, left to right."""
    array = vm.pop_array("fold")
    acc = vm.pop("fold")
    for row in array.rows():
        acc = _single(vm.invoke(f, (row, acc)), "fold")
    vm.push(acc)


def _collect(results: list[list], count: int, frame: tuple[int, ...], fill: Fill) -> list[Array]:
    """Assemble per-call outputs into arrays with ``frame`` as leading shape."""
    collected: list[Array] = []
    for j in range(count):
        cells = [outputs[j] for outputs in results]
        if any(isinstance(cell, Function) for cell in cells):
            raise type_error("Functions cannot be collected into an array")
        if not cells:
            collected.append(Array(ElementKind.NUMBER, frame, []))
            continue
        stacked = from_rows(cells, fill)
        collected.append(stacked.reshaped((*frame, *stacked.row_shape)))
    return collected


def _output_count(f: Function, results: list[list], name: str) -> int:
    if not results:
        return f.signature.outputs if f.signature is not None else 1
    counts = {len(outputs) for outputs in results}
    if len(counts) != 1:
        raise type_error(f"The function given to {name} returned a varying number of values")
    return counts.pop()


def each(vm: "VM", f: Function) -> None:
    """Apply ``f`` to every element, broadcasting arguments along leading axes."""
    args = [vm.pop_array("each") for _ in range(_arity(f, 1))]
    if all(arg.is_scalar for arg in args):
        for value in vm.invoke(f, args):
            vm.push(value)
        return

    shape = max((arg.shape for arg in args), key=len)
    for arg in args:
        if arg.shape != shape[: arg.rank]:
            raise shape_error(f"Cannot each over arrays of shapes {[list(a.shape) for a in args]}", *args)

    positions = [pervade.expand_positions(arg.shape, shape) for arg in args]
    size = len(positions[0])
    results = [vm.invoke(f, [arg.element(pos[i]) for arg, pos in zip(args, positions)]) for i in range(size)]
    for value in _collect(results, _output_count(f, results, "each"), shape, vm.fill):
        vm.push(value)


def rows(vm: "VM", f: Function) -> None:
    """Apply ``f`` to corresponding rows; scalar arguments are reused for every row."""
    args = [vm.pop_array("rows") for _ in range(_arity(f, 1))]
    counts = {arg.shape[0] for arg in args if not arg.is_scalar}
    if not counts:
        for value in vm.invoke(f, args):
            vm.push(value)
        return
    if len(counts) > 1:
        raise shape_error(f"Cannot iterate rows of arrays with lengths {sorted(counts)}", *args)

    count = counts.pop()
    split = [arg.rows() if not arg.is_scalar else None for arg in args]
    results = [
        vm.invoke(f, [arg if parts is None else parts[i] for arg, parts in zip(args, split)])
        for i in range(count)
    ]
    for value in _collect(results, _output_count(f, results, "rows"), (count,), vm.fill):
        vm.push(value)


def _fast_table(prim: Prim | None, a: Array, b: Array, vm: "VM") -> Array | object:
    if prim is None or not pervade.is_dyadic_pervasive(prim):
        return _NO_FAST_PATH
    if a.rank != 1 or b.rank != 1 or ElementKind.BOX in (a.kind, b.kind):
        return _NO_FAST_PATH
    shape = (a.shape[0], b.shape[0])
    a_grid = Array(a.kind, shape, jnp.ravel(jnp.broadcast_to(a.data[:, None], shape)))
    b_grid = Array(b.kind, shape, jnp.ravel(jnp.broadcast_to(b.data[None, :], shape)))
    return pervade.binary(prim, a_grid, b_grid, vm.fill, vm.parallel)


def table(vm: "VM", f: Function) -> None:
    """Outer product over rows: the result has shape ``(len a, len b, ...)``."""
    a = vm.pop_array("table")
    b = vm.pop_array("table")

    fast = _fast_table(operand_primitive(f), a, b, vm)
    if fast is not _NO_FAST_PATH:
        vm.push(fast)
        return

    a_rows = a.rows() if not a.is_scalar else [a]
    b_rows = b.rows() if not b.is_scalar else [b]
    grid = [[vm.invoke(f, (x, y)) for y in b_rows] for x in a_rows]
    flat = [outputs for line in grid for outputs in line]
    count = _output_count(f, flat, "table")
    for value in _collect(flat, count, (len(a_rows), len(b_rows)), vm.fill):
        vm.push(value)


def repeat(vm: "VM", f: Function) -> None:
    times = vm.pop_array("repeat").as_nat("Repetitions must be a natural number")
    for _ in range(times):
        vm.call(f)


def dip(vm: "VM", f: Function) -> None:
    kept = vm.pop("dip")
    vm.call(f)
    vm.push(kept)


def both(vm: "VM", f: Function) -> None:
    """Call ``f`` on the second group of arguments, then on the top group."""
    top = [vm.pop("both") for _ in range(_arity(f, 1))]
    vm.call(f)
    for value in reversed(top):
        vm.push(value)
    vm.call(f)


def fork(vm: "VM", f: Function, g: Function) -> None:
    """Call both functions on the same arguments; ``f``'s results end on top."""
    f_arity, g_arity = _arity(f, 1), _arity(g, 1)
    args = [vm.pop("fork") for _ in range(max(f_arity, g_arity))]
    for value in reversed(args[:g_arity]):
        vm.push(value)
    vm.call(g)
    for value in reversed(args[:f_arity]):
        vm.push(value)
    vm.call(f)


def bracket(vm: "VM", f: Function, g: Function) -> None:
    """Call ``f`` on the top arguments and ``g`` on the ones beneath them."""
    top = [vm.pop("bracket") for _ in range(_arity(f, 1))]
    vm.call(g)
    for value in reversed(top):
        vm.push(value)
    vm.call(f)


def fill(vm: "VM", value_fn: Function, body: Function) -> None:
    """Run ``body`` with the fill value produced by ``value_fn``."""
    vm.call(value_fn)
    value = vm.pop_array("fill")
    with vm.filling(Fill(value=value, enabled=True)):
        vm.call(body)


MODIFIERS: Final[dict[Prim, Callable]] = {
    Prim.REDUCE: reduce,
    Prim.FOLD: fold,
    Prim.SCAN: scan,
    Prim.EACH: each,
    Prim.ROWS: rows,
    Prim.TABLE: table,
    Prim.REPEAT: repeat,
    Prim.DIP: dip,
    Prim.BOTH: both,
    Prim.FORK: fork,
    Prim.BRACKET: bracket,
    Prim.FILL: fill,
}
