"""Primitive implementations and the jump table indexed by primitive id.

Implementations receive the VM followed by their arguments, top of stack
first, and return one value or a tuple of values in push order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Final

import jax
import jax.numpy as jnp

from . import modifiers, pervade, values
from .bytecode import Function
from .errors import index_error, shape_error, type_error
from .primitives import Prim, PrimInfo, all_primitives
from .values import Array, ElementKind, is_numeric

if TYPE_CHECKING:
    from .interpreter import VM


@dataclass(frozen=True)
class PrimitiveEntry:
    info: PrimInfo
    # None for `?`, which the compiler lowers to branches.
    impl: Callable | None


def _arrays(name: str, *args) -> None:
    for arg in args:
        if isinstance(arg, Function):
            raise type_error(f"{name} expects arrays, but got a function", arg)


# stack


def _dup(vm: "VM", a):
    return (a, a)


def _over(vm: "VM", a, b):
    return (b, a, b)


def _flip(vm: "VM", a, b):
    return (a, b)


def _pop(vm: "VM", a):
    return ()


def _identity(vm: "VM", a):
    return a


def _constant(value: float) -> Callable:
    array = Array.number(value)
    return lambda vm: array


# pervasive


def _monadic_pervasive(prim: Prim) -> Callable:
    def impl(vm: "VM", a):
        _arrays(prim.name.lower(), a)
        return pervade.unary(prim, a, vm.parallel)

    return impl


def _dyadic_pervasive(prim: Prim) -> Callable:
    def impl(vm: "VM", a, b):
        _arrays(prim.name.lower(), a, b)
        return pervade.binary(prim, a, b, vm.fill, vm.parallel)

    return impl


# monadic array


def _length(vm: "VM", a: Array) -> Array:
    return Array.number(a.row_count)


def _shape(vm: "VM", a: Array) -> Array:
    return Array.numbers(a.shape)


def _range(vm: "VM", a: Array) -> Array:
    n = a.as_nat("Range max must be a natural number")
    return Array(ElementKind.NUMBER, (n,), jnp.arange(n, dtype=jnp.float64))


def _first(vm: "VM", a: Array) -> Array:
    if a.is_scalar:
        return a
    if a.shape[0] == 0:
        fill = vm.fill.for_kind(a.kind)
        if fill is None:
            raise index_error("Cannot take the first row of an empty array", a)
        return values.gather(a, jnp.full(a.row_shape, -1, dtype=jnp.int64), fill)
    return a.row(0)


def _reverse(vm: "VM", a: Array) -> Array:
    return values.reverse(a)


def _deshape(vm: "VM", a: Array) -> Array:
    return a.deshaped()


def _transpose(vm: "VM", a: Array) -> Array:
    return values.transpose(a)


def grade(a: Array, *, descending: bool) -> list[int]:
    """Stable permutation sorting the rows of ``a``."""
    if a.is_scalar:
        raise shape_error("Cannot sort a scalar", a)
    if not descending and a.rank == 1 and a.kind is not ElementKind.BOX:
        return [int(i) for i in jnp.argsort(a.data, stable=True).tolist()]
    keys = [row.sort_key() for row in a.rows()]
    return sorted(range(len(keys)), key=keys.__getitem__, reverse=descending)


def _rise(vm: "VM", a: Array) -> Array:
    return Array.numbers(grade(a, descending=False))


def _fall(vm: "VM", a: Array) -> Array:
    return Array.numbers(grade(a, descending=True))


def _sort(vm: "VM", a: Array) -> Array:
    if a.is_scalar:
        return a
    return values.select(Array.numbers(grade(a, descending=False)), a, vm.fill)


def _where(vm: "VM", a: Array) -> Array:
    counts = a.deshaped().as_naturals("Argument to where must be an array of naturals")
    repeats = jnp.asarray(counts, dtype=jnp.int64)
    total = int(sum(counts))
    flat = jnp.repeat(jnp.arange(len(counts), dtype=jnp.int64), repeats, total_repeat_length=total)
    if a.rank <= 1:
        return Array(ElementKind.NUMBER, (total,), flat.astype(jnp.float64))
    coords = jnp.stack(jnp.unravel_index(flat, a.shape), axis=1)
    return Array.from_jax(coords.astype(jnp.float64))


def _classify(vm: "VM", a: Array) -> Array:
    if a.is_scalar:
        return Array.number(0)
    classes: dict[tuple, int] = {}
    out = [classes.setdefault(row.match_key(), len(classes)) for row in a.rows()]
    return Array.numbers(out)


def _deduplicate(vm: "VM", a: Array) -> Array:
    if a.is_scalar:
        return a
    seen: set[tuple] = set()
    keep: list[int] = []
    for i, row in enumerate(a.rows()):
        key = row.match_key()
        if key not in seen:
            seen.add(key)
            keep.append(i)
    return values.select(Array.numbers(keep), a, vm.fill)


def _box(vm: "VM", a: Array) -> Array:
    return Array.box(a)


def _unbox(vm: "VM", a: Array) -> Array:
    if a.kind is not ElementKind.BOX:
        raise type_error(f"Cannot unbox a {a.kind.value} array", a)
    if a.is_scalar:
        return a.data[0]
    inner = values.from_rows(list(a.data), vm.fill)
    return inner.reshaped((*a.shape, *inner.row_shape))


# dyadic array


def _match(vm: "VM", a: Array, b: Array) -> Array:
    return Array.byte(values.match(a, b))


def _couple(vm: "VM", a: Array, b: Array) -> Array:
    return values.from_rows([a, b], vm.fill)


def _join(vm: "VM", a: Array, b: Array) -> Array:
    return values.join(a, b, vm.fill)


def _select(vm: "VM", a: Array, b: Array) -> Array:
    return values.select(a, b, vm.fill)


def _pick(vm: "VM", a: Array, b: Array) -> Array:
    if a.rank <= 1:
        return values.pick(a.as_integers("Pick index must be a list of integers"), b, vm.fill)
    picked = [_pick(vm, row, b) for row in a.rows()]
    return values.from_rows(picked, vm.fill)


def _reshape(vm: "VM", a: Array, b: Array) -> Array:
    return values.reshape(b, a.as_naturals("Shape must be a list of natural numbers"), vm.fill)


def _take(vm: "VM", a: Array, b: Array) -> Array:
    counts = a.as_integers("Take amount must be an integer or list of integers")
    for axis, count in enumerate(counts):
        b = values.take(count, b, vm.fill, axis)
    return b


def _drop(vm: "VM", a: Array, b: Array) -> Array:
    counts = a.as_integers("Drop amount must be an integer or list of integers")
    for axis, count in enumerate(counts):
        b = values.drop(count, b, axis)
    return b


def _rotate(vm: "VM", a: Array, b: Array) -> Array:
    if b.is_scalar:
        return b
    return values.rotate(a.as_integers("Rotation amount must be an integer or list of integers"), b)


def _keep(vm: "VM", a: Array, b: Array) -> Array:
    return values.keep(a.as_naturals("Keep counts must be natural numbers"), b)


def _cells(needle: Array, haystack: Array) -> tuple[list[Array], tuple[int, ...]]:
    """Split ``needle`` into cells comparable with the rows of ``haystack``."""
    row_rank = max(haystack.rank - 1, 0)
    if needle.rank < row_rank:
        raise shape_error(f"Cannot look for a rank {needle.rank} array among rows of rank {row_rank}", needle, haystack)
    if needle.rank == row_rank:
        return [needle], ()
    frame = needle.shape[: needle.rank - row_rank]
    flat = needle.reshaped((values.shape_size(frame), *needle.shape[len(frame) :]))
    return flat.rows(), frame


def _row_positions(haystack: Array) -> dict[tuple, int]:
    positions: dict[tuple, int] = {}
    rows = haystack.rows() if not haystack.is_scalar else [haystack]
    for i, row in enumerate(rows):
        positions.setdefault(row.match_key(), i)
    return positions


def _index_of(vm: "VM", a: Array, b: Array) -> Array:
    cells, frame = _cells(a, b)
    positions = _row_positions(b)
    missing = b.row_count
    found = [positions.get(cell.match_key(), missing) for cell in cells]
    return Array(ElementKind.NUMBER, frame, [float(i) for i in found])


def _member(vm: "VM", a: Array, b: Array) -> Array:
    cells, frame = _cells(a, b)
    positions = _row_positions(b)
    return Array(ElementKind.BYTE, frame, [int(cell.match_key() in positions) for cell in cells])


def _find(vm: "VM", a: Array, b: Array) -> Array:
    """Mark every row of ``b`` where a run matching ``a`` starts."""
    if b.is_scalar:
        return Array.byte(values.match(a, b))
    pattern = a if a.rank == b.rank else a.reshaped((1, *a.shape))
    if pattern.rank != b.rank or pattern.row_shape != b.row_shape:
        return Array(ElementKind.BYTE, (b.shape[0],), jnp.zeros((b.shape[0],), dtype=jnp.uint8))
    length, width = b.shape[0], pattern.shape[0]
    starts = max(length - width + 1, 0)
    marks = jnp.zeros((length,), dtype=jnp.uint8)
    if starts == 0:
        return Array(ElementKind.BYTE, (length,), marks)

    if ElementKind.BOX not in (a.kind, b.kind) and is_numeric(a.kind) == is_numeric(b.kind):
        windows = jnp.arange(starts)[:, None] + jnp.arange(width)[None, :]
        haystack = b.shaped().astype(jnp.float64)[windows]
        needle = pattern.shaped().astype(jnp.float64)[None, ...]
        hits = jnp.all((haystack == needle).reshape(starts, -1), axis=1)
        return Array(ElementKind.BYTE, (length,), marks.at[:starts].set(hits.astype(jnp.uint8)))

    rows = b.rows()
    key = pattern.match_key()
    hits = [
        int(values.from_rows(rows[i : i + width], values.NO_FILL).match_key() == key) for i in range(starts)
    ]
    return Array(ElementKind.BYTE, (length,), marks.at[:starts].set(jnp.asarray(hits, dtype=jnp.uint8)))


# misc


def _random(vm: "VM") -> Array:
    key = vm.context.next_key()
    return Array(ElementKind.NUMBER, (), jax.random.uniform(key, (1,), dtype=jnp.float64))


def _call(vm: "VM", a):
    if isinstance(a, Function):
        vm.call(a)
        return ()
    return a


def _array_impl(name: str, impl: Callable) -> Callable:
    def checked(vm: "VM", *args):
        _arrays(name, *args)
        return impl(vm, *args)

    checked.__name__ = impl.__name__
    return checked


_IMPLS: Final[dict[Prim, Callable]] = {
    Prim.DUP: _dup,
    Prim.OVER: _over,
    Prim.FLIP: _flip,
    Prim.POP: _pop,
    Prim.IDENTITY: _identity,
    Prim.PI: _constant(math.pi),
    Prim.TAU: _constant(math.tau),
    Prim.ETA: _constant(math.pi / 2),
    Prim.INFINITY: _constant(math.inf),
    Prim.LEN: _length,
    Prim.SHAPE: _shape,
    Prim.RANGE: _range,
    Prim.FIRST: _first,
    Prim.REVERSE: _reverse,
    Prim.DESHAPE: _deshape,
    Prim.TRANSPOSE: _transpose,
    Prim.RISE: _rise,
    Prim.FALL: _fall,
    Prim.SORT: _sort,
    Prim.WHERE: _where,
    Prim.CLASSIFY: _classify,
    Prim.DEDUP: _deduplicate,
    Prim.BOX: _box,
    Prim.UNBOX: _unbox,
    Prim.MATCH: _match,
    Prim.COUPLE: _couple,
    Prim.JOIN: _join,
    Prim.SELECT: _select,
    Prim.PICK: _pick,
    Prim.RESHAPE: _reshape,
    Prim.TAKE: _take,
    Prim.DROP: _drop,
    Prim.ROTATE: _rotate,
    Prim.KEEP: _keep,
    Prim.INDEX_OF: _index_of,
    Prim.MEMBER: _member,
    Prim.FIND: _find,
    Prim.RANDOM: _random,
    Prim.CALL: _call,
}

_STACK_PRIMS: Final[frozenset[Prim]] = frozenset({Prim.DUP, Prim.OVER, Prim.FLIP, Prim.POP, Prim.IDENTITY, Prim.CALL})


def _build_table() -> tuple[PrimitiveEntry, ...]:
    entries: list[PrimitiveEntry] = []
    for prim_info in all_primitives():
        prim = prim_info.prim
        if prim_info.is_modifier:
            impl = modifiers.MODIFIERS.get(prim)
        elif pervade.is_monadic_pervasive(prim):
            impl = _monadic_pervasive(prim)
        elif pervade.is_dyadic_pervasive(prim):
            impl = _dyadic_pervasive(prim)
        elif prim in _STACK_PRIMS:
            impl = _IMPLS[prim]
        else:
            impl = _array_impl(prim_info.name, _IMPLS[prim])
        entries.append(PrimitiveEntry(prim_info, impl))
    return tuple(entries)


JUMP_TABLE: Final[tuple[PrimitiveEntry, ...]] = _build_table()
