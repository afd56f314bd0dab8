"""Runtime array value model: kinds, shapes, fills and structural algorithms.

Every array stores one homogeneous kind in a flat row-major buffer. Numeric,
byte and character buffers are one-dimensional JAX arrays; box buffers are
tuples of arrays. Buffers are never mutated in place, so values can share
them freely and element updates copy on write.

Structural operations (reverse, rotate, take, select, ...) are written once
against an index map: the operation is applied to ``arange(size)`` shaped like
the source, producing flat source indices (``-1`` marking fill positions), and
the result is gathered from the source buffer. This keeps boxed and unboxed
arrays on the same code path.
"""

from __future__ import annotations

import itertools
import math
import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import jax
import jax.numpy as jnp

from .errors import RuntimeErrorKind, UiuaRuntimeError, index_error, shape_error, type_error

jax.config.update("jax_enable_x64", True)


class ElementKind(str, Enum):
    BYTE = "byte"
    NUMBER = "number"
    CHAR = "char"
    BOX = "box"


_DTYPES = {
    ElementKind.BYTE: jnp.uint8,
    ElementKind.NUMBER: jnp.float64,
    ElementKind.CHAR: jnp.int32,
}

# Numbers sort below characters, characters below boxes.
_KIND_ORDER = {
    ElementKind.BYTE: 0,
    ElementKind.NUMBER: 0,
    ElementKind.CHAR: 1,
    ElementKind.BOX: 2,
}


def shape_size(shape: Sequence[int]) -> int:
    size = 1
    for dim in shape:
        size *= int(dim)
    return size


def is_numeric(kind: ElementKind) -> bool:
    return kind in (ElementKind.BYTE, ElementKind.NUMBER)


@dataclass(frozen=True)
class ExternalArray:
    """Storage-independent view used by I/O collaborators."""

    kind: str
    shape: tuple[int, ...]
    elements: tuple[object, ...]


class Array:
    __slots__ = ("kind", "shape", "data")

    def __init__(self, kind: ElementKind, shape: Iterable[int], data) -> None:
        shape = tuple(int(d) for d in shape)
        if any(d < 0 for d in shape):
            raise ValueError(f"Negative dimension in shape {list(shape)}")
        size = shape_size(shape)
        if kind is ElementKind.BOX:
            data = tuple(data)
            if any(not isinstance(item, Array) for item in data):
                raise TypeError("Box buffers may only hold Array values")
            length = len(data)
        else:
            dtype = _DTYPES[kind]
            if not (isinstance(data, jax.Array) and data.ndim == 1 and data.dtype == dtype):
                data = jnp.ravel(jnp.asarray(data, dtype=dtype))
            length = int(data.shape[0])
        if length != size:
            raise ValueError(f"Buffer of {length} elements does not fit shape {list(shape)}")
        self.kind = kind
        self.shape = shape
        self.data = data

    # construction

    @classmethod
    def number(cls, value) -> "Array":
        return cls(ElementKind.NUMBER, (), [float(value)])

    @classmethod
    def byte(cls, value) -> "Array":
        return cls(ElementKind.BYTE, (), [int(value)])

    @classmethod
    def char(cls, value: str) -> "Array":
        return cls(ElementKind.CHAR, (), [ord(value)])

    @classmethod
    def numbers(cls, values: Sequence[float], shape: Sequence[int] | None = None) -> "Array":
        values = [float(v) for v in values]
        return cls(ElementKind.NUMBER, (len(values),) if shape is None else shape, values)

    @classmethod
    def string(cls, text: str) -> "Array":
        return cls(ElementKind.CHAR, (len(text),), [ord(ch) for ch in text])

    @classmethod
    def box(cls, inner: "Array") -> "Array":
        return cls(ElementKind.BOX, (), (inner,))

    @classmethod
    def boxes(cls, items: Sequence["Array"], shape: Sequence[int] | None = None) -> "Array":
        return cls(ElementKind.BOX, (len(items),) if shape is None else shape, tuple(items))

    @classmethod
    def empty(cls, kind: ElementKind = ElementKind.NUMBER, row_shape: Sequence[int] = ()) -> "Array":
        data = () if kind is ElementKind.BOX else jnp.zeros((0,), dtype=_DTYPES[kind])
        return cls(kind, (0, *row_shape), data)

    @classmethod
    def from_jax(cls, arr, kind: ElementKind = ElementKind.NUMBER) -> "Array":
        arr = jnp.asarray(arr)
        return cls(kind, arr.shape, jnp.ravel(arr).astype(_DTYPES[kind]))

    @classmethod
    def from_python(cls, value) -> "Array":
        """Build an array from Python scalars, strings and nested lists."""
        if isinstance(value, Array):
            return value
        if isinstance(value, str):
            if len(value) == 1:
                return cls.char(value)
            return cls.string(value)
        if isinstance(value, bool):
            return cls.byte(int(value))
        if isinstance(value, numbers.Real):
            return cls.number(value)
        if isinstance(value, (list, tuple)):
            rows = [cls.from_python(item) for item in value]
            if not rows:
                return cls.empty()
            return from_rows(rows, NO_FILL)
        raise TypeError(f"Cannot convert {type(value).__name__} to an array")

    @classmethod
    def from_external(cls, external: ExternalArray) -> "Array":
        kind = ElementKind(external.kind)
        if kind is ElementKind.BOX:
            items = tuple(item if isinstance(item, Array) else cls.from_external(item) for item in external.elements)
            return cls(kind, external.shape, items)
        if kind is ElementKind.CHAR:
            return cls(kind, external.shape, [ord(ch) if isinstance(ch, str) else int(ch) for ch in external.elements])
        return cls(kind, external.shape, list(external.elements))

    # inspection

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return shape_size(self.shape)

    @property
    def row_count(self) -> int:
        return self.shape[0] if self.shape else 1

    @property
    def row_shape(self) -> tuple[int, ...]:
        return self.shape[1:]

    @property
    def row_len(self) -> int:
        return shape_size(self.shape[1:])

    @property
    def is_scalar(self) -> bool:
        return not self.shape

    def shaped(self):
        """The buffer viewed with this array's shape (not available for boxes)."""
        if self.kind is ElementKind.BOX:
            raise type_error("Boxed arrays have no dense view", self)
        return self.data.reshape(self.shape)

    def python_elements(self) -> list:
        if self.kind is ElementKind.BOX:
            return list(self.data)
        values = self.data.tolist()
        if self.kind is ElementKind.CHAR:
            return [chr(v) for v in values]
        if self.kind is ElementKind.BYTE:
            return [int(v) for v in values]
        return [float(v) for v in values]

    def to_external(self) -> ExternalArray:
        elements = self.python_elements()
        if self.kind is ElementKind.BOX:
            elements = [item.to_external() for item in elements]
        return ExternalArray(kind=self.kind.value, shape=self.shape, elements=tuple(elements))

    def to_python(self):
        elements = self.python_elements()
        if self.kind is ElementKind.BOX:
            elements = [item.to_python() for item in elements]
        if self.kind is ElementKind.CHAR and self.rank == 1:
            return "".join(elements)
        if not self.shape:
            return elements[0]

        def nest(flat: list, shape: tuple[int, ...]):
            if len(shape) == 1:
                return flat
            step = shape_size(shape[1:])
            return [nest(flat[i * step : (i + 1) * step], shape[1:]) for i in range(shape[0])]

        if self.kind is ElementKind.CHAR and self.rank > 1:
            step = self.shape[-1]
            strings = ["".join(elements[i * step : (i + 1) * step]) for i in range(shape_size(self.shape[:-1]))]
            if self.rank == 2:
                return strings
            return nest(strings, self.shape[:-1])
        return nest(elements, self.shape)

    # rows and elements

    def row(self, index: int) -> "Array":
        if not self.shape:
            return self
        step = self.row_len
        return Array(self.kind, self.row_shape, self.data[index * step : (index + 1) * step])

    def rows(self) -> list["Array"]:
        if not self.shape:
            return [self]
        step = self.row_len
        row_shape = self.row_shape
        return [Array(self.kind, row_shape, self.data[i * step : (i + 1) * step]) for i in range(self.shape[0])]

    def element(self, index: int) -> "Array":
        return Array(self.kind, (), self.data[index : index + 1])

    def elements(self) -> list["Array"]:
        return [self.element(i) for i in range(self.size)]

    def unboxed(self) -> "Array":
        if self.kind is not ElementKind.BOX or self.shape:
            raise type_error("Expected a boxed scalar", self)
        return self.data[0]

    # shape-only transforms share the buffer

    def reshaped(self, shape: Sequence[int]) -> "Array":
        shape = tuple(int(d) for d in shape)
        if shape == self.shape:
            return self
        if shape_size(shape) != self.size:
            raise shape_error(f"Cannot view {self.size} elements as shape {list(shape)}", self)
        return Array(self.kind, shape, self.data)

    def deshaped(self) -> "Array":
        return self.reshaped((self.size,))

    def converted(self, kind: ElementKind) -> "Array":
        if kind is self.kind:
            return self
        if is_numeric(kind) and is_numeric(self.kind):
            return Array(kind, self.shape, self.data.astype(_DTYPES[kind]))
        raise type_error(f"Cannot convert {self.kind.value} array to {kind.value}", self)

    def with_flat_update(self, index: int, value: "Array") -> "Array":
        """Return a copy with one element replaced; other holders of the buffer are unaffected."""
        if not value.is_scalar:
            raise shape_error("Element update requires a scalar", value)
        if not 0 <= index < self.size:
            raise index_error(f"Index {index} is out of bounds for {self.size} elements", self)
        kind = unify_kinds((self.kind, value.kind))
        base = self.converted(kind)
        item = value.converted(kind)
        if kind is ElementKind.BOX:
            data = base.data[:index] + item.data + base.data[index + 1 :]
        else:
            data = base.data.at[index].set(item.data[0])
        return Array(kind, self.shape, data)

    # scalar extraction

    def _require_numeric(self, requirement: str) -> None:
        if not is_numeric(self.kind):
            raise type_error(f"{requirement}, but it is {self.kind.value}", self)

    def as_num(self, requirement: str) -> float:
        self._require_numeric(requirement)
        if self.shape:
            raise shape_error(f"{requirement}, but its rank is {self.rank}", self)
        return float(self.data[0])

    def as_int(self, requirement: str) -> int:
        num = self.as_num(requirement)
        if not math.isfinite(num) or not num.is_integer():
            raise type_error(f"{requirement}, but it has a fractional part", self)
        return int(num)

    def as_nat(self, requirement: str) -> int:
        value = self.as_int(requirement)
        if value < 0:
            raise type_error(f"{requirement}, but it is negative", self)
        return value

    def as_integers(self, requirement: str) -> list[int]:
        self._require_numeric(requirement)
        if self.rank > 1:
            raise shape_error(f"{requirement}, but its rank is {self.rank}", self)
        out: list[int] = []
        for num in self.data.tolist():
            num = float(num)
            if not math.isfinite(num) or not num.is_integer():
                raise type_error(f"{requirement}, but it has a fractional part", self)
            out.append(int(num))
        return out

    def as_naturals(self, requirement: str) -> list[int]:
        values = self.as_integers(requirement)
        if any(v < 0 for v in values):
            raise type_error(f"{requirement}, but it contains negative values", self)
        return values

    def as_string(self, requirement: str) -> str:
        if self.kind is not ElementKind.CHAR or self.rank > 1:
            raise type_error(f"{requirement}, but it is not a string", self)
        return "".join(self.python_elements())

    # comparison

    def match_key(self) -> tuple:
        """Hashable key; equal keys mean the arrays match."""
        if self.kind is ElementKind.BOX:
            elements = tuple(item.match_key() for item in self.data)
        elif self.kind is ElementKind.CHAR:
            elements = tuple(self.data.tolist())
        else:
            elements = tuple("nan" if v != v else float(v) for v in self.data.tolist())
        return (_KIND_ORDER[self.kind], self.shape, elements)

    def sort_key(self) -> tuple:
        if self.kind is ElementKind.BOX:
            elements = tuple(item.sort_key() for item in self.data)
        elif self.kind is ElementKind.CHAR:
            elements = tuple((0, v) for v in self.data.tolist())
        else:
            elements = tuple((1, 0.0) if v != v else (0, float(v)) for v in self.data.tolist())
        return (_KIND_ORDER[self.kind], elements, self.shape)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Array):
            return NotImplemented
        return self.match_key() == other.match_key()

    def __hash__(self) -> int:
        return hash(self.match_key())

    def __repr__(self) -> str:
        return f"Array({self.kind.value}, {list(self.shape)}, {self.python_elements()!r})"


def unify_kinds(kinds: Iterable[ElementKind]) -> ElementKind:
    kinds = set(kinds)
    if len(kinds) == 1:
        return kinds.pop()
    if kinds <= {ElementKind.BYTE, ElementKind.NUMBER}:
        return ElementKind.NUMBER
    names = ", ".join(sorted(kind.value for kind in kinds))
    raise UiuaRuntimeError(RuntimeErrorKind.TYPE_MISMATCH, f"Cannot combine {names} arrays", kinds=tuple(sorted(k.value for k in kinds)))


@dataclass(frozen=True)
class Fill:
    """Fill state for one dynamic extent of execution.

    ``enabled`` without a value uses the per-kind defaults; an explicit value
    only applies to arrays of a compatible kind.
    """

    value: Array | None = None
    enabled: bool = False

    def for_kind(self, kind: ElementKind) -> Array | None:
        if not self.enabled:
            return None
        if self.value is None:
            return _DEFAULT_FILLS[kind]
        if is_numeric(kind) and is_numeric(self.value.kind):
            return self.value
        if kind is self.value.kind:
            return self.value
        return None


_DEFAULT_FILLS = {
    ElementKind.NUMBER: Array(ElementKind.NUMBER, (), [0.0]),
    ElementKind.BYTE: Array(ElementKind.BYTE, (), [0]),
    ElementKind.CHAR: Array(ElementKind.CHAR, (), [0]),
    ElementKind.BOX: Array(ElementKind.BOX, (), (Array(ElementKind.NUMBER, (0,), []),)),
}

NO_FILL = Fill()
DEFAULT_FILL = Fill(enabled=True)


def _index_map(shape: Sequence[int]):
    return jnp.arange(shape_size(shape), dtype=jnp.int64).reshape(tuple(shape))


def gather(source: Array, index_map, fill: Array | None = None) -> Array:
    """Build an array shaped like ``index_map`` from flat source positions.

    Negative positions take ``fill``; a fill array is tiled across trailing axes.
    """
    index_map = jnp.asarray(index_map)
    shape = tuple(int(d) for d in index_map.shape)
    flat = jnp.ravel(index_map)
    needs_fill = bool(jnp.any(flat < 0)) if flat.shape[0] else False
    if needs_fill and fill is None:
        raise index_error("Index out of bounds and no fill value is set", source)

    kind = source.kind
    if needs_fill:
        kind = unify_kinds((source.kind, fill.kind))
    base = source.converted(kind)

    if kind is ElementKind.BOX:
        positions = flat.tolist()
        fill_items = fill.data if needs_fill else ()
        items = tuple(
            base.data[p] if p >= 0 else fill_items[i % len(fill_items)]
            for i, p in enumerate(positions)
        )
        return Array(kind, shape, items)

    if base.size == 0:
        if not needs_fill:
            return Array(kind, shape, jnp.zeros((flat.shape[0],), dtype=_DTYPES[kind]))
        data = jnp.resize(fill.converted(kind).data, flat.shape[0])
        return Array(kind, shape, data)

    picked = base.data[jnp.maximum(flat, 0)]
    if needs_fill:
        fill_flat = jnp.resize(fill.converted(kind).data, flat.shape[0])
        picked = jnp.where(flat >= 0, picked, fill_flat)
    return Array(kind, shape, picked)


def restructure(source: Array, transform, fill: Array | None = None) -> Array:
    return gather(source, transform(_index_map(source.shape)), fill)


def pad_to_shape(source: Array, shape: Sequence[int], fill: Array) -> Array:
    """Pad every axis at its end up to ``shape`` with ``fill``."""
    shape = tuple(shape)
    if shape == source.shape:
        return source
    widths = [(0, int(t) - int(s)) for s, t in zip(source.shape, shape, strict=True)]
    index_map = jnp.pad(_index_map(source.shape), widths, constant_values=-1)
    return gather(source, index_map, fill)


def _raise_rank(array: Array, rank: int) -> Array:
    if array.rank >= rank:
        return array
    return array.reshaped((1,) * (rank - array.rank) + array.shape)


def _concat_flat(kind: ElementKind, parts: Sequence[Array]):
    if kind is ElementKind.BOX:
        return tuple(itertools.chain.from_iterable(part.data for part in parts))
    converted = [part.converted(kind).data for part in parts]
    if not converted:
        return jnp.zeros((0,), dtype=_DTYPES[kind])
    return jnp.concatenate(converted)


def _fit_rows(rows: Sequence[Array], fill: Fill) -> tuple[list[Array], tuple[int, ...]]:
    """Make all rows share one shape, padding with fill when allowed."""
    first = rows[0].shape
    if all(row.shape == first for row in rows):
        return list(rows), first

    kind = unify_kinds(row.kind for row in rows)
    fill_scalar = fill.for_kind(kind)
    if fill_scalar is None:
        shapes = ", ".join(str(list(row.shape)) for row in rows[:4])
        raise shape_error(f"Cannot combine rows of shapes {shapes}", *rows[:4])

    rank = max(row.rank for row in rows)
    raised = [_raise_rank(row, rank) for row in rows]
    target = tuple(max(row.shape[axis] for row in raised) for axis in range(rank))
    return [pad_to_shape(row, target, fill_scalar) for row in raised], target


def from_rows(rows: Sequence[Array], fill: Fill) -> Array:
    """Stack arrays as the rows of a new array one rank higher."""
    if not rows:
        return Array.empty()
    fitted, row_shape = _fit_rows(rows, fill)
    kind = unify_kinds(row.kind for row in fitted)
    return Array(kind, (len(fitted), *row_shape), _concat_flat(kind, fitted))


def join(first: Array, second: Array, fill: Fill) -> Array:
    """``first`` followed by ``second`` along the leading axis."""
    if first.is_scalar and second.is_scalar:
        return from_rows([first, second], fill)

    if first.rank == second.rank:
        first_rows, second_rows = first, second
    elif first.rank + 1 == second.rank:
        first_rows, second_rows = first.reshaped((1, *first.shape)), second
    elif first.rank == second.rank + 1:
        first_rows, second_rows = first, second.reshaped((1, *second.shape))
    elif fill.enabled:
        rank = max(first.rank, second.rank)
        first_rows, second_rows = _raise_rank(first, rank), _raise_rank(second, rank)
    else:
        raise shape_error(f"Cannot join arrays of rank {first.rank} and {second.rank}", first, second)

    kind = unify_kinds((first.kind, second.kind))
    if first_rows.row_shape != second_rows.row_shape:
        fill_scalar = fill.for_kind(kind)
        if fill_scalar is None:
            raise shape_error(
                f"Cannot join rows of shape {list(first_rows.row_shape)} and {list(second_rows.row_shape)}",
                first,
                second,
            )
        target = tuple(max(a, b) for a, b in zip(first_rows.row_shape, second_rows.row_shape, strict=True))
        first_rows = pad_to_shape(first_rows, (first_rows.shape[0], *target), fill_scalar)
        second_rows = pad_to_shape(second_rows, (second_rows.shape[0], *target), fill_scalar)
        kind = unify_kinds((first_rows.kind, second_rows.kind))

    count = first_rows.shape[0] + second_rows.shape[0]
    return Array(kind, (count, *first_rows.row_shape), _concat_flat(kind, [first_rows, second_rows]))


def reshape(source: Array, shape: Sequence[int], fill: Fill) -> Array:
    """Reshape, cycling the source elements to grow and truncating to shrink.

    With fill enabled, growth pads with the fill value instead of cycling.
    """
    shape = tuple(int(d) for d in shape)
    target = shape_size(shape)
    if target == source.size:
        return source.reshaped(shape)

    fill_scalar = fill.for_kind(source.kind)
    if target > source.size and fill_scalar is not None:
        positions = jnp.arange(target, dtype=jnp.int64)
        positions = jnp.where(positions < source.size, positions, -1)
        return gather(source, positions.reshape(shape), fill_scalar)

    if source.size == 0:
        raise shape_error(f"Cannot reshape an empty array to shape {list(shape)}", source)
    if source.kind is ElementKind.BOX:
        repeats = -(-target // source.size)
        return Array(source.kind, shape, (source.data * repeats)[:target])
    return Array(source.kind, shape, jnp.resize(source.data, target))


def take(count: int, source: Array, fill: Fill, axis: int = 0) -> Array:
    """First ``count`` rows (last ``-count`` when negative) along ``axis``."""
    source = _raise_rank(source, axis + 1)
    length = source.shape[axis]
    wanted = abs(count)
    fill_scalar = None
    if wanted > length:
        fill_scalar = fill.for_kind(source.kind)
        if fill_scalar is None:
            raise index_error(f"Cannot take {count} rows from an array with {length} rows", source)

    def transform(index_map):
        if count >= 0:
            kept = jax.lax.slice_in_dim(index_map, 0, min(wanted, length), axis=axis)
            pad = (0, wanted - kept.shape[axis])
        else:
            kept = jax.lax.slice_in_dim(index_map, max(length - wanted, 0), length, axis=axis)
            pad = (wanted - kept.shape[axis], 0)
        widths = [(0, 0)] * index_map.ndim
        widths[axis] = pad
        return jnp.pad(kept, widths, constant_values=-1)

    return restructure(source, transform, fill_scalar)


def drop(count: int, source: Array, axis: int = 0) -> Array:
    source = _raise_rank(source, axis + 1)
    length = source.shape[axis]
    wanted = min(abs(count), length)

    def transform(index_map):
        if count >= 0:
            return jax.lax.slice_in_dim(index_map, wanted, length, axis=axis)
        return jax.lax.slice_in_dim(index_map, 0, length - wanted, axis=axis)

    return restructure(source, transform)


def reverse(source: Array) -> Array:
    if source.is_scalar:
        return source
    return restructure(source, lambda index_map: jnp.flip(index_map, axis=0))


def rotate(amounts: Sequence[int], source: Array) -> Array:
    if len(amounts) > source.rank:
        raise shape_error(f"Cannot rotate rank {source.rank} array along {len(amounts)} axes", source)

    def transform(index_map):
        for axis, amount in enumerate(amounts):
            length = index_map.shape[axis]
            if length:
                index_map = jnp.roll(index_map, -(amount % length), axis=axis)
        return index_map

    return restructure(source, transform)


def transpose(source: Array) -> Array:
    if source.rank < 2:
        return source
    return restructure(source, lambda index_map: jnp.moveaxis(index_map, 0, -1))


def select(indices: Array, source: Array, fill: Fill) -> Array:
    """Rows of ``source`` at ``indices``; the result has shape ``indices.shape + row_shape``."""
    positions = indices.as_integers("Indices must be a list of integers") if indices.rank <= 1 else None
    if positions is None:
        rows = [select(row, source, fill) for row in indices.rows()]
        return from_rows(rows, fill)

    source = _raise_rank(source, 1)
    length = source.shape[0]
    normalized: list[int] = []
    out_of_bounds = False
    for index in positions:
        if -length <= index < length:
            normalized.append(index % length)
        else:
            normalized.append(-1)
            out_of_bounds = True
    fill_scalar = None
    if out_of_bounds:
        fill_scalar = fill.for_kind(source.kind)
        if fill_scalar is None:
            raise index_error(f"Index out of bounds for an array with {length} rows", indices, source)

    step = source.row_len
    row_offsets = jnp.arange(step, dtype=jnp.int64)
    starts = jnp.asarray(normalized, dtype=jnp.int64)
    index_map = jnp.where(starts[:, None] >= 0, starts[:, None] * step + row_offsets[None, :], -1)
    out_shape = (*indices.shape, *source.row_shape)
    return gather(source, index_map.reshape(out_shape), fill_scalar)


def pick(index: Sequence[int], source: Array, fill: Fill) -> Array:
    """The cell of ``source`` at a multi-dimensional index."""
    if len(index) > source.rank:
        raise index_error(f"Cannot pick a rank {len(index)} index from a rank {source.rank} array", source)
    offset = 0
    for axis, i in enumerate(index):
        length = source.shape[axis]
        if not -length <= i < length:
            fill_scalar = fill.for_kind(source.kind)
            if fill_scalar is None:
                raise index_error(f"Index {list(index)} is out of bounds for shape {list(source.shape)}", source)
            cell_shape = source.shape[len(index) :]
            return gather(source, jnp.full(cell_shape, -1, dtype=jnp.int64), fill_scalar)
        offset = offset * length + (i % length)
    cell_shape = source.shape[len(index) :]
    step = shape_size(cell_shape)
    return Array(source.kind, cell_shape, source.data[offset * step : (offset + 1) * step])


def keep(counts: Sequence[int], source: Array) -> Array:
    source = _raise_rank(source, 1)
    if len(counts) == 1 and source.shape[0] != 1:
        counts = list(counts) * source.shape[0]
    if len(counts) != source.shape[0]:
        raise shape_error(f"Cannot keep {len(counts)} counts against {source.shape[0]} rows", source)
    repeats = jnp.asarray(counts, dtype=jnp.int64)
    total = int(sum(counts))
    return restructure(source, lambda index_map: jnp.repeat(index_map, repeats, axis=0, total_repeat_length=total))


def match(first: Array, second: Array) -> bool:
    return first.match_key() == second.match_key()
