"""Structured error types for the lex/parse/compile/run stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UiuaError(Exception):
    """Base class for structured uiua-jax errors."""

    start: int | None = None
    end: int | None = None

    @property
    def span(self) -> tuple[int, int] | None:
        if self.start is None or self.end is None:
            return None
        return (self.start, self.end)


def _span_text(start: int | None, end: int | None) -> str:
    if start is None or end is None:
        return ""
    return f" at span [{start}, {end})"


@dataclass(eq=False)
class LexError(UiuaError):
    """Malformed token."""

    reason: str
    start: int
    end: int

    def __str__(self) -> str:
        return f"{self.reason}{_span_text(self.start, self.end)}"


@dataclass(eq=False)
class ParseError(UiuaError):
    """Grammar violation, with the token kinds that would have been accepted."""

    message: str
    start: int
    end: int
    expected: tuple[str, ...] = ()
    found: str | None = None

    def __str__(self) -> str:
        expected = ""
        if self.expected:
            expected = f"; expected {', '.join(self.expected)}"
        found = ""
        if self.found is not None:
            found = f"; found {self.found}"
        return f"{self.message}{_span_text(self.start, self.end)}{expected}{found}"


class CompileErrorKind(str, Enum):
    UNBOUND_NAME = "UnboundName"
    ARITY_MISMATCH = "ArityMismatch"


@dataclass(eq=False)
class CompileError(UiuaError):
    kind: CompileErrorKind
    message: str
    start: int | None = None
    end: int | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}{_span_text(self.start, self.end)}"


class RuntimeErrorKind(str, Enum):
    SHAPE_MISMATCH = "ShapeMismatch"
    TYPE_MISMATCH = "TypeMismatch"
    STACK_UNDERFLOW = "StackUnderflow"
    INDEX_OUT_OF_BOUNDS = "IndexOutOfBounds"
    DIVISION_BY_ZERO = "DivisionByZero"
    INTERRUPTED = "Interrupted"


@dataclass(eq=False)
class UiuaRuntimeError(UiuaError):
    """Failure during execution; aborts the current top-level run only.

    ``shapes`` and ``kinds`` describe the operands involved so an external
    reporter can render a message without access to the values.
    """

    kind: RuntimeErrorKind
    message: str
    shapes: tuple[tuple[int, ...], ...] = ()
    kinds: tuple[str, ...] = ()
    start: int | None = None
    end: int | None = None

    def __str__(self) -> str:
        detail = ""
        if self.shapes:
            detail = "; shapes " + ", ".join(str(list(shape)) for shape in self.shapes)
        if self.kinds:
            detail += "; kinds " + ", ".join(self.kinds)
        return f"{self.kind.value}: {self.message}{_span_text(self.start, self.end)}{detail}"

    def with_span(self, start: int | None, end: int | None) -> "UiuaRuntimeError":
        if self.start is None and start is not None:
            self.start = start
            self.end = end
        return self


def shape_error(message: str, *arrays) -> UiuaRuntimeError:
    return UiuaRuntimeError(
        RuntimeErrorKind.SHAPE_MISMATCH,
        message,
        shapes=tuple(tuple(getattr(a, "shape", ())) for a in arrays),
        kinds=tuple(_kind_name(a) for a in arrays),
    )


def type_error(message: str, *values) -> UiuaRuntimeError:
    return UiuaRuntimeError(
        RuntimeErrorKind.TYPE_MISMATCH,
        message,
        shapes=tuple(tuple(getattr(v, "shape", ())) for v in values),
        kinds=tuple(_kind_name(v) for v in values),
    )


def index_error(message: str, *arrays) -> UiuaRuntimeError:
    return UiuaRuntimeError(
        RuntimeErrorKind.INDEX_OUT_OF_BOUNDS,
        message,
        shapes=tuple(tuple(getattr(a, "shape", ())) for a in arrays),
        kinds=tuple(_kind_name(a) for a in arrays),
    )


def _kind_name(value: object) -> str:
    kind = getattr(value, "kind", None)
    if kind is not None:
        return str(getattr(kind, "value", kind))
    return type(value).__name__.lower()


def classify_runtime_exception(err: Exception) -> UiuaRuntimeError:
    """Best-effort classification of library exceptions raised inside a primitive."""
    message = str(err)
    lowered = message.lower()

    if isinstance(err, ZeroDivisionError):
        return UiuaRuntimeError(RuntimeErrorKind.DIVISION_BY_ZERO, message)

    if isinstance(err, IndexError) or "out of bounds" in lowered or "out-of-bounds" in lowered:
        return UiuaRuntimeError(RuntimeErrorKind.INDEX_OUT_OF_BOUNDS, message)

    shape_markers = (
        "shape",
        "rank",
        "axis",
        "broadcast",
        "length",
        "reshape",
        "dimension",
    )
    if any(marker in lowered for marker in shape_markers):
        return UiuaRuntimeError(RuntimeErrorKind.SHAPE_MISMATCH, message)

    return UiuaRuntimeError(RuntimeErrorKind.TYPE_MISMATCH, message)
