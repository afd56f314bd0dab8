"""AST nodes for stack-language programs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .primitives import Prim

Span = tuple[int, int]


@dataclass(frozen=True)
class Number:
    value: float
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Char:
    value: str
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class String:
    value: str
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Strand:
    items: tuple["Word", ...]
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class ArrayLiteral:
    lines: tuple["Line", ...]
    boxed: bool = False
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Ident:
    name: str
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Primitive:
    prim: Prim
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class FunctionDef:
    """Parenthesized, parameter-free function; its arity is inferred from the body."""

    lines: tuple["Line | Binding", ...]
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Modified:
    modifier: Prim
    operands: tuple["Word", ...]
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Line:
    words: tuple["Word", ...]
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Binding:
    name: str
    words: tuple["Word", ...]
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Program:
    statements: tuple["Line | Binding", ...]


Word = Union[Number, Char, String, Strand, ArrayLiteral, Ident, Primitive, FunctionDef, Modified]
Statement = Union[Line, Binding]
