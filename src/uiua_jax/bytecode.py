"""Linear bytecode emitted by the compiler and executed by the VM."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .primitives import Prim, Signature, info
from .values import Array

Span = tuple[int, int]
_NO_SPAN: Span = (0, 0)


@dataclass(frozen=True)
class PushConstant:
    index: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class PushFunction:
    index: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class CallPrimitive:
    prim: Prim
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class CallModifier:
    """Apply a modifier to operand functions taken from the function table."""

    prim: Prim
    operands: tuple[int, ...]
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class CallFunction:
    name: str
    slot: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class Bind:
    """Pop the top value into the binding slot resolved at compile time."""

    name: str
    slot: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class LoadBinding:
    name: str
    slot: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class Branch:
    target: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class BranchIfZero:
    """Pop a scalar condition and jump when it is zero."""

    target: int
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class MarkArray:
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class MakeArray:
    """Collect values into an array.

    With ``count`` set, exactly that many values are popped; otherwise every
    value pushed since the matching ``MarkArray`` is collected.
    """

    count: int | None
    boxed: bool = False
    span: Span = field(default=_NO_SPAN, compare=False)


Instruction = Union[
    PushConstant,
    PushFunction,
    CallPrimitive,
    CallModifier,
    CallFunction,
    Bind,
    LoadBinding,
    Branch,
    BranchIfZero,
    MarkArray,
    MakeArray,
]


@dataclass(frozen=True)
class Program:
    instructions: tuple[Instruction, ...]
    constants: tuple[Array, ...] = ()
    functions: tuple["Program", ...] = ()
    signature: Signature | None = None
    name: str | None = None

    @property
    def is_dynamic(self) -> bool:
        return self.signature is None

    def disassemble(self, indent: str = "") -> str:
        lines: list[str] = []
        header = self.name or "<program>"
        lines.append(f"{indent}{header} {self.signature if self.signature else '|dynamic'}")
        for ip, instr in enumerate(self.instructions):
            lines.append(f"{indent}  {ip:4d} {_describe(self, instr)}")
        for index, function in enumerate(self.functions):
            lines.append(f"{indent}  function {index}:")
            lines.append(function.disassemble(indent + "    "))
        return "\n".join(lines)


def _describe(program: Program, instr: Instruction) -> str:
    if isinstance(instr, PushConstant):
        return f"push {program.constants[instr.index]!r}"
    if isinstance(instr, PushFunction):
        return f"push function {instr.index}"
    if isinstance(instr, CallPrimitive):
        return f"call {info(instr.prim).glyph} ({info(instr.prim).name})"
    if isinstance(instr, CallModifier):
        return f"modifier {info(instr.prim).glyph} functions {list(instr.operands)}"
    if isinstance(instr, CallFunction):
        return f"call {instr.name}"
    if isinstance(instr, Bind):
        return f"bind {instr.name}"
    if isinstance(instr, LoadBinding):
        return f"load {instr.name}"
    if isinstance(instr, Branch):
        return f"jump {instr.target}"
    if isinstance(instr, BranchIfZero):
        return f"jump if zero {instr.target}"
    if isinstance(instr, MarkArray):
        return "mark"
    return f"make {'box ' if instr.boxed else ''}array {instr.count if instr.count is not None else '*'}"


@dataclass(frozen=True, eq=False)
class Function:
    """A compiled function paired with the handle of the scope it was defined in."""

    program: Program
    scope: int

    @property
    def signature(self) -> Signature | None:
        return self.program.signature

    def __repr__(self) -> str:
        return f"Function({self.program.name or 'anonymous'} {self.signature if self.signature else '|dynamic'})"
