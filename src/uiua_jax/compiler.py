"""Name resolution, signature inference and bytecode emission."""

from __future__ import annotations

import itertools
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Final, Iterator, Sequence

from . import ast
from .bytecode import (
    Bind,
    Branch,
    BranchIfZero,
    CallFunction,
    CallModifier,
    CallPrimitive,
    Instruction,
    LoadBinding,
    MakeArray,
    MarkArray,
    Program,
    PushConstant,
    PushFunction,
)
from .errors import CompileError, CompileErrorKind, UiuaRuntimeError
from .parser import parse
from .primitives import Prim, Signature, info
from .values import NO_FILL, Array, from_rows

logger = logging.getLogger(__name__)

_COMPILE_CACHE_MAX: Final[int] = max(1, int(os.environ.get("UIUA_JAX_COMPILE_CACHE_MAX", "256")))

_VALUE_SIGNATURE: Final = Signature(0, 1)


@dataclass(frozen=True)
class _BindingInfo:
    slot: int
    is_function: bool
    signature: Signature | None


@dataclass
class _CompileScope:
    """Names visible while compiling.

    Every binding site gets a slot number unique across the compilation. A
    reference reads the slot in force where it was compiled, even if the name
    is bound again later.
    """

    parent: "_CompileScope | None" = None
    names: dict[str, _BindingInfo] = field(default_factory=dict)
    slots: Iterator[int] = field(default_factory=itertools.count)

    def child(self) -> "_CompileScope":
        return _CompileScope(parent=self, slots=self.slots)

    def lookup(self, name: str) -> _BindingInfo | None:
        scope: _CompileScope | None = self
        while scope is not None:
            found = scope.names.get(name)
            if found is not None:
                return found
            scope = scope.parent
        return None


@dataclass
class _StackTracker:
    """Abstract stack height used to infer a net signature."""

    height: int = 0
    lowest: int = 0
    dynamic: bool = False

    def apply(self, signature: Signature | None) -> None:
        if signature is None:
            self.dynamic = True
            return
        self.height -= signature.inputs
        self.lowest = min(self.lowest, self.height)
        self.height += signature.outputs

    def signature(self) -> Signature | None:
        if self.dynamic:
            return None
        return Signature(-self.lowest, self.height - self.lowest)


def _arity_error(message: str, span: ast.Span) -> CompileError:
    return CompileError(CompileErrorKind.ARITY_MISMATCH, message, span[0], span[1])


def derive_signature(prim: Prim, operands: Sequence[Signature | None], span: ast.Span = (0, 0)) -> Signature | None:
    """Signature of a modifier applied to operands with the given signatures."""
    name = info(prim).name
    if prim is Prim.FILL:
        fill_sig, body = operands
        if fill_sig is not None and fill_sig != _VALUE_SIGNATURE:
            raise _arity_error(f"The fill value of {name} must have signature {_VALUE_SIGNATURE}, not {fill_sig}", span)
        return body
    if any(sig is None for sig in operands):
        return None

    f = operands[0]
    if prim in (Prim.REDUCE, Prim.SCAN):
        if f != Signature(2, 1):
            raise _arity_error(f"{name} requires a function with signature |2.1, not {f}", span)
        return Signature(1, 1)
    if prim is Prim.FOLD:
        if f != Signature(2, 1):
            raise _arity_error(f"{name} requires a function with signature |2.1, not {f}", span)
        return Signature(2, 1)
    if prim in (Prim.EACH, Prim.ROWS):
        if f.inputs < 1:
            raise _arity_error(f"{name} requires a function that takes at least one argument, not {f}", span)
        return f
    if prim is Prim.TABLE:
        if f.inputs != 2:
            raise _arity_error(f"{name} requires a function that takes two arguments, not {f}", span)
        return f
    if prim is Prim.REPEAT:
        if f.inputs != f.outputs:
            raise _arity_error(f"{name} requires a function with equal inputs and outputs, not {f}", span)
        return Signature(f.inputs + 1, f.outputs)
    if prim is Prim.DIP:
        return Signature(f.inputs + 1, f.outputs + 1)
    if prim is Prim.BOTH:
        return Signature(f.inputs * 2, f.outputs * 2)

    g = operands[1]
    if prim is Prim.FORK:
        return Signature(max(f.inputs, g.inputs), f.outputs + g.outputs)
    if prim is Prim.BRACKET:
        return Signature(f.inputs + g.inputs, f.outputs + g.outputs)
    if prim is Prim.IF:
        if f != g:
            raise _arity_error(f"Both branches of {name} must have the same signature, not {f} and {g}", span)
        return Signature(f.inputs + 1, f.outputs)
    raise AssertionError(f"not a modifier: {prim!r}")


def _constant_of(word: ast.Word) -> Array | None:
    """Fold literal-only words into a single array, if they combine cleanly."""
    if isinstance(word, ast.Number):
        return Array.number(word.value)
    if isinstance(word, ast.Char):
        return Array.char(word.value)
    if isinstance(word, ast.String):
        return Array.string(word.value)
    if isinstance(word, ast.Strand):
        items = [_constant_of(item) for item in word.items]
    elif isinstance(word, ast.ArrayLiteral):
        if any(not isinstance(line, ast.Line) for line in word.lines):
            return None
        items = [_constant_of(w) for line in word.lines for w in line.words]
        if word.boxed:
            items = [Array.box(item) if item is not None else None for item in items]
    else:
        return None
    if any(item is None for item in items):
        return None
    try:
        return from_rows(items, NO_FILL)
    except UiuaRuntimeError:
        # Left for the VM so the error surfaces at run time with its span.
        return None


class _Emitter:
    """Builds one Program; nested functions get their own emitter."""

    def __init__(self, scope: _CompileScope, name: str | None = None) -> None:
        self.scope = scope
        self.name = name
        self.instructions: list[Instruction] = []
        self.constants: list[Array] = []
        self.functions: list[Program] = []
        self.trackers: list[_StackTracker] = [_StackTracker()]

    def _add(self, instr: Instruction, signature: Signature | None) -> int:
        self.instructions.append(instr)
        self.trackers[-1].apply(signature)
        return len(self.instructions) - 1

    def _constant(self, value: Array) -> int:
        self.constants.append(value)
        return len(self.constants) - 1

    def _function(self, program: Program) -> int:
        self.functions.append(program)
        return len(self.functions) - 1

    def finish(self) -> Program:
        return Program(
            instructions=tuple(self.instructions),
            constants=tuple(self.constants),
            functions=tuple(self.functions),
            signature=self.trackers[0].signature(),
            name=self.name,
        )

    # statements

    def statements(self, statements: Sequence[ast.Statement]) -> None:
        for statement in statements:
            if isinstance(statement, ast.Binding):
                self.binding(statement)
            else:
                self.words(statement.words)

    def words(self, words: Sequence[ast.Word]) -> None:
        for word in reversed(words):
            self.word(word)

    def binding(self, binding: ast.Binding) -> None:
        body = _compile_function([ast.Line(words=binding.words, span=binding.span)], self.scope, binding.name)
        single_def = len(binding.words) == 1 and isinstance(binding.words[0], ast.FunctionDef)

        if body.signature == _VALUE_SIGNATURE and not single_def:
            self.words(binding.words)
            slot = next(self.scope.slots)
            self._add(Bind(binding.name, slot, span=binding.span), Signature(1, 0))
            self.scope.names[binding.name] = _BindingInfo(slot, is_function=False, signature=_VALUE_SIGNATURE)
            return

        if single_def:
            body = _compile_function(binding.words[0].lines, self.scope, binding.name)
        self._add(PushFunction(self._function(body), span=binding.span), _VALUE_SIGNATURE)
        slot = next(self.scope.slots)
        self._add(Bind(binding.name, slot, span=binding.span), Signature(1, 0))
        self.scope.names[binding.name] = _BindingInfo(slot, is_function=True, signature=body.signature)

    # words

    def word(self, word: ast.Word) -> None:
        constant = _constant_of(word)
        if constant is not None:
            self._add(PushConstant(self._constant(constant), span=word.span), _VALUE_SIGNATURE)
            return

        if isinstance(word, ast.Strand):
            self._collect(lambda: self.words(word.items), boxed=False, span=word.span)
            return

        if isinstance(word, ast.ArrayLiteral):
            # Lines run bottom to top so the first line ends on top of the stack.
            self._collect(lambda: self.statements(word.lines[::-1]), boxed=word.boxed, span=word.span)
            return

        if isinstance(word, ast.Ident):
            found = self.scope.lookup(word.name)
            if found is None:
                raise CompileError(CompileErrorKind.UNBOUND_NAME, f"Unknown name {word.name!r}", *word.span)
            if found.is_function:
                self._add(CallFunction(word.name, found.slot, span=word.span), found.signature)
            else:
                self._add(LoadBinding(word.name, found.slot, span=word.span), _VALUE_SIGNATURE)
            return

        if isinstance(word, ast.Primitive):
            self._add(CallPrimitive(word.prim, span=word.span), info(word.prim).signature)
            return

        if isinstance(word, ast.FunctionDef):
            program = _compile_function(word.lines, self.scope, None)
            self._add(PushFunction(self._function(program), span=word.span), _VALUE_SIGNATURE)
            return

        if isinstance(word, ast.Modified):
            if word.modifier is Prim.IF:
                self._branch(word)
            else:
                self._modified(word)
            return

        raise AssertionError(f"unknown word {word!r}")

    def _collect(self, emit_body, *, boxed: bool, span: ast.Span) -> None:
        self._add(MarkArray(span=span), Signature(0, 0))
        self.trackers.append(_StackTracker())
        emit_body()
        inner = self.trackers.pop()
        if inner.dynamic:
            self.trackers[-1].dynamic = True
            count = None
        else:
            # Every value the body leaves, including results built from values beneath the bracket.
            count = inner.height - inner.lowest
        self._add(MakeArray(count, boxed=boxed, span=span), Signature(-inner.lowest, 1))

    def _operand_program(self, operand: ast.Word, modifier: Prim) -> Program:
        name = f"{info(modifier).name} operand"
        if isinstance(operand, ast.FunctionDef):
            return _compile_function(operand.lines, self.scope, name)
        return _compile_function([ast.Line(words=(operand,), span=operand.span)], self.scope, name)

    def _modified(self, word: ast.Modified) -> None:
        programs = [self._operand_program(operand, word.modifier) for operand in word.operands]
        signature = derive_signature(word.modifier, [p.signature for p in programs], word.span)
        indices = tuple(self._function(p) for p in programs)
        self._add(CallModifier(word.modifier, indices, span=word.span), signature)

    def _inline(self, operand: ast.Word) -> Signature | None:
        self.trackers.append(_StackTracker())
        if isinstance(operand, ast.FunctionDef):
            scope = self.scope
            self.scope = scope.child()
            try:
                self.statements(operand.lines)
            finally:
                self.scope = scope
        else:
            self.word(operand)
        return self.trackers.pop().signature()

    def _branch(self, word: ast.Modified) -> None:
        """``?t f`` pops a condition and runs ``t`` when it is nonzero, ``f`` otherwise."""
        then_word, else_word = word.operands
        branch_if_zero = self._add(BranchIfZero(-1, span=word.span), Signature(0, 0))
        then_sig = self._inline(then_word)
        jump = self._add(Branch(-1, span=word.span), Signature(0, 0))
        self.instructions[branch_if_zero] = BranchIfZero(len(self.instructions), span=word.span)
        else_sig = self._inline(else_word)
        self.instructions[jump] = Branch(len(self.instructions), span=word.span)

        signature = derive_signature(Prim.IF, [then_sig, else_sig], word.span)
        if signature is None:
            self.trackers[-1].dynamic = True
        else:
            self.trackers[-1].apply(Signature(1, 0))
            self.trackers[-1].apply(Signature(signature.inputs - 1, signature.outputs))


def _compile_function(statements: Sequence[ast.Statement], parent: _CompileScope, name: str | None) -> Program:
    emitter = _Emitter(parent.child(), name)
    emitter.statements(statements)
    return emitter.finish()


def compile_ast(program: ast.Program) -> Program:
    emitter = _Emitter(_CompileScope(), "main")
    emitter.statements(program.statements)
    compiled = emitter.finish()
    logger.debug(
        "compiled %d instructions, %d functions, signature %s",
        len(compiled.instructions),
        len(compiled.functions),
        compiled.signature if compiled.signature is not None else "dynamic",
    )
    return compiled


@lru_cache(maxsize=_COMPILE_CACHE_MAX)
def _compile_cached(source: str) -> Program:
    return compile_ast(parse(source))


def compile(source: str | ast.Program) -> Program:
    """Compile source text (cached) or an already parsed program."""
    if isinstance(source, ast.Program):
        return compile_ast(source)
    return _compile_cached(source)


def clear_compile_cache() -> None:
    _compile_cached.cache_clear()
