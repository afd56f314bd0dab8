"""Stack machine executing compiled programs."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Final, Iterator, Sequence

import jax

from .bytecode import (
    Bind,
    Branch,
    BranchIfZero,
    CallFunction,
    CallModifier,
    CallPrimitive,
    Function,
    Instruction,
    LoadBinding,
    MakeArray,
    MarkArray,
    Program,
    PushConstant,
    PushFunction,
)
from .compiler import compile, derive_signature
from .dispatch import JUMP_TABLE
from .errors import RuntimeErrorKind, UiuaError, UiuaRuntimeError, classify_runtime_exception, type_error
from .pervade import Parallelism
from .values import DEFAULT_FILL, NO_FILL, Array, Fill, from_rows

logger = logging.getLogger(__name__)

_DEFAULT_WORKERS: Final[int] = max(0, int(os.environ.get("UIUA_JAX_WORKERS", "0")))
_PARALLEL_MIN_SIZE: Final[int] = max(1, int(os.environ.get("UIUA_JAX_PARALLEL_MIN_SIZE", "65536")))
_DEFAULT_SEED: Final[int] = int(os.environ.get("UIUA_JAX_SEED", "0"))

Value = Array | Function


@dataclass
class ExecutionContext:
    """Caller-owned settings and state for one or more executions.

    The random key advances as ``⚂`` is used, so a context reused across runs
    continues the same random sequence. An interrupt aborts the run that next
    polls it and is then cleared.
    """

    workers: int = _DEFAULT_WORKERS
    parallel_min_size: int = _PARALLEL_MIN_SIZE
    default_fill: bool = False
    seed: int = _DEFAULT_SEED
    interrupt_event: threading.Event = field(default_factory=threading.Event)
    key: jax.Array | None = None

    def next_key(self) -> jax.Array:
        if self.key is None:
            self.key = jax.random.PRNGKey(self.seed)
        self.key, subkey = jax.random.split(self.key)
        return subkey

    def interrupt(self) -> None:
        self.interrupt_event.set()

    def reset_interrupt(self) -> None:
        self.interrupt_event.clear()


@dataclass
class Scope:
    parent: int | None
    bindings: dict[int, Value] = field(default_factory=dict)
    pinned: bool = False


class ScopeArena:
    """Scopes addressed by integer handle; handle 0 is the root scope.

    Function values refer to their defining scope by handle, so a scope that
    has been captured is pinned (with its ancestors) and never reused.
    """

    def __init__(self) -> None:
        self.scopes: list[Scope] = [Scope(parent=None, pinned=True)]
        self._free: list[int] = []

    def create(self, parent: int) -> int:
        if self._free:
            handle = self._free.pop()
            self.scopes[handle] = Scope(parent=parent)
            return handle
        self.scopes.append(Scope(parent=parent))
        return len(self.scopes) - 1

    def release(self, handle: int) -> None:
        scope = self.scopes[handle]
        if scope.pinned:
            return
        scope.bindings.clear()
        self._free.append(handle)

    def pin(self, handle: int | None) -> None:
        while handle is not None and not self.scopes[handle].pinned:
            self.scopes[handle].pinned = True
            handle = self.scopes[handle].parent

    def bind(self, handle: int, slot: int, value: Value) -> None:
        self.scopes[handle].bindings[slot] = value

    def lookup(self, handle: int, slot: int) -> Value:
        current: int | None = handle
        while current is not None:
            scope = self.scopes[current]
            if slot in scope.bindings:
                return scope.bindings[slot]
            current = scope.parent
        # Slots are assigned at compile time; reaching this means a corrupted program.
        raise type_error(f"Binding slot {slot} is not bound at run time")

    @property
    def live(self) -> int:
        return len(self.scopes) - len(self._free)


@dataclass
class Frame:
    program: Program
    scope: int
    ip: int = 0


def _underflow(needed: int, available: int, what: str) -> UiuaRuntimeError:
    return UiuaRuntimeError(
        RuntimeErrorKind.STACK_UNDERFLOW,
        f"{what} needs {needed} value{'s' if needed != 1 else ''}, but the stack has {available}",
    )


class VM:
    def __init__(self, context: ExecutionContext, parallel: Parallelism, stack: Sequence[Value] = ()) -> None:
        self.context = context
        self.parallel = parallel
        self.stack: list[Value] = list(stack)
        self.scopes = ScopeArena()
        self.frames: list[Frame] = []
        self.marks: list[int] = []
        self.fills: list[Fill] = [DEFAULT_FILL if context.default_fill else NO_FILL]

    # stack access used by primitives and modifiers

    @property
    def fill(self) -> Fill:
        return self.fills[-1]

    @contextmanager
    def filling(self, fill: Fill) -> Iterator[None]:
        self.fills.append(fill)
        try:
            yield
        finally:
            self.fills.pop()

    def push(self, value: Value) -> None:
        self.stack.append(value)

    def pop(self, what: str) -> Value:
        if not self.stack:
            raise _underflow(1, 0, what)
        value = self.stack.pop()
        self._lower_marks()
        return value

    def _lower_marks(self) -> None:
        """Keep open array marks at or below the stack height.

        An array literal whose body consumes values from beneath its bracket
        collects what the body leaves in their place.
        """
        height = len(self.stack)
        marks = self.marks
        i = len(marks) - 1
        while i >= 0 and marks[i] > height:
            marks[i] = height
            i -= 1

    def pop_array(self, what: str) -> Array:
        value = self.pop(what)
        if not isinstance(value, Array):
            raise type_error(f"{what} expects an array, but got a function", value)
        return value

    def call(self, fn: Function) -> None:
        """Run ``fn`` to completion on the current stack."""
        depth = len(self.frames)
        self._enter(fn)
        self._execute(depth)

    def invoke(self, fn: Function, args: Sequence[Value]) -> list[Value]:
        """Call ``fn`` on ``args`` (top first) and return its outputs in push order."""
        base = len(self.stack)
        self.stack.extend(reversed(args))
        self.call(fn)
        base = min(base, len(self.stack))
        outputs = self.stack[base:]
        del self.stack[base:]
        self._lower_marks()
        return outputs

    # execution

    def run(self, program: Program) -> list[Value]:
        self.frames.append(Frame(program=program, scope=0))
        self._execute(0)
        return self.stack

    def _enter(self, fn: Function) -> None:
        signature = fn.signature
        if signature is not None and len(self.stack) < signature.inputs:
            raise _underflow(signature.inputs, len(self.stack), fn.program.name or "function")
        self.frames.append(Frame(program=fn.program, scope=self.scopes.create(fn.scope)))

    def _execute(self, depth: int) -> None:
        interrupt = self.context.interrupt_event
        while len(self.frames) > depth:
            frame = self.frames[-1]
            instructions = frame.program.instructions
            if frame.ip >= len(instructions):
                self.frames.pop()
                self.scopes.release(frame.scope)
                continue
            if interrupt.is_set():
                logger.debug("execution interrupted at instruction %d", frame.ip)
                instr = instructions[frame.ip]
                raise UiuaRuntimeError(RuntimeErrorKind.INTERRUPTED, "Execution was interrupted", start=instr.span[0], end=instr.span[1])
            instr = instructions[frame.ip]
            frame.ip += 1
            try:
                _HANDLERS[type(instr)](self, frame, instr)
            except UiuaRuntimeError as err:
                raise err.with_span(*instr.span)
            except UiuaError:
                raise
            except (TypeError, ValueError, IndexError, ZeroDivisionError) as err:
                raise classify_runtime_exception(err).with_span(*instr.span) from err

    # instruction handlers

    def _push_constant(self, frame: Frame, instr: PushConstant) -> None:
        self.stack.append(frame.program.constants[instr.index])

    def _push_function(self, frame: Frame, instr: PushFunction) -> None:
        self.scopes.pin(frame.scope)
        self.stack.append(Function(frame.program.functions[instr.index], frame.scope))

    def _call_primitive(self, frame: Frame, instr: CallPrimitive) -> None:
        entry = JUMP_TABLE[instr.prim]
        signature = entry.info.signature
        inputs = signature.inputs if signature is not None else 1
        if len(self.stack) < inputs:
            raise _underflow(inputs, len(self.stack), entry.info.name)
        args = [self.stack.pop() for _ in range(inputs)]
        self._lower_marks()
        result = entry.impl(self, *args)
        if isinstance(result, tuple):
            self.stack.extend(result)
        else:
            self.stack.append(result)

    def _call_modifier(self, frame: Frame, instr: CallModifier) -> None:
        entry = JUMP_TABLE[instr.prim]
        operands = [Function(frame.program.functions[i], frame.scope) for i in instr.operands]
        signature = derive_signature(instr.prim, [fn.signature for fn in operands])
        if signature is not None and len(self.stack) < signature.inputs:
            raise _underflow(signature.inputs, len(self.stack), entry.info.name)
        entry.impl(self, *operands)

    def _call_function(self, frame: Frame, instr: CallFunction) -> None:
        value = self.scopes.lookup(frame.scope, instr.slot)
        if isinstance(value, Function):
            self._enter(value)
        else:
            self.stack.append(value)

    def _bind(self, frame: Frame, instr: Bind) -> None:
        self.scopes.bind(frame.scope, instr.slot, self.pop(instr.name))

    def _load_binding(self, frame: Frame, instr: LoadBinding) -> None:
        self._call_function(frame, CallFunction(instr.name, instr.slot, span=instr.span))

    def _branch(self, frame: Frame, instr: Branch) -> None:
        frame.ip = instr.target

    def _branch_if_zero(self, frame: Frame, instr: BranchIfZero) -> None:
        condition = self.pop_array("if").as_num("Condition must be a scalar number")
        if condition == 0:
            frame.ip = instr.target

    def _mark_array(self, frame: Frame, instr: MarkArray) -> None:
        self.marks.append(len(self.stack))

    def _make_array(self, frame: Frame, instr: MakeArray) -> None:
        mark = self.marks.pop()
        if instr.count is not None:
            if len(self.stack) < instr.count:
                raise _underflow(instr.count, len(self.stack), "array")
            count = instr.count
        else:
            count = len(self.stack) - mark
        items = [self.stack.pop() for _ in range(count)]
        self._lower_marks()
        if any(isinstance(item, Function) for item in items):
            raise type_error("Functions cannot be collected into an array")
        if instr.boxed:
            items = [Array.box(item) for item in items]
        self.stack.append(from_rows(items, self.fill))


_HANDLERS: Final = {
    PushConstant: VM._push_constant,
    PushFunction: VM._push_function,
    CallPrimitive: VM._call_primitive,
    CallModifier: VM._call_modifier,
    CallFunction: VM._call_function,
    Bind: VM._bind,
    LoadBinding: VM._load_binding,
    Branch: VM._branch,
    BranchIfZero: VM._branch_if_zero,
    MarkArray: VM._mark_array,
    MakeArray: VM._make_array,
}


def _as_value(value) -> Value:
    if isinstance(value, (Array, Function)):
        return value
    return Array.from_python(value)


def run(program: Program, initial_stack: Sequence = (), *, context: ExecutionContext | None = None) -> list[Value]:
    """Execute ``program`` on ``initial_stack`` (bottom first) and return the final stack."""
    if context is None:
        context = ExecutionContext()
    stack = [_as_value(value) for value in initial_stack]

    signature = program.signature
    if signature is not None and signature.inputs > len(stack):
        raise _underflow(signature.inputs, len(stack), "program")

    logger.debug("run start: %d instructions, %d initial values", len(program.instructions), len(stack))
    try:
        if context.workers > 1:
            with ThreadPoolExecutor(max_workers=context.workers, thread_name_prefix="uiua-jax") as executor:
                parallel = Parallelism(executor=executor, workers=context.workers, min_size=context.parallel_min_size)
                result = VM(context, parallel, stack).run(program)
        else:
            result = VM(context, Parallelism(), stack).run(program)
    except UiuaRuntimeError as err:
        logger.debug("run failed: %s", err)
        if err.kind is RuntimeErrorKind.INTERRUPTED:
            # The interrupt is consumed by the run it aborted.
            context.reset_interrupt()
        raise
    logger.debug("run finished with %d values", len(result))
    return result


def evaluate(source: str, *initial, context: ExecutionContext | None = None) -> list[Value]:
    """Compile and run ``source``; convenience for tests and embedding."""
    return run(compile(source), initial, context=context)
