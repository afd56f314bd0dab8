"""uiua-jax public API."""

import logging

from .errors import (
    CompileError,
    CompileErrorKind,
    LexError,
    ParseError,
    RuntimeErrorKind,
    UiuaError,
    UiuaRuntimeError,
)
from .lexer import Token, tokenize
from .parser import parse
from .primitives import Prim, Signature
from .values import Array, ElementKind, ExternalArray
from .bytecode import Function, Program
from .compiler import clear_compile_cache, compile
from .interpreter import ExecutionContext, evaluate, run

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Array",
    "CompileError",
    "CompileErrorKind",
    "ElementKind",
    "ExecutionContext",
    "ExternalArray",
    "Function",
    "LexError",
    "ParseError",
    "Prim",
    "Program",
    "RuntimeErrorKind",
    "Signature",
    "Token",
    "UiuaError",
    "UiuaRuntimeError",
    "clear_compile_cache",
    "compile",
    "evaluate",
    "parse",
    "run",
    "tokenize",
]
