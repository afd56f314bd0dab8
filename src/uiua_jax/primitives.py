"""Closed catalog of primitive identifiers, glyphs, names and signatures."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Final


@dataclass(frozen=True)
class Signature:
    """Net stack effect: values consumed and values produced."""

    inputs: int
    outputs: int

    def __str__(self) -> str:
        return f"|{self.inputs}.{self.outputs}"


class Prim(IntEnum):
    # stack
    DUP = 0
    OVER = 1
    FLIP = 2
    POP = 3
    IDENTITY = 4
    # constants
    PI = 5
    TAU = 6
    ETA = 7
    INFINITY = 8
    # monadic pervasive
    NOT = 9
    SIGN = 10
    NEG = 11
    ABS = 12
    SQRT = 13
    SIN = 14
    FLOOR = 15
    CEIL = 16
    ROUND = 17
    # dyadic pervasive
    EQ = 18
    NE = 19
    LT = 20
    LE = 21
    GT = 22
    GE = 23
    ADD = 24
    SUB = 25
    MUL = 26
    DIV = 27
    MOD = 28
    POW = 29
    LOG = 30
    MIN = 31
    MAX = 32
    ATAN = 33
    # monadic array
    LEN = 34
    SHAPE = 35
    RANGE = 36
    FIRST = 37
    REVERSE = 38
    DESHAPE = 39
    TRANSPOSE = 40
    RISE = 41
    FALL = 42
    SORT = 43
    WHERE = 44
    CLASSIFY = 45
    DEDUP = 46
    BOX = 47
    UNBOX = 48
    # dyadic array
    MATCH = 49
    COUPLE = 50
    JOIN = 51
    SELECT = 52
    PICK = 53
    RESHAPE = 54
    TAKE = 55
    DROP = 56
    ROTATE = 57
    KEEP = 58
    INDEX_OF = 59
    MEMBER = 60
    FIND = 61
    # misc
    RANDOM = 62
    CALL = 63
    # modifiers
    REDUCE = 64
    FOLD = 65
    SCAN = 66
    EACH = 67
    ROWS = 68
    TABLE = 69
    REPEAT = 70
    DIP = 71
    BOTH = 72
    FORK = 73
    BRACKET = 74
    IF = 75
    FILL = 76


@dataclass(frozen=True)
class PrimInfo:
    prim: Prim
    glyph: str
    name: str
    signature: Signature | None
    operands: int = 0

    @property
    def is_modifier(self) -> bool:
        return self.operands > 0


def _f(prim: Prim, glyph: str, name: str, inputs: int, outputs: int) -> PrimInfo:
    return PrimInfo(prim, glyph, name, Signature(inputs, outputs))


def _m(prim: Prim, glyph: str, name: str, operands: int) -> PrimInfo:
    return PrimInfo(prim, glyph, name, None, operands)


_CATALOG: Final[tuple[PrimInfo, ...]] = (
    _f(Prim.DUP, ".", "duplicate", 1, 2),
    _f(Prim.OVER, ",", "over", 2, 3),
    _f(Prim.FLIP, ":", "flip", 2, 2),
    _f(Prim.POP, ";", "pop", 1, 0),
    _f(Prim.IDENTITY, "∘", "identity", 1, 1),
    _f(Prim.PI, "π", "pi", 0, 1),
    _f(Prim.TAU, "τ", "tau", 0, 1),
    _f(Prim.ETA, "η", "eta", 0, 1),
    _f(Prim.INFINITY, "∞", "infinity", 0, 1),
    _f(Prim.NOT, "¬", "not", 1, 1),
    _f(Prim.SIGN, "±", "sign", 1, 1),
    _f(Prim.NEG, "¯", "negate", 1, 1),
    _f(Prim.ABS, "⌵", "absolute", 1, 1),
    _f(Prim.SQRT, "√", "sqrt", 1, 1),
    _f(Prim.SIN, "○", "sine", 1, 1),
    _f(Prim.FLOOR, "⌊", "floor", 1, 1),
    _f(Prim.CEIL, "⌈", "ceiling", 1, 1),
    _f(Prim.ROUND, "⁅", "round", 1, 1),
    _f(Prim.EQ, "=", "equals", 2, 1),
    _f(Prim.NE, "≠", "notequals", 2, 1),
    _f(Prim.LT, "<", "less", 2, 1),
    _f(Prim.LE, "≤", "lessorequal", 2, 1),
    _f(Prim.GT, ">", "greater", 2, 1),
    _f(Prim.GE, "≥", "greaterorequal", 2, 1),
    _f(Prim.ADD, "+", "add", 2, 1),
    _f(Prim.SUB, "-", "subtract", 2, 1),
    _f(Prim.MUL, "×", "multiply", 2, 1),
    _f(Prim.DIV, "÷", "divide", 2, 1),
    _f(Prim.MOD, "◿", "modulus", 2, 1),
    _f(Prim.POW, "ⁿ", "power", 2, 1),
    _f(Prim.LOG, "ₙ", "logarithm", 2, 1),
    _f(Prim.MIN, "↧", "minimum", 2, 1),
    _f(Prim.MAX, "↥", "maximum", 2, 1),
    _f(Prim.ATAN, "∠", "atangent", 2, 1),
    _f(Prim.LEN, "⧻", "length", 1, 1),
    _f(Prim.SHAPE, "△", "shape", 1, 1),
    _f(Prim.RANGE, "⇡", "range", 1, 1),
    _f(Prim.FIRST, "⊢", "first", 1, 1),
    _f(Prim.REVERSE, "⇌", "reverse", 1, 1),
    _f(Prim.DESHAPE, "♭", "deshape", 1, 1),
    _f(Prim.TRANSPOSE, "⍉", "transpose", 1, 1),
    _f(Prim.RISE, "⍏", "rise", 1, 1),
    _f(Prim.FALL, "⍖", "fall", 1, 1),
    _f(Prim.SORT, "⍆", "sort", 1, 1),
    _f(Prim.WHERE, "⊚", "where", 1, 1),
    _f(Prim.CLASSIFY, "⊛", "classify", 1, 1),
    _f(Prim.DEDUP, "⊝", "deduplicate", 1, 1),
    _f(Prim.BOX, "□", "box", 1, 1),
    _f(Prim.UNBOX, "⊔", "unbox", 1, 1),
    _f(Prim.MATCH, "≍", "match", 2, 1),
    _f(Prim.COUPLE, "⊟", "couple", 2, 1),
    _f(Prim.JOIN, "⊂", "join", 2, 1),
    _f(Prim.SELECT, "⊏", "select", 2, 1),
    _f(Prim.PICK, "⊡", "pick", 2, 1),
    _f(Prim.RESHAPE, "↯", "reshape", 2, 1),
    _f(Prim.TAKE, "↙", "take", 2, 1),
    _f(Prim.DROP, "↘", "drop", 2, 1),
    _f(Prim.ROTATE, "↻", "rotate", 2, 1),
    _f(Prim.KEEP, "▽", "keep", 2, 1),
    _f(Prim.INDEX_OF, "⊗", "indexof", 2, 1),
    _f(Prim.MEMBER, "∊", "member", 2, 1),
    _f(Prim.FIND, "⌕", "find", 2, 1),
    _f(Prim.RANDOM, "⚂", "random", 0, 1),
    PrimInfo(Prim.CALL, "!", "call", None),
    _m(Prim.REDUCE, "/", "reduce", 1),
    _m(Prim.FOLD, "∧", "fold", 1),
    _m(Prim.SCAN, "\\", "scan", 1),
    _m(Prim.EACH, "∵", "each", 1),
    _m(Prim.ROWS, "≡", "rows", 1),
    _m(Prim.TABLE, "⊞", "table", 1),
    _m(Prim.REPEAT, "⍥", "repeat", 1),
    _m(Prim.DIP, "⊙", "dip", 1),
    _m(Prim.BOTH, "∩", "both", 1),
    _m(Prim.FORK, "⊃", "fork", 2),
    _m(Prim.BRACKET, "⊓", "bracket", 2),
    _m(Prim.IF, "?", "if", 2),
    _m(Prim.FILL, "⬚", "fill", 2),
)

assert all(info.prim == index for index, info in enumerate(_CATALOG))

BY_GLYPH: Final[dict[str, PrimInfo]] = {info.glyph: info for info in _CATALOG}
BY_NAME: Final[dict[str, PrimInfo]] = {info.name: info for info in _CATALOG}
GLYPH_ALIASES: Final[dict[str, str]] = {"*": "×", "%": "÷"}


def info(prim: Prim | int) -> PrimInfo:
    return _CATALOG[prim]


def all_primitives() -> tuple[PrimInfo, ...]:
    return _CATALOG


def from_glyph(glyph: str) -> PrimInfo | None:
    return BY_GLYPH.get(GLYPH_ALIASES.get(glyph, glyph))


def from_name(name: str) -> PrimInfo | None:
    return BY_NAME.get(name)
