"""Tokenization of stack-language source text."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import LexError
from .primitives import from_glyph, from_name


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    end: int

    @property
    def span(self) -> tuple[int, int]:
        return (self.pos, self.end)


_SINGLE_TOKENS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    "{": "LBRACE",
    "}": "RBRACE",
    "_": "STRAND",
}

_ASSIGN_TOKENS = {"←", "⇐"}
_WHITESPACE = {" ", "\t", "\r", "\f", "\v"}

_NUMBER_RE = re.compile(
    r"""
    ^
    (?P<sign>¯?)                              # leading sign
    (?P<mantissa>[0-9]+(?:\.[0-9]+)?)
    (?:
        [eE]
        (?P<exp_sign>¯?)
        (?P<exponent>[0-9]+)
    )?
    $
    """,
    re.VERBOSE,
)


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and ch.isalpha()


def _is_ident_continue(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


def _scan_while(source: str, start: int, predicate) -> tuple[str, int]:
    i = start
    while i < len(source) and predicate(source[i]):
        i += 1
    return source[start:i], i


def _scan_digits(source: str, start: int) -> int:
    i = start
    while i < len(source) and source[i].isdigit():
        i += 1
    return i


def _malformed(source: str, start: int, end: int) -> LexError:
    return LexError(f"Malformed numeric literal {source[start:end]!r}", start, end)


def _scan_number(source: str, start: int) -> int:
    i = start
    if source[i] == "¯":
        i += 1
    int_start = i
    i = _scan_digits(source, i)
    if i == int_start:
        raise _malformed(source, start, i)

    # A point only belongs to the literal when digits follow it; otherwise it is `.` (duplicate).
    if i + 1 < len(source) and source[i] == "." and source[i + 1].isdigit():
        i = _scan_digits(source, i + 1)
        if i + 1 < len(source) and source[i] == "." and source[i + 1].isdigit():
            end = _scan_digits(source, i + 1)
            raise _malformed(source, start, end)

    if i < len(source) and source[i] in {"e", "E"}:
        i += 1
        if i < len(source) and source[i] == "¯":
            i += 1
        exp_start = i
        i = _scan_digits(source, i)
        if i == exp_start:
            raise _malformed(source, start, i)

    if i < len(source) and _is_ident_continue(source[i]):
        _, end = _scan_while(source, i, _is_ident_continue)
        raise _malformed(source, start, end)
    return i


def _parse_number_text(text: str, pos: int) -> float:
    m = _NUMBER_RE.match(text)
    if not m:
        raise LexError(f"Malformed numeric literal {text!r}", pos, pos + len(text))

    sign = -1.0 if m.group("sign") == "¯" else 1.0
    mantissa = float(m.group("mantissa"))
    exponent_text = m.group("exponent")
    if exponent_text is not None:
        exp_sign = -1 if m.group("exp_sign") == "¯" else 1
        mantissa = float(f"{m.group('mantissa')}e{exp_sign * int(exponent_text)}")
    return sign * mantissa


def _parse_escaped_codepoint(source: str, start: int) -> tuple[str, int]:
    """Decode the escape whose backslash sits at ``start - 1``."""
    if start >= len(source):
        raise LexError("Escape sequence is incomplete at end of input", start - 1, start)

    esc = source[start]
    simple = {"n": "\n", "r": "\r", "t": "\t", "0": "\0", "\\": "\\", '"': '"', "'": "'", "@": "@"}
    if esc in simple:
        return simple[esc], start + 1

    widths = {"x": 2, "u": 4}
    if esc in widths:
        hex_end = start + 1 + widths[esc]
        if hex_end > len(source):
            raise LexError(f"Incomplete \\{esc} escape", start - 1, len(source))
        digits = source[start + 1 : hex_end]
        if not all(ch in "0123456789abcdefABCDEF" for ch in digits):
            raise LexError(f"Invalid \\{esc} escape", start - 1, hex_end)
        return chr(int(digits, 16)), hex_end

    raise LexError(f"Unknown escape sequence \\{esc}", start - 1, start + 1)


def _scan_string(source: str, start: int) -> tuple[str, int]:
    assert source[start] == '"'
    i = start + 1
    out: list[str] = []
    while i < len(source):
        ch = source[i]
        if ch == '"':
            return "".join(out), i + 1
        if ch == "\n":
            break
        if ch == "\\":
            escaped, end = _parse_escaped_codepoint(source, i + 1)
            out.append(escaped)
            i = end
            continue
        out.append(ch)
        i += 1
    raise LexError("Unterminated string literal", start, i)


def _scan_char(source: str, start: int) -> tuple[str, int]:
    assert source[start] == "@"
    i = start + 1
    if i >= len(source) or source[i] == "\n":
        raise LexError("Unterminated character literal", start, i)
    if source[i] == "\\":
        return _parse_escaped_codepoint(source, i + 1)
    return source[i], i + 1


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0

    while i < len(source):
        ch = source[i]

        if ch in _WHITESPACE:
            i += 1
            continue

        if ch == "#":
            while i < len(source) and source[i] != "\n":
                i += 1
            continue

        if ch == "\n":
            start = i
            while i < len(source) and (source[i] == "\n" or source[i] in _WHITESPACE):
                i += 1
            tokens.append(Token("NEWLINE", "\n", start, i))
            continue

        if ch in _SINGLE_TOKENS:
            tokens.append(Token(_SINGLE_TOKENS[ch], ch, i, i + 1))
            i += 1
            continue

        if ch in _ASSIGN_TOKENS:
            tokens.append(Token("ASSIGN", ch, i, i + 1))
            i += 1
            continue

        if ch.isdigit() or (ch == "¯" and i + 1 < len(source) and source[i + 1].isdigit()):
            end = _scan_number(source, i)
            value = _parse_number_text(source[i:end], i)
            tokens.append(Token("NUMBER", repr(value), i, end))
            i = end
            continue

        if ch == '"':
            value, end = _scan_string(source, i)
            tokens.append(Token("STRING", value, i, end))
            i = end
            continue

        if ch == "@":
            value, end = _scan_char(source, i)
            tokens.append(Token("CHAR", value, i, end))
            i = end
            continue

        if _is_ident_start(ch):
            ident, end = _scan_while(source, i, _is_ident_continue)
            named = from_name(ident)
            if named is None:
                tokens.append(Token("IDENT", ident, i, end))
            else:
                kind = "MODIFIER" if named.is_modifier else "PRIMITIVE"
                tokens.append(Token(kind, named.glyph, i, end))
            i = end
            continue

        glyph = from_glyph(ch)
        if glyph is not None:
            kind = "MODIFIER" if glyph.is_modifier else "PRIMITIVE"
            tokens.append(Token(kind, glyph.glyph, i, i + 1))
            i += 1
            continue

        raise LexError(f"Unexpected character {ch!r}", i, i + 1)

    tokens.append(Token("EOF", "", len(source), len(source)))
    return tokens
