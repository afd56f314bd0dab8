"""Single-pass parser producing lines of stack words."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .ast import ArrayLiteral, Binding, Char, FunctionDef, Ident, Line, Modified, Number, Primitive, Program, Statement, Strand, String, Word
from .errors import ParseError
from .lexer import Token, tokenize
from .primitives import from_glyph

_TERM_START = ("NUMBER", "CHAR", "STRING", "IDENT", "PRIMITIVE", "LPAREN", "LBRACKET", "LBRACE")
_WORD_START = (*_TERM_START, "MODIFIER")
_CLOSERS = {"LPAREN": "RPAREN", "LBRACKET": "RBRACKET", "LBRACE": "RBRACE"}


@dataclass
class _Parser:
    tokens: list[Token]
    index: int = 0

    def parse_program(self) -> Program:
        statements = self._parse_statements(closing=None)
        self._expect("EOF")
        return Program(statements=tuple(statements))

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 < len(self.tokens):
            return self.tokens[self.index + 1]
        return self.tokens[-1]

    def _advance(self) -> Token:
        tok = self.tokens[self.index]
        self.index += 1
        return tok

    def _expect(self, kind: str) -> Token:
        tok = self._peek()
        if tok.kind != kind:
            self._error(tok, expected=(kind,))
        return self._advance()

    def _error(self, tok: Token | None = None, *, message: str | None = None, expected: tuple[str, ...] = ()) -> None:
        token = tok if tok is not None else self._peek()
        detail = message if message is not None else "Unexpected token"
        normalized_expected = tuple(dict.fromkeys(expected))
        if token.kind == "EOF":
            found = "EOF"
        elif token.kind == "NEWLINE":
            found = "NEWLINE"
        elif token.text:
            found = f"{token.kind}({token.text})"
        else:
            found = token.kind
        raise ParseError(detail, token.pos, token.end, expected=normalized_expected, found=found)

    def _match(self, kind: str) -> bool:
        if self._peek().kind == kind:
            self._advance()
            return True
        return False

    def _consume_newlines(self) -> None:
        while self._peek().kind == "NEWLINE":
            self._advance()

    def _at_line_end(self, closing: str | None) -> bool:
        kind = self._peek().kind
        return kind in {"NEWLINE", "EOF"} or kind == closing

    def _parse_statements(self, closing: str | None) -> list[Statement]:
        statements: list[Statement] = []
        self._consume_newlines()
        while self._peek().kind != "EOF" and self._peek().kind != closing:
            statements.append(self._parse_statement(closing))
            self._consume_newlines()
        return statements

    def _parse_statement(self, closing: str | None) -> Statement:
        tok = self._peek()
        if tok.kind == "IDENT" and self._peek_next().kind == "ASSIGN":
            self._advance()
            arrow = self._advance()
            words = self._parse_words(closing)
            if not words:
                self._error(message=f"Binding of {tok.text!r} requires a body", expected=_WORD_START)
            return Binding(name=tok.text, words=tuple(words), span=(tok.pos, words[-1].span[1]))

        words = self._parse_words(closing)
        return Line(words=tuple(words), span=(tok.pos, words[-1].span[1]))

    def _parse_words(self, closing: str | None) -> list[Word]:
        words: list[Word] = []
        while not self._at_line_end(closing):
            words.append(self._parse_word(closing))
        return words

    def _parse_word(self, closing: str | None) -> Word:
        if self._peek().kind == "MODIFIER":
            return self._parse_modified(closing)

        first = self._parse_term()
        if isinstance(first, Primitive) or self._peek().kind != "STRAND":
            return first

        items = [first]
        while self._match("STRAND"):
            item = self._parse_term()
            if isinstance(item, Primitive):
                self._error(self.tokens[self.index - 1], message="Strands cannot contain primitives")
            items.append(item)
        return Strand(items=tuple(items), span=(first.span[0], items[-1].span[1]))

    def _parse_modified(self, closing: str | None) -> Modified:
        mod_tok = self._advance()
        info = from_glyph(mod_tok.text)
        assert info is not None and info.is_modifier

        operands: list[Word] = []
        for _ in range(info.operands):
            if self._at_line_end(closing) or self._peek().kind not in _WORD_START:
                self._error(message=f"Modifier {info.name} is missing an operand", expected=_WORD_START)
            operands.append(self._parse_word(closing))
        return Modified(modifier=info.prim, operands=tuple(operands), span=(mod_tok.pos, operands[-1].span[1]))

    def _parse_term(self) -> Word:
        tok = self._peek()

        if tok.kind == "NUMBER":
            self._advance()
            return Number(value=float(tok.text), span=tok.span)

        if tok.kind == "CHAR":
            self._advance()
            return Char(value=tok.text, span=tok.span)

        if tok.kind == "STRING":
            self._advance()
            return String(value=tok.text, span=tok.span)

        if tok.kind == "IDENT":
            self._advance()
            return Ident(name=tok.text, span=tok.span)

        if tok.kind == "PRIMITIVE":
            self._advance()
            info = from_glyph(tok.text)
            assert info is not None
            return Primitive(prim=info.prim, span=tok.span)

        if tok.kind in _CLOSERS:
            self._advance()
            closing = _CLOSERS[tok.kind]
            body = tuple(self._parse_statements(closing))
            end_tok = self._expect(closing)
            span = (tok.pos, end_tok.end)
            if tok.kind == "LPAREN":
                return FunctionDef(lines=body, span=span)
            return ArrayLiteral(lines=body, boxed=tok.kind == "LBRACE", span=span)

        self._error(tok, expected=_TERM_START)
        raise AssertionError("unreachable")


def parse(source: str | Sequence[Token]) -> Program:
    tokens = tokenize(source) if isinstance(source, str) else list(source)
    parser = _Parser(tokens=tokens)
    return parser.parse_program()
