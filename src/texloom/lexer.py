"""TeX lexer: converts source text into a flat, positioned token stream."""

from __future__ import annotations

from texloom.catcodes import CatcodeTable
from texloom.errors import Diagnostic, DiagnosticKind
from texloom.tokens import Catcode, Position, Span, Token, TokenType, byte_width

# Catcodes that produce a single-character token of their own type
_SINGLE: dict[Catcode, TokenType] = {
    Catcode.PARAMETER: TokenType.PARAMETER,
    Catcode.SUPERSCRIPT: TokenType.SUPERSCRIPT,
    Catcode.SUBSCRIPT: TokenType.SUBSCRIPT,
}


class Lexer:
    """Tokenize TeX source, consulting a mutable catcode table per character.

    The lexer never fails: every input character ends up in exactly one
    token, and problems are reported as diagnostics.
    """

    def __init__(
        self,
        source: str | bytes,
        catcodes: CatcodeTable | None = None,
        file_id: int = 0,
    ) -> None:
        if isinstance(source, bytes):
            source = source.decode("utf-8", errors="surrogateescape")
        self._source = source
        self._catcodes = catcodes if catcodes is not None else CatcodeTable()
        self._file_id = file_id
        self._pos = 0
        self._offset = 0
        self._line = 1
        self._col = 1
        self._tokens: list[Token] = []
        self._diagnostics: list[Diagnostic] = []
        # (char index, character, catcode) assignments not yet in effect
        self._pending: list[tuple[int, str, Catcode]] = []

    @property
    def source(self) -> str:
        return self._source

    def tokenize(self) -> tuple[list[Token], list[Diagnostic]]:
        """Tokenize the full source and return tokens plus diagnostics."""
        while self._pos < len(self._source):
            self._lex_token()

        start = self._current_pos()
        self._tokens.append(Token(TokenType.EOF, "", "", Span(start, start, self._file_id)))
        return self._tokens, self._diagnostics

    # ------------------------------------------------------------------
    # Position helpers
    # ------------------------------------------------------------------

    def _current_pos(self) -> Position:
        return Position(self._line, self._col, self._offset)

    def _peek(self, offset: int = 0) -> str:
        idx = self._pos + offset
        if idx < len(self._source):
            return self._source[idx]
        return ""

    def _catcode(self, offset: int = 0) -> Catcode | None:
        """Classify the character at pos+offset using the live table."""
        idx = self._pos + offset
        if idx >= len(self._source):
            return None
        while self._pending and self._pending[0][0] <= idx:
            _, ch, code = self._pending.pop(0)
            self._catcodes.assign(ch, code)
        return self._catcodes[self._source[idx]]

    def _advance(self) -> str:
        ch = self._source[self._pos]
        self._pos += 1
        self._offset += byte_width(ch)
        if ch == "\n" or (ch == "\r" and self._peek() != "\n"):
            self._line += 1
            self._col = 1
        else:
            self._col += 1
        return ch

    def _emit(
        self,
        tt: TokenType,
        value: str,
        start: Position,
        start_idx: int,
        catcode: Catcode | None = None,
    ) -> Token:
        raw = self._source[start_idx : self._pos]
        span = Span(start, self._current_pos(), self._file_id)
        tok = Token(tt, value, raw, span, catcode)
        self._tokens.append(tok)
        return tok

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _lex_token(self) -> None:
        code = self._catcode()
        start = self._current_pos()
        start_idx = self._pos

        if code == Catcode.ESCAPE:
            self._lex_control_sequence()
            return

        if code == Catcode.BEGIN_GROUP:
            ch = self._advance()
            self._emit(TokenType.BEGIN_GROUP, ch, start, start_idx)
            self._catcodes.push()
            return

        if code == Catcode.END_GROUP:
            ch = self._advance()
            self._emit(TokenType.END_GROUP, ch, start, start_idx)
            self._catcodes.pop()
            return

        if code == Catcode.MATH_SHIFT:
            self._advance()
            count = 1
            if self._catcode() == Catcode.MATH_SHIFT:
                self._advance()
                count = 2
            self._emit(TokenType.MATH_SHIFT, "$" * count, start, start_idx)
            return

        if code == Catcode.END_OF_LINE:
            ch = self._advance()
            if ch == "\r" and self._peek() == "\n":
                self._advance()
            self._emit(TokenType.END_OF_LINE, "\n", start, start_idx)
            return

        if code == Catcode.SPACE:
            while self._catcode() == Catcode.SPACE:
                self._advance()
            self._emit(TokenType.SPACE, " ", start, start_idx)
            return

        if code == Catcode.COMMENT:
            self._advance()
            while self._pos < len(self._source) and self._catcode() != Catcode.END_OF_LINE:
                self._advance()
            text = self._source[start_idx + 1 : self._pos]
            self._emit(TokenType.COMMENT, text, start, start_idx)
            return

        if code in _SINGLE:
            ch = self._advance()
            self._emit(_SINGLE[code], ch, start, start_idx)
            return

        ch = self._advance()
        assert code is not None
        self._emit(TokenType.CHARACTER, ch, start, start_idx, code)
        if code == Catcode.INVALID:
            self._diagnostics.append(
                Diagnostic.make(
                    DiagnosticKind.INVALID_CHARACTER,
                    _describe_invalid(ch),
                    Span(start, self._current_pos(), self._file_id),
                )
            )

    # ------------------------------------------------------------------
    # Control sequences
    # ------------------------------------------------------------------

    def _lex_control_sequence(self) -> None:
        start = self._current_pos()
        start_idx = self._pos
        self._advance()  # consume escape

        code = self._catcode()
        if code is None or code == Catcode.END_OF_LINE:
            # Escape at end of line/input: the line break stays its own token
            self._emit(TokenType.CONTROL_SYMBOL, "", start, start_idx)
            return

        if code != Catcode.LETTER:
            ch = self._advance()
            self._emit(TokenType.CONTROL_SYMBOL, ch, start, start_idx)
            return

        name_start = self._pos
        while self._catcode() == Catcode.LETTER:
            self._advance()
        name = self._source[name_start : self._pos]
        # A control word eats the spaces that follow it
        while self._catcode() == Catcode.SPACE:
            self._advance()
        self._emit(TokenType.CONTROL_WORD, name, start, start_idx)
        self._after_control_word(name)

    def _after_control_word(self, name: str) -> None:
        """Apply catcode-changing directives that just started."""
        if name == "makeatletter":
            self._pending.append((self._pos, "@", Catcode.LETTER))
        elif name == "makeatother":
            self._pending.append((self._pos, "@", Catcode.OTHER))
        elif name == "catcode":
            assignment = self._scan_catcode_assignment()
            if assignment is not None:
                self._pending.append(assignment)

    def _scan_catcode_assignment(self) -> tuple[int, str, Catcode] | None:
        """Look ahead for `<char spec>[=]<number>` without consuming it."""
        src = self._source
        idx = self._pos

        if idx < len(src) and src[idx] == "`":
            idx += 1
            if idx < len(src) and self._catcodes[src[idx]] == Catcode.ESCAPE:
                idx += 1
            if idx >= len(src):
                return None
            target = src[idx]
            idx += 1
        else:
            digits_end = _scan_digits(src, idx)
            if digits_end == idx:
                return None
            codepoint = int(src[idx:digits_end])
            if codepoint > 0x10FFFF:
                return None
            target = chr(codepoint)
            idx = digits_end

        idx = _skip_blanks(src, idx)
        if idx < len(src) and src[idx] == "=":
            idx = _skip_blanks(src, idx + 1)

        digits_end = _scan_digits(src, idx)
        if digits_end == idx:
            return None
        value = int(src[idx:digits_end])
        if value > 15:
            return None
        return digits_end, target, Catcode(value)


def _scan_digits(src: str, idx: int) -> int:
    while idx < len(src) and src[idx] in "0123456789":
        idx += 1
    return idx


def _skip_blanks(src: str, idx: int) -> int:
    while idx < len(src) and src[idx] in " \t":
        idx += 1
    return idx


def _describe_invalid(ch: str) -> str:
    if "\udc80" <= ch <= "\udcff":
        return f"undecodable byte 0x{ord(ch) - 0xDC00:02x}"
    return f"invalid character U+{ord(ch):04X}"


def lex(
    source: str | bytes,
    catcodes: CatcodeTable | None = None,
    file_id: int = 0,
) -> tuple[list[Token], list[Diagnostic]]:
    """Convenience function: tokenize source and return (tokens, diagnostics)."""
    return Lexer(source, catcodes, file_id).tokenize()
