"""Token types, category codes, and source positions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, auto


class Catcode(IntEnum):
    ESCAPE = 0  # \
    BEGIN_GROUP = 1  # {
    END_GROUP = 2  # }
    MATH_SHIFT = 3  # $
    ALIGN_TAB = 4  # &
    END_OF_LINE = 5  # \r \n
    PARAMETER = 6  # #
    SUPERSCRIPT = 7  # ^
    SUBSCRIPT = 8  # _
    IGNORED = 9  # NUL
    SPACE = 10  # space, tab
    LETTER = 11  # a-z A-Z
    OTHER = 12  # digits, punctuation, everything else
    ACTIVE = 13  # ~
    COMMENT = 14  # %
    INVALID = 15  # DEL, undecodable bytes


class TokenType(Enum):
    # Control sequences
    CONTROL_WORD = auto()  # escape + letters (+ eaten spaces)
    CONTROL_SYMBOL = auto()  # escape + one non-letter

    # Structural
    BEGIN_GROUP = auto()
    END_GROUP = auto()
    MATH_SHIFT = auto()  # value is "$" or "$$"
    PARAMETER = auto()
    SUPERSCRIPT = auto()
    SUBSCRIPT = auto()

    # Content
    CHARACTER = auto()  # letter, other, active, align tab, ignored, invalid
    COMMENT = auto()  # comment char up to end of line, exclusive

    # Whitespace
    SPACE = auto()
    END_OF_LINE = auto()  # \n, \r or \r\n

    EOF = auto()


@dataclass(frozen=True, slots=True)
class Position:
    """Source position, 1-based line and column, 0-based byte offset."""

    line: int
    column: int
    offset: int


@dataclass(frozen=True, slots=True)
class Span:
    """Source range from start to end position within one file."""

    start: Position
    end: Position
    file_id: int = 0

    @property
    def length(self) -> int:
        return self.end.offset - self.start.offset


@dataclass(frozen=True, slots=True)
class Token:
    """A single lexer token with semantic value and original source text."""

    type: TokenType
    value: str
    raw: str
    span: Span
    catcode: Catcode | None = None
    expanded: bool = False

    @property
    def is_blank(self) -> bool:
        return self.type in (TokenType.SPACE, TokenType.END_OF_LINE)

    def same_as(self, other: Token) -> bool:
        """Return True if both tokens match as macro delimiters."""
        if self.is_blank and other.is_blank:
            # A line end reads as a space
            return True
        if self.type != other.type:
            return False
        if self.type == TokenType.EOF:
            return True
        return self.value == other.value

    def control_text(self) -> str:
        """Source text of a control sequence without eaten trailing spaces."""
        if self.type == TokenType.CONTROL_WORD:
            return self.raw[: 1 + len(self.value)]
        return self.raw


def byte_width(ch: str) -> int:
    """Return the number of source bytes a decoded character occupied."""
    if "\udc80" <= ch <= "\udcff":
        # surrogateescape placeholder for one undecodable byte
        return 1
    return len(ch.encode("utf-8"))
