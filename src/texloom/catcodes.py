"""Scoped, mutable character-to-catcode table."""

from __future__ import annotations

import string

from texloom.tokens import Catcode


def _default_assignment() -> dict[str, Catcode]:
    table: dict[str, Catcode] = {
        "\\": Catcode.ESCAPE,
        "{": Catcode.BEGIN_GROUP,
        "}": Catcode.END_GROUP,
        "$": Catcode.MATH_SHIFT,
        "&": Catcode.ALIGN_TAB,
        "\n": Catcode.END_OF_LINE,
        "\r": Catcode.END_OF_LINE,
        "#": Catcode.PARAMETER,
        "^": Catcode.SUPERSCRIPT,
        "_": Catcode.SUBSCRIPT,
        "\0": Catcode.IGNORED,
        " ": Catcode.SPACE,
        "\t": Catcode.SPACE,
        "~": Catcode.ACTIVE,
        "%": Catcode.COMMENT,
        "\x7f": Catcode.INVALID,
    }
    for ch in string.ascii_letters:
        table[ch] = Catcode.LETTER
    return table


DEFAULT_CATCODES: dict[str, Catcode] = _default_assignment()


class CatcodeTable:
    """Map characters to catcodes with group-local assignments.

    Lookups walk the frames from innermost to outermost. Characters never
    assigned fall back to OTHER, except undecodable-byte placeholders which
    are INVALID.
    """

    def __init__(self, overrides: dict[str, Catcode] | None = None) -> None:
        base = dict(DEFAULT_CATCODES)
        if overrides:
            base.update(overrides)
        self._frames: list[dict[str, Catcode]] = [base]

    def __getitem__(self, ch: str) -> Catcode:
        for frame in reversed(self._frames):
            code = frame.get(ch)
            if code is not None:
                return code
        if "\udc80" <= ch <= "\udcff":
            return Catcode.INVALID
        return Catcode.OTHER

    def assign(self, ch: str, code: Catcode, *, global_: bool = False) -> None:
        """Set the catcode of *ch* in the current frame (or all frames)."""
        if global_:
            for frame in self._frames[1:]:
                frame.pop(ch, None)
            self._frames[0][ch] = code
        else:
            self._frames[-1][ch] = code

    def push(self) -> None:
        self._frames.append({})

    def pop(self) -> None:
        if len(self._frames) > 1:
            self._frames.pop()

    @property
    def depth(self) -> int:
        return len(self._frames) - 1

    def copy(self) -> CatcodeTable:
        """Return a flattened copy holding the currently visible assignments."""
        merged: dict[str, Catcode] = {}
        for frame in self._frames:
            merged.update(frame)
        table = CatcodeTable()
        table._frames = [merged]
        return table
