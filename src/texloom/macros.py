"""Macro definitions and the scoped definition table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from texloom.tokens import Token


@dataclass(frozen=True, slots=True)
class Undelimited:
    """Parameter taking one token or one balanced group."""


@dataclass(frozen=True, slots=True)
class Delimited:
    """Parameter taking everything up to its stop-token sequence."""

    stop: tuple[Token, ...]


@dataclass(frozen=True, slots=True)
class OptionalParam:
    """LaTeX-style optional first parameter: `[...]` or the default."""

    default: tuple[Token, ...]


Param = Union[Undelimited, Delimited, OptionalParam]


@dataclass(frozen=True, slots=True)
class MacroDefinition:
    """A named substitution rule.

    *prefix* holds tokens that must follow the macro name literally before
    the first parameter (`\\def\\foo.#1{...}`).
    """

    name: str
    params: tuple[Param, ...]
    replacement: tuple[Token, ...]
    is_global: bool = False
    prefix: tuple[Token, ...] = ()

    @property
    def arity(self) -> int:
        return len(self.params)


class Scope:
    """Stack of name -> definition frames; frame 0 holds global definitions.

    Lookups search innermost to outermost. Pushing a frame copies nothing.
    """

    def __init__(self, definitions: dict[str, MacroDefinition] | None = None) -> None:
        self._frames: list[dict[str, MacroDefinition]] = [dict(definitions or {})]

    @property
    def depth(self) -> int:
        return len(self._frames) - 1

    def push(self) -> None:
        self._frames.append({})

    def pop(self) -> None:
        """Leave a group, discarding its local definitions."""
        if len(self._frames) > 1:
            self._frames.pop()

    def lookup(self, name: str) -> MacroDefinition | None:
        for frame in reversed(self._frames):
            defn = frame.get(name)
            if defn is not None:
                return defn
        return None

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None

    def define(self, defn: MacroDefinition) -> None:
        """Bind in the innermost frame, or in the bottom frame when global."""
        if defn.is_global:
            # A global assignment also removes shadowing local bindings
            for frame in self._frames[1:]:
                frame.pop(defn.name, None)
            self._frames[0][defn.name] = defn
        else:
            self._frames[-1][defn.name] = defn

    @classmethod
    def from_source(cls, source: str) -> Scope:
        """Build a scope from TeX definitions, e.g. a configured preamble."""
        from texloom.expand import expand
        from texloom.parser import parse

        scope = cls()
        doc, _ = parse(source)
        expand(doc, scope)
        return scope
