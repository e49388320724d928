"""Formatter: canonical whitespace layout for a parsed document.

Only whitespace changes: indentation follows group and environment
nesting, blank-line runs collapse to one, major structural commands get
a blank line on either side, and verbatim bodies are left untouched.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from texloom.ast import Command, Comment, Document, Environment, Group, Include, Leaf, Math, NodeId
from texloom.commands import VERBATIM
from texloom.tokens import Token, TokenType

MAJOR_COMMANDS: frozenset[str] = frozenset(
    {
        "documentclass",
        "usepackage",
        "RequirePackage",
        "begin{document}",
        "end{document}",
        "part",
        "chapter",
        "section",
    }
)


@dataclass(frozen=True, slots=True)
class FormatOptions:
    indent: str = "  "
    major_commands: frozenset[str] = MAJOR_COMMANDS
    unindented_environments: frozenset[str] = frozenset({"document"})
    verbatim_environments: frozenset[str] = VERBATIM


@dataclass(frozen=True, slots=True)
class _Item:
    """A token with its layout context."""

    token: Token
    depth: int
    verbatim: bool = False
    key: str | None = None  # major command starting at this token
    block: str | None = None  # major command whose arguments hold this token


@dataclass(slots=True)
class _Line:
    items: list[_Item]
    end: _Item | None  # the END_OF_LINE item, absent on the last line


# ---------------------------------------------------------------------------
# Tree walk
# ---------------------------------------------------------------------------


class _Walker:
    def __init__(self, options: FormatOptions) -> None:
        self._options = options

    def walk(
        self, doc: Document, node_id: NodeId, depth: int, block: str | None
    ) -> Iterator[_Item]:
        node = doc.nodes[node_id]

        if isinstance(node, (Leaf, Comment)):
            yield _Item(doc.tokens[node.token], depth, block=block)

        elif isinstance(node, (Group, Math)):
            inner = depth if node.open is None else depth + 1
            if node.open is not None:
                yield _Item(doc.tokens[node.open], depth, block=block)
            for child in node.children:
                yield from self.walk(doc, child, inner, block)
            if node.close is not None:
                yield _Item(doc.tokens[node.close], depth, block=block)

        elif isinstance(node, Command):
            key = node.name if node.name in self._options.major_commands else None
            yield from self._command(doc, node, depth, key, block)

        elif isinstance(node, Environment):
            yield from self._environment(doc, node, depth, block)

        elif isinstance(node, Include):
            sub = node.document
            yield from self.walk(sub, sub.root, depth, block)

    def _command(
        self, doc: Document, node: Command, depth: int, key: str | None, block: str | None
    ) -> Iterator[_Item]:
        inside = key or block
        yield _Item(doc.tokens[node.token], depth, key=key, block=inside)
        if node.star is not None:
            yield _Item(doc.tokens[node.star], depth, block=inside)
        for arg in node.arguments:
            for lead in arg.leading:
                yield from self.walk(doc, lead, depth, inside)
            yield from self.walk(doc, arg.content, depth, inside)

    def _environment(
        self, doc: Document, node: Environment, depth: int, block: str | None
    ) -> Iterator[_Item]:
        options = self._options
        yield from self._delimiter(doc, node.begin, f"begin{{{node.name}}}", depth, block)

        inner = depth if node.name in options.unindented_environments else depth + 1
        if node.name in options.verbatim_environments:
            for child in node.body:
                for tok in doc.iter_tokens(child):
                    yield _Item(tok, inner, verbatim=True)
        else:
            for child in node.body:
                yield from self.walk(doc, child, inner, block)

        if node.end is not None:
            yield from self._delimiter(doc, node.end, f"end{{{node.name}}}", depth, block)

    def _delimiter(
        self, doc: Document, node_id: NodeId, key: str, depth: int, block: str | None
    ) -> Iterator[_Item]:
        node = doc.nodes[node_id]
        if not isinstance(node, Command):
            yield from self.walk(doc, node_id, depth, block)
            return
        major = key if key in self._options.major_commands else None
        yield from self._command(doc, node, depth, major, block)


def _lines(items: Iterator[_Item]) -> Iterator[_Line]:
    current: list[_Item] = []
    for item in items:
        if item.token.type == TokenType.END_OF_LINE:
            yield _Line(current, item)
            current = []
        elif item.token.type != TokenType.EOF:
            current.append(item)
    if current:
        yield _Line(current, None)


# ---------------------------------------------------------------------------
# Line rendering
# ---------------------------------------------------------------------------


def _first_significant(line: _Line) -> _Item | None:
    for item in line.items:
        if item.token.type != TokenType.SPACE:
            return item
    return None


def _is_raw(line: _Line) -> bool:
    """True for lines inside a verbatim body."""
    first = _first_significant(line)
    if first is not None:
        return first.verbatim
    return any(item.verbatim for item in line.items) or (
        line.end is not None and line.end.verbatim
    )


def _render(items: list[_Item]) -> str:
    parts = [item.token.raw for item in items]
    if items and items[-1].token.type == TokenType.CONTROL_WORD:
        parts[-1] = items[-1].token.control_text()
    return "".join(parts)


def _strip(items: list[_Item]) -> tuple[list[_Item], bool]:
    """Drop trailing spaces; report whether any whitespace was dropped."""
    end = len(items)
    while end > 0 and items[end - 1].token.type == TokenType.SPACE:
        end -= 1
    trimmed = items[:end]
    had_space = end < len(items)
    if trimmed and trimmed[-1].token.type == TokenType.CONTROL_WORD:
        tok = trimmed[-1].token
        had_space = had_space or tok.raw != tok.control_text()
    return trimmed, had_space


def _render_line(line: _Line, indent: str) -> str:
    items = list(line.items)
    start = 0
    while start < len(items) and items[start].token.type == TokenType.SPACE:
        start += 1
    items, _ = _strip(items[start:])
    if not items:
        return ""

    prefix = indent * items[0].depth
    last = items[-1].token
    if last.type != TokenType.COMMENT or len(items) == 1:
        return prefix + _render(items)

    body, gap = _strip(items[:-1])
    text = prefix + _render(body)
    if gap:
        # Keep the comment at its original column when the code allows it
        pad = max(last.span.start.column - 1 - len(text), 1)
        text += " " * pad
    return text + last.raw.rstrip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def format(doc: Document, options: FormatOptions | None = None) -> str:
    """Re-serialize *doc* with canonical whitespace."""
    if options is None:
        options = FormatOptions()
    walker = _Walker(options)

    out: list[str] = []
    pending_blank = False
    prev_key: str | None = None

    for line in _lines(walker.walk(doc, doc.root, 0, None)):
        if _is_raw(line):
            if pending_blank:
                out.append("")
                pending_blank = False
            out.append("".join(item.token.raw for item in line.items))
            prev_key = None
            continue

        first = _first_significant(line)
        if first is None or (first.token.type == TokenType.COMMENT and first is line.items[-1]):
            if first is None:
                pending_blank = bool(out)
                continue
            # Comment-only lines are kept as written and do not break blocks
            if pending_blank:
                out.append("")
                pending_blank = False
            out.append("".join(item.token.raw for item in line.items).rstrip())
            continue

        key = first.key or first.block
        need_blank = pending_blank
        if out and key != prev_key and (key is not None or prev_key is not None):
            need_blank = True
        if need_blank and out:
            out.append("")
        out.append(_render_line(line, options.indent))
        pending_blank = False
        prev_key = key

    if not out:
        return ""
    return "\n".join(out) + "\n"
