"""Arena-owned tree nodes for parsed TeX documents."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Union

from texloom.tokens import Span, Token, TokenType

if TYPE_CHECKING:
    from texloom.errors import Diagnostic

NodeId = int


class ArgumentKind(Enum):
    MANDATORY = "mandatory"
    OPTIONAL = "optional"


@dataclass(frozen=True, slots=True)
class Argument:
    """One command argument; *leading* holds skipped whitespace/comment nodes."""

    kind: ArgumentKind
    content: NodeId
    leading: tuple[NodeId, ...] = ()


@dataclass(frozen=True, slots=True)
class Leaf:
    """A single token kept as-is (text, space, end of line, ...)."""

    token: int
    span: Span


@dataclass(frozen=True, slots=True)
class Comment:
    """A comment, from the comment character to the end of the line."""

    text: str
    token: int
    span: Span


@dataclass(frozen=True, slots=True)
class Group:
    """Balanced `{...}` or `[...]` content; the document root has no delimiter."""

    children: tuple[NodeId, ...]
    open: int | None
    close: int | None
    closed: bool
    delimiter: str
    span: Span


@dataclass(frozen=True, slots=True)
class Command:
    """A control sequence with the arguments its signature consumed."""

    name: str
    token: int
    star: int | None
    arguments: tuple[Argument, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class Environment:
    """A `\\begin{name} ... \\end{name}` region."""

    name: str
    begin: NodeId
    end: NodeId | None
    body: tuple[NodeId, ...]
    matched: bool
    begin_span: Span
    end_span: Span | None
    span: Span


@dataclass(frozen=True, slots=True)
class Math:
    """Inline (`$`, `\\(`) or display (`$$`, `\\[`) math."""

    display: bool
    children: tuple[NodeId, ...]
    open: int
    close: int | None
    closed: bool
    span: Span


@dataclass(frozen=True, slots=True)
class Include:
    """An inclusion directive spliced with the expanded included document."""

    command: NodeId
    file_id: int
    path: str
    document: Document
    span: Span


Node = Union[Leaf, Comment, Group, Command, Environment, Math, Include]


@dataclass
class Document:
    """One parsed file: its tokens, node arena, and root group."""

    file_id: int
    source: str
    tokens: list[Token]
    nodes: list[Node]
    root: NodeId
    diagnostics: list[Diagnostic] = field(default_factory=list)
    size: int = 0

    def node(self, node_id: NodeId) -> Node:
        return self.nodes[node_id]

    def token(self, index: int) -> Token:
        return self.tokens[index]

    def children(self, node_id: NodeId) -> Iterator[NodeId]:
        """Yield direct child node ids in document order."""
        node = self.nodes[node_id]
        if isinstance(node, (Group, Math)):
            yield from node.children
        elif isinstance(node, Command):
            for arg in node.arguments:
                yield from arg.leading
                yield arg.content
        elif isinstance(node, Environment):
            yield node.begin
            yield from node.body
            if node.end is not None:
                yield node.end
        elif isinstance(node, Include):
            yield node.command

    def iter_tokens(self, node_id: NodeId | None = None) -> Iterator[Token]:
        """Yield the tokens under a node in source order (own document only)."""
        if node_id is None:
            node_id = self.root
        node = self.nodes[node_id]
        if isinstance(node, (Leaf, Comment)):
            yield self.tokens[node.token]
        elif isinstance(node, (Group, Math)):
            if node.open is not None:
                yield self.tokens[node.open]
            for child in node.children:
                yield from self.iter_tokens(child)
            if node.close is not None:
                yield self.tokens[node.close]
        elif isinstance(node, Command):
            yield self.tokens[node.token]
            if node.star is not None:
                yield self.tokens[node.star]
            for arg in node.arguments:
                for lead in arg.leading:
                    yield from self.iter_tokens(lead)
                yield from self.iter_tokens(arg.content)
        else:
            for child in self.children(node_id):
                yield from self.iter_tokens(child)

    def text(self, node_id: NodeId | None = None) -> str:
        """Raw source text covered by a node."""
        return "".join(tok.raw for tok in self.iter_tokens(node_id))

    def inner_text(self, node_id: NodeId) -> str:
        """Raw text of a group's content without its delimiters."""
        node = self.nodes[node_id]
        if isinstance(node, Group):
            return "".join(self.text(child) for child in node.children)
        return self.text(node_id)

    def walk(self, node_id: NodeId | None = None) -> Iterator[tuple[NodeId, Node]]:
        """Pre-order traversal of the subtree rooted at *node_id*."""
        if node_id is None:
            node_id = self.root
        stack = [node_id]
        while stack:
            current = stack.pop()
            yield current, self.nodes[current]
            stack.extend(reversed(list(self.children(current))))

    @property
    def end_span(self) -> Span:
        """Zero-width span at the end of the file."""
        eof = self.tokens[-1]
        assert eof.type == TokenType.EOF
        return eof.span


def source_text(doc: Document, node_id: NodeId | None = None) -> str:
    """Render raw text of a document, inlining included sub-documents."""
    if node_id is None:
        node_id = doc.root
    node = doc.nodes[node_id]
    if isinstance(node, Include):
        return source_text(node.document)
    if isinstance(node, (Leaf, Comment)):
        return doc.tokens[node.token].raw
    parts: list[str] = []
    if isinstance(node, (Group, Math)):
        if node.open is not None:
            parts.append(doc.tokens[node.open].raw)
        parts.extend(source_text(doc, child) for child in node.children)
        if node.close is not None:
            parts.append(doc.tokens[node.close].raw)
    elif isinstance(node, Command):
        parts.append(doc.tokens[node.token].raw)
        if node.star is not None:
            parts.append(doc.tokens[node.star].raw)
        for arg in node.arguments:
            parts.extend(source_text(doc, lead) for lead in arg.leading)
            parts.append(source_text(doc, arg.content))
    else:
        parts.extend(source_text(doc, child) for child in doc.children(node_id))
    return "".join(parts)
