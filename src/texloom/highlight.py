"""Syntax highlighter: classify every byte of a document's own file."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from texloom.ast import (
    ArgumentKind,
    Command,
    Comment,
    Document,
    Environment,
    Group,
    Include,
    Leaf,
    Math,
    NodeId,
)
from texloom.tokens import Catcode, Position, Span, Token, TokenType


class Category(Enum):
    COMMENT = "comment"
    COMMAND_NAME = "command"
    ENVIRONMENT_NAME = "environment"
    ARGUMENT = "argument"
    TEXT = "text"
    MATH = "math"
    ERROR = "error"


_RANK: dict[Category, int] = {
    Category.TEXT: 0,
    Category.ARGUMENT: 1,
    Category.COMMAND_NAME: 2,
    Category.ENVIRONMENT_NAME: 2,
    Category.MATH: 3,
    Category.COMMENT: 4,
    Category.ERROR: 5,
}


def _stronger(a: Category, b: Category) -> Category:
    return b if _RANK[b] > _RANK[a] else a


class _Classifier:
    def __init__(self, doc: Document) -> None:
        self._doc = doc
        self._errors = {d.node for d in doc.diagnostics if d.node is not None}
        self.marks: list[tuple[Token, Category]] = []

    def _mark(self, index: int | None, category: Category, context: Category) -> None:
        if index is not None:
            self._mark_token(self._doc.tokens[index], category, context)

    def _mark_token(self, tok: Token, category: Category, context: Category) -> None:
        if tok.expanded or not tok.raw or tok.span.file_id != self._doc.file_id:
            return
        if tok.type == TokenType.CHARACTER and tok.catcode == Catcode.INVALID:
            category = Category.ERROR
        self.marks.append((tok, _stronger(context, category)))

    def visit(self, node_id: NodeId, context: Category) -> None:
        if node_id in self._errors:
            context = Category.ERROR
        node = self._doc.nodes[node_id]

        if isinstance(node, Comment):
            self._mark(node.token, Category.COMMENT, context)
        elif isinstance(node, Leaf):
            self._mark(node.token, Category.TEXT, context)
        elif isinstance(node, Math):
            context = _stronger(context, Category.MATH)
            self._mark(node.open, context, context)
            for child in node.children:
                self.visit(child, context)
            self._mark(node.close, context, context)
        elif isinstance(node, Group):
            self._mark(node.open, context, context)
            for child in node.children:
                self.visit(child, context)
            self._mark(node.close, context, context)
        elif isinstance(node, Environment):
            self._environment_command(node.begin, context)
            for child in node.body:
                self.visit(child, context)
            if node.end is not None:
                self._environment_command(node.end, context)
        elif isinstance(node, Command):
            self._command(node_id, context)
        elif isinstance(node, Include):
            # The directive is ours; the included text belongs to another file
            self.visit(node.command, context)

    def _command(self, node_id: NodeId, context: Category) -> None:
        node = self._doc.nodes[node_id]
        assert isinstance(node, Command)
        self._mark(node.token, Category.COMMAND_NAME, context)
        self._mark(node.star, Category.COMMAND_NAME, context)
        argument = _stronger(context, Category.ARGUMENT)
        for arg in node.arguments:
            for lead in arg.leading:
                self.visit(lead, context)
            self.visit(arg.content, argument)

    def _environment_command(self, node_id: NodeId, context: Category) -> None:
        if node_id in self._errors:
            context = Category.ERROR
        node = self._doc.nodes[node_id]
        if not isinstance(node, Command) or not node.arguments:
            self.visit(node_id, context)
            return
        self._mark(node.token, Category.COMMAND_NAME, context)
        name, *rest = node.arguments
        for lead in name.leading:
            self.visit(lead, context)
        self._name_group(name.content, context)
        argument = _stronger(context, Category.ARGUMENT)
        for arg in rest:
            for lead in arg.leading:
                self.visit(lead, context)
            self.visit(arg.content, argument)

    def _name_group(self, node_id: NodeId, context: Category) -> None:
        node = self._doc.nodes[node_id]
        if node_id in self._errors:
            context = Category.ERROR
        name = _stronger(context, Category.ENVIRONMENT_NAME)
        if isinstance(node, Group):
            self._mark(node.open, Category.ARGUMENT, context)
            for child in node.children:
                for tok in self._doc.iter_tokens(child):
                    self._mark_token(tok, name, context)
            self._mark(node.close, Category.ARGUMENT, context)
        else:
            self.visit(node_id, name)


def highlight(doc: Document) -> list[tuple[Span, Category]]:
    """Return non-overlapping (Span, Category) pairs tiling *doc*'s own bytes."""
    classifier = _Classifier(doc)
    classifier.visit(doc.root, Category.TEXT)
    marks = sorted(classifier.marks, key=lambda mark: mark[0].span.start.offset)

    result: list[tuple[Span, Category]] = []
    cursor = Position(1, 1, 0)

    def emit(start: Position, end: Position, category: Category) -> None:
        if end.offset <= start.offset:
            return
        if result and result[-1][1] == category and result[-1][0].end.offset == start.offset:
            prev = result[-1][0]
            result[-1] = (Span(prev.start, end, doc.file_id), category)
        else:
            result.append((Span(start, end, doc.file_id), category))

    for tok, category in marks:
        span = tok.span
        if span.start.offset < cursor.offset:
            # Macro arguments can repeat a token; the first occurrence wins
            continue
        emit(cursor, span.start, Category.TEXT)
        emit(span.start, span.end, category)
        cursor = span.end

    end = doc.end_span.end
    if cursor.offset < doc.size:
        emit(cursor, end, Category.TEXT)
    return result


def filter_spans(
    spans: Iterable[tuple[Span, Category]], categories: Iterable[Category]
) -> list[tuple[Span, Category]]:
    wanted = set(categories)
    return [(span, category) for span, category in spans if category in wanted]
