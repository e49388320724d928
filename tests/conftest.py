"""Shared test fixtures and helpers."""

from __future__ import annotations

import pytest

from texloom.ast import Command, Document, Environment, Node
from texloom.errors import Diagnostic, DiagnosticKind
from texloom.expand import expand
from texloom.lexer import lex as lex_source
from texloom.macros import Scope
from texloom.parser import parse
from texloom.tokens import Token, TokenType


@pytest.fixture
def lex():
    """Return a helper that tokenizes source and returns tokens (excluding EOF)."""

    def _lex(source: str | bytes) -> list[Token]:
        tokens, _ = lex_source(source)
        # Strip trailing EOF for convenience
        return [t for t in tokens if t.type != TokenType.EOF]

    return _lex


@pytest.fixture
def parse_source():
    """Return a helper that parses source and returns (Document, diagnostics)."""

    def _parse(source: str | bytes, file_id: int = 0) -> tuple[Document, list[Diagnostic]]:
        return parse(source, file_id)

    return _parse


@pytest.fixture
def expand_source():
    """Return a helper that parses and expands source, returning the raw output text."""

    def _expand(source: str, scope: Scope | None = None) -> tuple[str, list[Diagnostic]]:
        from texloom.ast import source_text

        doc, _ = parse(source)
        result, diagnostics = expand(doc, scope)
        return source_text(result), diagnostics

    return _expand


def assert_types(tokens: list[Token], expected: list[TokenType]) -> None:
    """Assert that the token types match the expected list."""
    actual = [t.type for t in tokens]
    assert actual == expected, f"Expected {expected}, got {actual}"


def assert_values(tokens: list[Token], expected: list[str]) -> None:
    """Assert that the token values match the expected list."""
    actual = [t.value for t in tokens]
    assert actual == expected, f"Expected {expected}, got {actual}"


def kinds(diagnostics: list[Diagnostic]) -> list[DiagnosticKind]:
    return [d.kind for d in diagnostics]


def top_nodes(doc: Document) -> list[Node]:
    """Return the root's direct children, skipping whitespace leaves."""
    result = []
    for child in doc.children(doc.root):
        node = doc.nodes[child]
        text = doc.text(child)
        if text.strip() == "" and not isinstance(node, (Command, Environment)):
            continue
        result.append(node)
    return result


def find_commands(doc: Document, name: str) -> list[Command]:
    return [node for _, node in doc.walk() if isinstance(node, Command) and node.name == name]
