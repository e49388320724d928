"""--debug tree dump to stderr."""

from __future__ import annotations

import sys
from typing import TextIO

from texloom.ast import (
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


def dump_tree(doc: Document, *, file: TextIO = sys.stderr) -> None:
    """Print a human-readable tree to *file*."""
    file.write(f"Document file={doc.file_id} size={doc.size}\n")
    _dump_node(doc, doc.root, 1, file)


def _indent(depth: int) -> str:
    return "  " * depth


def _dump_node(doc: Document, node_id: NodeId, depth: int, f: TextIO) -> None:
    node = doc.nodes[node_id]
    pad = _indent(depth)

    if isinstance(node, Leaf):
        tok = doc.tokens[node.token]
        if tok.is_blank:
            f.write(f"{pad}{tok.type.name}\n")
        else:
            f.write(f"{pad}{tok.type.name}({tok.raw!r})\n")
    elif isinstance(node, Comment):
        f.write(f"{pad}Comment({node.text!r})\n")
    elif isinstance(node, Group):
        label = f"Group {node.delimiter}" if node.delimiter else "Root"
        suffix = "" if node.closed else " (unclosed)"
        f.write(f"{pad}{label}{suffix}\n")
        for child in node.children:
            _dump_node(doc, child, depth + 1, f)
    elif isinstance(node, Math):
        kind = "display" if node.display else "inline"
        suffix = "" if node.closed else " (unclosed)"
        f.write(f"{pad}Math {kind}{suffix}\n")
        for child in node.children:
            _dump_node(doc, child, depth + 1, f)
    elif isinstance(node, Command):
        star = "*" if node.star is not None else ""
        f.write(f"{pad}Command \\{node.name}{star}\n")
        for arg in node.arguments:
            f.write(f"{_indent(depth + 1)}Arg {arg.kind.value}\n")
            _dump_node(doc, arg.content, depth + 2, f)
    elif isinstance(node, Environment):
        suffix = "" if node.matched else " (mismatched)"
        f.write(f"{pad}Environment {node.name}{suffix}\n")
        for child in node.body:
            _dump_node(doc, child, depth + 1, f)
    elif isinstance(node, Include):
        f.write(f"{pad}Include {node.path} (file {node.file_id})\n")
        sub = node.document
        _dump_node(sub, sub.root, depth + 1, f)
