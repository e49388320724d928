"""Dependency collector: files a document references through known commands."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from texloom.ast import ArgumentKind, Command, Document, Include, NodeId
from texloom.errors import Diagnostic, DiagnosticKind, Severity
from texloom.files import FileTable

IMAGE_EXTENSIONS: tuple[str, ...] = (".pdf", ".png", ".jpg", ".jpeg", ".eps", ".svg")


class DependencyKind(Enum):
    TEX = "tex"
    IMAGE = "image"
    BIBLIOGRAPHY = "bibliography"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class DependencyRule:
    """A command whose mandatory argument *argument* names a file.

    *extensions* are tried in order when the name has no suffix.
    """

    command: str
    argument: int = 0
    extensions: tuple[str, ...] = ()
    split_commas: bool = False


DEFAULT_RULES: tuple[DependencyRule, ...] = (
    DependencyRule("input", extensions=(".tex",)),
    DependencyRule("include", extensions=(".tex",)),
    DependencyRule("subfile", extensions=(".tex",)),
    DependencyRule("includegraphics", extensions=IMAGE_EXTENSIONS),
    DependencyRule("bibliography", extensions=(".bib",), split_commas=True),
    DependencyRule("addbibresource", extensions=(".bib",), split_commas=True),
    DependencyRule("lstinputlisting"),
    DependencyRule("inputminted", argument=1),
)


def dependency_kind(path: Path) -> DependencyKind:
    suffix = path.suffix.lower()
    if suffix in (".tex", ".sty", ".cls", ".ltx"):
        return DependencyKind.TEX
    if suffix in IMAGE_EXTENSIONS:
        return DependencyKind.IMAGE
    if suffix == ".bib":
        return DependencyKind.BIBLIOGRAPHY
    return DependencyKind.OTHER


class _Collector:
    def __init__(self, rules: tuple[DependencyRule, ...], files: FileTable) -> None:
        self._rules = {rule.command: rule for rule in rules}
        self._files = files
        self.paths: list[Path] = []
        self.diagnostics: list[Diagnostic] = []
        self._seen: set[Path] = set()

    def _add(self, path: Path) -> None:
        canonical = path.resolve()
        if canonical not in self._seen:
            self._seen.add(canonical)
            self.paths.append(canonical)

    def visit(self, doc: Document, node_id: NodeId, ancestors: tuple[int, ...]) -> None:
        node = doc.nodes[node_id]
        if isinstance(node, Include):
            self._add(Path(node.path))
            sub = node.document
            self.visit(sub, sub.root, (*ancestors, node.file_id))
            return

        for child in doc.children(node_id):
            self.visit(doc, child, ancestors)

        if isinstance(node, Command) and node.name in self._rules:
            self._command(doc, node_id, node, self._rules[node.name], ancestors)

    def _command(
        self,
        doc: Document,
        node_id: NodeId,
        node: Command,
        rule: DependencyRule,
        ancestors: tuple[int, ...],
    ) -> None:
        mandatory = [arg for arg in node.arguments if arg.kind == ArgumentKind.MANDATORY]
        if rule.argument >= len(mandatory):
            return
        text = doc.inner_text(mandatory[rule.argument].content).strip()
        names = text.split(",") if rule.split_commas else [text]

        for name in (n.strip() for n in names):
            if not name:
                continue
            path = self._files.resolve(name, ancestors, rule.extensions)
            if path is None:
                self.diagnostics.append(
                    Diagnostic.make(
                        DiagnosticKind.FILE_NOT_FOUND,
                        f"\\{node.name}: cannot find '{name}'",
                        node.span,
                        node=node_id,
                        severity=Severity.WARNING,
                    )
                )
                continue
            self._add(path)


def collect_dependencies(
    doc: Document,
    *,
    rules: tuple[DependencyRule, ...] | None = None,
    files: FileTable | None = None,
) -> tuple[list[Path], list[Diagnostic]]:
    """Return the canonical paths *doc* references, in first-occurrence order."""
    collector = _Collector(
        rules if rules is not None else DEFAULT_RULES,
        files if files is not None else FileTable(),
    )
    collector.visit(doc, doc.root, (doc.file_id,))
    return collector.paths, collector.diagnostics
