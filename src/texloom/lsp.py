"""Minimal LSP server for texloom: diagnostics and whole-document formatting."""

from __future__ import annotations

from pathlib import Path

from lsprotocol.types import (
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_FORMATTING,
    Diagnostic,
    DiagnosticSeverity,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentFormattingParams,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextDocumentSyncKind,
    TextEdit,
)
from pygls.lsp.server import LanguageServer

from texloom import errors
from texloom.expand import expand
from texloom.files import ANONYMOUS, FileTable
from texloom.format import format
from texloom.parser import parse
from texloom.tokens import Span

server = LanguageServer("texloom-lsp", "0.1.0", text_document_sync_kind=TextDocumentSyncKind.Full)


def _range(span: Span) -> Range:
    return Range(
        start=Position(line=span.start.line - 1, character=span.start.column - 1),
        end=Position(line=span.end.line - 1, character=span.end.column - 1),
    )


def _to_lsp(diag: errors.Diagnostic) -> Diagnostic:
    severity = (
        DiagnosticSeverity.Error
        if diag.severity is errors.Severity.ERROR
        else DiagnosticSeverity.Warning
    )
    return Diagnostic(
        range=_range(diag.span),
        message=diag.message,
        severity=severity,
        code=diag.kind.value,
        source="texloom",
    )


def _validate(ls: LanguageServer, uri: str) -> None:
    """Parse and expand the buffer, then publish its diagnostics."""
    doc = ls.workspace.get_text_document(uri)
    path = Path(doc.path) if doc.path else None

    files = FileTable(working_dir=path.parent if path is not None else None)
    file_id = ANONYMOUS
    if path is not None:
        file_id = files.register(path).file_id
    files.set_source(file_id, doc.source.encode("utf-8"))

    tree, parse_diagnostics = files.document(file_id)
    _, expand_diagnostics = expand(tree, files=files)

    # Problems inside included files belong to those files' buffers
    diagnostics = [
        _to_lsp(d)
        for d in (*parse_diagnostics, *expand_diagnostics)
        if d.span.file_id == file_id
    ]
    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: DidOpenTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params: DidChangeTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


def _format_edits(source: str) -> list[TextEdit]:
    """One whole-buffer replacement, or nothing when already formatted."""
    tree, _ = parse(source)
    formatted = format(tree)
    if formatted == source:
        return []
    line_count = len(source.splitlines()) + 1
    return [
        TextEdit(
            range=Range(start=Position(line=0, character=0), end=Position(line=line_count, character=0)),
            new_text=formatted,
        )
    ]


@server.feature(TEXT_DOCUMENT_FORMATTING)
def formatting(ls: LanguageServer, params: DocumentFormattingParams) -> list[TextEdit]:
    doc = ls.workspace.get_text_document(params.text_document.uri)
    return _format_edits(doc.source)


def main() -> None:
    server.start_io()
