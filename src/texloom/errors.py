"""Diagnostics with formatted source context."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from texloom.tokens import Span


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class DiagnosticKind(Enum):
    UNTERMINATED_GROUP = "UnterminatedGroup"
    MISMATCHED_ENVIRONMENT = "MismatchedEnvironment"
    MACRO_ARITY_MISMATCH = "MacroArityMismatch"
    UNBALANCED_DELIMITED_SCAN = "UnbalancedDelimitedScan"
    CYCLIC_INCLUDE = "CyclicInclude"
    FILE_NOT_FOUND = "FileNotFound"
    MAX_EXPANSION_DEPTH_EXCEEDED = "MaxExpansionDepthExceeded"
    MAX_INCLUSION_DEPTH_EXCEEDED = "MaxInclusionDepthExceeded"
    IO_ERROR = "IoError"
    INVALID_CHARACTER = "InvalidCharacter"


_DEFAULT_SEVERITY: dict[DiagnosticKind, Severity] = {
    DiagnosticKind.UNTERMINATED_GROUP: Severity.ERROR,
    DiagnosticKind.MISMATCHED_ENVIRONMENT: Severity.ERROR,
    DiagnosticKind.MACRO_ARITY_MISMATCH: Severity.WARNING,
    DiagnosticKind.UNBALANCED_DELIMITED_SCAN: Severity.WARNING,
    DiagnosticKind.CYCLIC_INCLUDE: Severity.ERROR,
    DiagnosticKind.FILE_NOT_FOUND: Severity.ERROR,
    DiagnosticKind.MAX_EXPANSION_DEPTH_EXCEEDED: Severity.ERROR,
    DiagnosticKind.MAX_INCLUSION_DEPTH_EXCEEDED: Severity.ERROR,
    DiagnosticKind.IO_ERROR: Severity.ERROR,
    DiagnosticKind.INVALID_CHARACTER: Severity.ERROR,
}


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A recovered problem, attached to a span and optionally to a node."""

    kind: DiagnosticKind
    message: str
    span: Span
    severity: Severity
    node: int | None = None

    @classmethod
    def make(
        cls,
        kind: DiagnosticKind,
        message: str,
        span: Span,
        *,
        node: int | None = None,
        severity: Severity | None = None,
    ) -> Diagnostic:
        if severity is None:
            severity = _DEFAULT_SEVERITY[kind]
        return cls(kind, message, span, severity, node)

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def format(self, source: str = "", filename: str = "<input>") -> str:
        """Render the diagnostic with a caret-underlined source excerpt."""
        lines = source.splitlines(keepends=True)
        line_idx = self.span.start.line - 1
        col = self.span.start.column

        if 0 <= line_idx < len(lines):
            source_line = lines[line_idx].rstrip("\n").rstrip("\r")
        else:
            source_line = ""

        # Underline the full span when on one line, otherwise to end of line
        if self.span.end.line == self.span.start.line:
            underline_len = max(1, self.span.end.column - col)
        else:
            underline_len = max(1, len(source_line) - col + 1)

        pad = " " * (col - 1)
        carets = "^" * underline_len

        line_num = str(self.span.start.line)
        gutter_width = len(line_num) + 1

        blank_gutter = " " * gutter_width + "|"
        line_gutter = f"{line_num:>{gutter_width - 1}} |"

        return (
            f"{self.severity.value}[{self.kind.value}]: {self.message}\n"
            f"{' ' * gutter_width}--> {filename}:{self.span.start.line}:{col}\n"
            f"{blank_gutter}\n"
            f"{line_gutter} {source_line}\n"
            f"{blank_gutter} {pad}{carets}"
        )


def has_errors(diagnostics: list[Diagnostic]) -> bool:
    """Return True if any diagnostic has Error severity."""
    return any(d.is_error for d in diagnostics)
