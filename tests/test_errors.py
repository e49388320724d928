"""Test diagnostic severities, positions, and context snippets."""

from texloom.errors import Diagnostic, DiagnosticKind, Severity, has_errors
from texloom.parser import parse
from texloom.tokens import Position, Span


def _diag(kind: DiagnosticKind, line: int = 1, col: int = 1, length: int = 1) -> Diagnostic:
    start = Position(line, col, 0)
    end = Position(line, col + length, length)
    return Diagnostic.make(kind, "something went wrong", Span(start, end, 0))


class TestSeverities:
    def test_structural_problems_are_errors(self):
        for kind in (
            DiagnosticKind.UNTERMINATED_GROUP,
            DiagnosticKind.MISMATCHED_ENVIRONMENT,
            DiagnosticKind.CYCLIC_INCLUDE,
            DiagnosticKind.IO_ERROR,
        ):
            assert _diag(kind).severity is Severity.ERROR

    def test_argument_problems_are_warnings(self):
        assert _diag(DiagnosticKind.MACRO_ARITY_MISMATCH).severity is Severity.WARNING
        assert _diag(DiagnosticKind.UNBALANCED_DELIMITED_SCAN).severity is Severity.WARNING

    def test_severity_override(self):
        diag = Diagnostic.make(
            DiagnosticKind.FILE_NOT_FOUND,
            "missing",
            Span(Position(1, 1, 0), Position(1, 1, 0), 0),
            severity=Severity.WARNING,
        )
        assert not diag.is_error

    def test_has_errors(self):
        assert not has_errors([])
        assert not has_errors([_diag(DiagnosticKind.MACRO_ARITY_MISMATCH)])
        assert has_errors(
            [_diag(DiagnosticKind.MACRO_ARITY_MISMATCH), _diag(DiagnosticKind.IO_ERROR)]
        )


class TestErrorPositions:
    def test_unterminated_group_position(self):
        _, diagnostics = parse("abc {rest")
        (diag,) = diagnostics
        assert diag.span.start.line == 1
        assert diag.span.start.column == 5

    def test_error_on_second_line(self):
        _, diagnostics = parse("line one\n}")
        (diag,) = diagnostics
        assert diag.span.start.line == 2
        assert diag.span.start.column == 1


class TestErrorFormatting:
    def test_format_layout(self):
        source = "line1\nsome \\end{x} more"
        _, diagnostics = parse(source)
        (diag,) = diagnostics
        formatted = diag.format(source, "doc.tex")
        lines = formatted.splitlines()
        assert lines[0].startswith("error[MismatchedEnvironment]: ")
        assert lines[1] == "  --> doc.tex:2:6"
        assert lines[3] == "2 | some \\end{x} more"
        assert lines[4] == "  |      ^^^^^^^"

    def test_warning_prefix(self):
        formatted = _diag(DiagnosticKind.MACRO_ARITY_MISMATCH).format("x")
        assert formatted.startswith("warning[MacroArityMismatch]: something went wrong")

    def test_default_filename(self):
        formatted = _diag(DiagnosticKind.IO_ERROR).format()
        assert "<input>:1:1" in formatted

    def test_span_beyond_source(self):
        formatted = _diag(DiagnosticKind.IO_ERROR, line=9).format("one line")
        assert "9 | " in formatted
        assert formatted.endswith("^")
