"""Parser tests: commands, arguments, environments, math and recovery."""

from __future__ import annotations

import io

import pytest

from texloom.ast import ArgumentKind, Command, Comment, Environment, Group, Math, source_text
from texloom.commands import CommandTable
from texloom.debug import dump_tree
from texloom.deps import collect_dependencies
from texloom.errors import DiagnosticKind, Severity
from texloom.expand import expand
from texloom.format import format
from texloom.highlight import highlight
from texloom.parser import MAX_NESTING, parse

from .conftest import kinds, top_nodes

DOCUMENT = "\\documentclass{article}\n\\begin{document}\nHello % note\n\\end{document}"


class TestCommands:
    def test_mandatory_argument(self, parse_source):
        doc, diagnostics = parse_source(r"\section{Intro}")
        (cmd,) = top_nodes(doc)
        assert isinstance(cmd, Command)
        assert cmd.name == "section"
        assert len(cmd.arguments) == 1
        assert cmd.arguments[0].kind == ArgumentKind.MANDATORY
        assert doc.inner_text(cmd.arguments[0].content) == "Intro"
        assert diagnostics == []

    def test_star_and_optional(self, parse_source):
        doc, _ = parse_source(r"\section*[short]{Long}")
        (cmd,) = top_nodes(doc)
        assert isinstance(cmd, Command)
        assert cmd.star is not None
        assert [a.kind for a in cmd.arguments] == [ArgumentKind.OPTIONAL, ArgumentKind.MANDATORY]
        assert doc.inner_text(cmd.arguments[0].content) == "short"
        assert doc.inner_text(cmd.arguments[1].content) == "Long"

    def test_argument_on_next_line(self, parse_source):
        doc, _ = parse_source("\\textbf\n{x}")
        (cmd,) = top_nodes(doc)
        assert isinstance(cmd, Command)
        assert len(cmd.arguments) == 1
        assert len(cmd.arguments[0].leading) == 1

    def test_paragraph_break_ends_argument_scan(self, parse_source):
        doc, diagnostics = parse_source("\\textbf\n\n{x}")
        cmd = top_nodes(doc)[0]
        assert isinstance(cmd, Command)
        assert cmd.arguments == ()
        assert kinds(diagnostics) == [DiagnosticKind.MACRO_ARITY_MISMATCH]
        assert diagnostics[0].severity is Severity.WARNING

    def test_single_token_argument(self, parse_source):
        doc, _ = parse_source(r"\frac12")
        (cmd,) = top_nodes(doc)
        assert isinstance(cmd, Command)
        assert [doc.text(a.content) for a in cmd.arguments] == ["1", "2"]

    def test_unknown_command_takes_no_arguments(self, parse_source):
        doc, diagnostics = parse_source(r"\foo{x}")
        cmd, group = top_nodes(doc)
        assert isinstance(cmd, Command)
        assert cmd.arguments == ()
        assert isinstance(group, Group)
        assert diagnostics == []

    def test_injected_signature(self):
        table = CommandTable()
        table.update({"foo": "mm"})
        doc, _ = parse(r"\foo{a}{b}", commands=table)
        (cmd,) = top_nodes(doc)
        assert isinstance(cmd, Command)
        assert len(cmd.arguments) == 2


class TestEnvironments:
    def test_matched(self, parse_source):
        doc, diagnostics = parse_source("\\begin{itemize}\\item a\\end{itemize}")
        (env,) = top_nodes(doc)
        assert isinstance(env, Environment)
        assert env.name == "itemize"
        assert env.matched
        assert diagnostics == []

    def test_document_example_parses_cleanly(self, parse_source):
        doc, diagnostics = parse_source(DOCUMENT)
        assert diagnostics == []
        envs = [n for _, n in doc.walk() if isinstance(n, Environment)]
        assert [e.name for e in envs] == ["document"]
        comments = [n for _, n in doc.walk() if isinstance(n, Comment)]
        assert [c.text for c in comments] == [" note"]

    def test_mismatched_end(self, parse_source):
        doc, diagnostics = parse_source(DOCUMENT.replace("\\end{document}", "\\end{doc}"))
        assert kinds(diagnostics) == [DiagnosticKind.MISMATCHED_ENVIRONMENT]
        env = next(n for _, n in doc.walk() if isinstance(n, Environment))
        assert not env.matched
        # The rest of the tree is intact
        assert any(isinstance(n, Command) and n.name == "documentclass" for _, n in doc.walk())

    def test_never_closed(self, parse_source):
        _, diagnostics = parse_source("\\begin{a}x")
        assert kinds(diagnostics) == [DiagnosticKind.MISMATCHED_ENVIRONMENT]
        assert "never closed" in diagnostics[0].message

    def test_stray_end(self, parse_source):
        _, diagnostics = parse_source("x\\end{a}")
        assert kinds(diagnostics) == [DiagnosticKind.MISMATCHED_ENVIRONMENT]

    def test_environment_arguments(self, parse_source):
        doc, _ = parse_source("\\begin{tabular}{ll}a&b\\end{tabular}")
        env = top_nodes(doc)[0]
        assert isinstance(env, Environment)
        begin = doc.nodes[env.begin]
        assert isinstance(begin, Command)
        assert len(begin.arguments) == 2

    def test_verbatim_body_is_opaque(self, parse_source):
        doc, diagnostics = parse_source("\\begin{verbatim}\\foo{ $\\end{verbatim}")
        assert diagnostics == []
        env = top_nodes(doc)[0]
        assert isinstance(env, Environment)
        assert env.matched
        assert not any(isinstance(doc.nodes[n], (Command, Group, Math)) for n in env.body)


class TestMath:
    @pytest.mark.parametrize(
        ("source", "display"),
        [("$x^2$", False), ("$$x$$", True), ("\\(x\\)", False), ("\\[x\\]", True)],
    )
    def test_math_forms(self, parse_source, source: str, display: bool):
        doc, diagnostics = parse_source(source)
        (math,) = top_nodes(doc)
        assert isinstance(math, Math)
        assert math.display is display
        assert math.closed
        assert diagnostics == []

    def test_adjacent_inline_math(self, parse_source):
        doc, diagnostics = parse_source("$a$$b$")
        nodes = top_nodes(doc)
        assert [type(n) for n in nodes] == [Math, Math]
        assert all(isinstance(n, Math) and not n.display for n in nodes)
        assert diagnostics == []
        assert doc.text() == "$a$$b$"

    def test_unterminated_math(self, parse_source):
        doc, diagnostics = parse_source("$x")
        assert kinds(diagnostics) == [DiagnosticKind.UNTERMINATED_GROUP]
        math = top_nodes(doc)[0]
        assert isinstance(math, Math)
        assert not math.closed


class TestRecovery:
    def test_unterminated_group(self, parse_source):
        doc, diagnostics = parse_source("{abc")
        (group,) = top_nodes(doc)
        assert isinstance(group, Group)
        assert not group.closed
        assert kinds(diagnostics) == [DiagnosticKind.UNTERMINATED_GROUP]
        assert diagnostics[0].node is not None

    def test_stray_close(self, parse_source):
        _, diagnostics = parse_source("a}b")
        assert kinds(diagnostics) == [DiagnosticKind.UNTERMINATED_GROUP]

    def test_lex_diagnostics_come_first(self):
        _, diagnostics = parse(b"\xff{")
        assert kinds(diagnostics) == [
            DiagnosticKind.INVALID_CHARACTER,
            DiagnosticKind.UNTERMINATED_GROUP,
        ]


DEEP_GROUPS = "{" * 2000 + "x" + "}" * 2000
DEEP_ARGUMENTS = "\\textbf{" * 2000 + "x" + "}" * 2000


class TestDeepNesting:
    def test_balanced_groups(self):
        doc, diagnostics = parse(DEEP_GROUPS)
        assert doc.text() == DEEP_GROUPS
        assert source_text(doc) == DEEP_GROUPS
        assert kinds(diagnostics) == [DiagnosticKind.UNTERMINATED_GROUP]
        assert f"deeper than {MAX_NESTING}" in diagnostics[0].message

    def test_inner_groups_are_kept_flat(self):
        doc, diagnostics = parse(DEEP_GROUPS)
        flat = doc.nodes[diagnostics[0].node]
        assert isinstance(flat, Group)
        assert flat.closed
        assert not any(isinstance(doc.nodes[child], Group) for child in flat.children)

    def test_unclosed_groups(self):
        source = "{" * 2000
        doc, diagnostics = parse(source)
        assert doc.text() == source
        assert set(kinds(diagnostics)) == {DiagnosticKind.UNTERMINATED_GROUP}
        assert len(diagnostics) == MAX_NESTING + 2

    def test_environments(self):
        source = "\\begin{a}" * 500 + "\\end{a}" * 500
        doc, diagnostics = parse(source)
        assert doc.text() == source
        assert DiagnosticKind.UNTERMINATED_GROUP in kinds(diagnostics)

    def test_shallow_nesting_is_unaffected(self):
        source = "{" * MAX_NESTING + "x" + "}" * MAX_NESTING
        _, diagnostics = parse(source)
        assert diagnostics == []

    @pytest.mark.parametrize("source", [DEEP_GROUPS, DEEP_ARGUMENTS])
    def test_every_stage_runs(self, source: str):
        doc, _ = parse(source)
        offset = 0
        for span, _ in highlight(doc):
            assert span.start.offset == offset
            offset = span.end.offset
        assert offset == len(source)

        assert format(doc) == source + "\n"
        expanded, _ = expand(doc)
        assert source_text(expanded) == source
        assert collect_dependencies(expanded) == ([], [])
        out = io.StringIO()
        dump_tree(doc, file=out)
        assert out.getvalue().startswith("Document")


@pytest.mark.parametrize(
    "source",
    [
        DOCUMENT,
        "{a}}{[b]$c$$$d$$\\[e\\]}",
        "\\begin{a}\\begin{b}\\end{a}\\end{b}",
        "\\section*[x]{y}\\label{z}\n\n% c\n\\item[",
    ],
)
def test_tree_covers_every_token(source: str) -> None:
    doc, _ = parse(source)
    assert doc.text() == source
    assert source_text(doc) == source
    assert doc.size == len(source.encode())
