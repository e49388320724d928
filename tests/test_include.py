"""File inclusion during expansion: splicing, cycles, limits and resolution."""

from __future__ import annotations

from pathlib import Path

from texloom.ast import Include, source_text
from texloom.deps import collect_dependencies
from texloom.errors import DiagnosticKind, Severity
from texloom.expand import ExpansionLimits, expand
from texloom.files import FileTable
from texloom.parser import parse

from .conftest import kinds


def _run(main: Path, **kwargs):
    files = FileTable(working_dir=main.parent)
    doc, _ = files.load(main)
    result, diagnostics = expand(doc, files=files, **kwargs)
    return result, diagnostics, files


def _includes(doc) -> list[Include]:
    return [n for _, n in doc.walk() if isinstance(n, Include)]


class TestSplicing:
    def test_include_node_replaces_directive(self, tmp_path: Path):
        (tmp_path / "chap.tex").write_text("inside\n")
        main = tmp_path / "main.tex"
        main.write_text(r"before \input{chap} after")
        result, diagnostics, files = _run(main)

        assert diagnostics == []
        (inc,) = _includes(result)
        assert Path(inc.path) == (tmp_path / "chap.tex").resolve()
        assert files.entry(inc.file_id).parent_id == result.file_id
        assert source_text(result) == "before inside\n after"

    def test_bare_file_name(self, tmp_path: Path):
        (tmp_path / "chap.tex").write_text("inside")
        main = tmp_path / "main.tex"
        main.write_text("\\input chap more")
        result, diagnostics, _ = _run(main)
        assert diagnostics == []
        assert len(_includes(result)) == 1
        assert source_text(result) == "inside more"

    def test_definitions_cross_inclusion(self, tmp_path: Path):
        (tmp_path / "defs.tex").write_text(r"\def\name{World}")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{defs}Hello \name")
        result, diagnostics, _ = _run(main)
        assert diagnostics == []
        assert source_text(result) == "Hello World"

    def test_group_local_definitions_stay_local(self, tmp_path: Path):
        (tmp_path / "defs.tex").write_text(r"\def\name{World}")
        main = tmp_path / "main.tex"
        main.write_text(r"{\input{defs}}\name")
        result, _, _ = _run(main)
        assert source_text(result) == r"{}\name"

    def test_sibling_inclusions_share_cache(self, tmp_path: Path):
        (tmp_path / "a.tex").write_text("A")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{a}\input{a}")
        result, diagnostics, files = _run(main)
        assert diagnostics == []
        first, second = _includes(result)
        assert first.file_id == second.file_id
        assert source_text(result) == "AA"
        assert files.entry(first.file_id).state == "parsed"

    def test_include_and_subfile(self, tmp_path: Path):
        (tmp_path / "a.tex").write_text("A")
        (tmp_path / "b.tex").write_text("B")
        main = tmp_path / "main.tex"
        main.write_text(r"\include{a}\subfile{b.tex}")
        result, diagnostics, _ = _run(main)
        assert diagnostics == []
        assert source_text(result) == "AB"

    def test_directive_as_single_token_argument(self, tmp_path: Path):
        (tmp_path / "b.tex").write_text("BODY")
        main = tmp_path / "main.tex"
        main.write_text(r"\textbf\input{b}")
        result, diagnostics, files = _run(main)

        assert diagnostics == []
        (inc,) = _includes(result)
        assert Path(inc.path) == (tmp_path / "b.tex").resolve()
        assert source_text(result) == r"\textbfBODY"
        paths, _ = collect_dependencies(result, files=files)
        assert paths == [(tmp_path / "b.tex").resolve()]


class TestFailures:
    def test_cycle_terminates(self, tmp_path: Path):
        (tmp_path / "a.tex").write_text(r"A\input{b}")
        (tmp_path / "b.tex").write_text(r"B\input{a}")
        result, diagnostics, _ = _run(tmp_path / "a.tex")
        assert kinds(diagnostics) == [DiagnosticKind.CYCLIC_INCLUDE]
        assert "a.tex" in diagnostics[0].message
        assert source_text(result) == r"AB\input{a}"

    def test_self_inclusion(self, tmp_path: Path):
        main = tmp_path / "main.tex"
        main.write_text(r"\input{main}")
        _, diagnostics, _ = _run(main)
        assert kinds(diagnostics) == [DiagnosticKind.CYCLIC_INCLUDE]

    def test_missing_file(self, tmp_path: Path):
        main = tmp_path / "main.tex"
        main.write_text(r"x\input{nope}y")
        result, diagnostics, _ = _run(main)
        assert kinds(diagnostics) == [DiagnosticKind.FILE_NOT_FOUND]
        assert diagnostics[0].severity is Severity.ERROR
        assert source_text(result) == r"x\input{nope}y"

    def test_unreadable_target(self, tmp_path: Path):
        (tmp_path / "dir.tex").mkdir()
        (tmp_path / "dir.tex.tex").mkdir()
        main = tmp_path / "main.tex"
        main.write_text(r"\input{dir.tex}")
        _, diagnostics, _ = _run(main)
        # Directories are never resolved as files
        assert kinds(diagnostics) == [DiagnosticKind.FILE_NOT_FOUND]

    def test_inclusion_depth_limit(self, tmp_path: Path):
        (tmp_path / "a.tex").write_text(r"\input{b}")
        (tmp_path / "b.tex").write_text(r"\input{c}")
        (tmp_path / "c.tex").write_text("C")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{a}")
        _, diagnostics, _ = _run(main, limits=ExpansionLimits(max_include_depth=2))
        assert kinds(diagnostics) == [DiagnosticKind.MAX_INCLUSION_DEPTH_EXCEEDED]

    def test_failure_in_one_branch_spares_siblings(self, tmp_path: Path):
        (tmp_path / "loop.tex").write_text(r"\input{loop}")
        (tmp_path / "ok.tex").write_text("fine")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{loop}\input{ok}")
        result, diagnostics, _ = _run(main)
        assert kinds(diagnostics) == [DiagnosticKind.CYCLIC_INCLUDE]
        assert source_text(result).endswith("fine")

    def test_parse_errors_of_included_file_are_reported_once(self, tmp_path: Path):
        (tmp_path / "bad.tex").write_text("{")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{bad}\input{bad}")
        _, diagnostics, _ = _run(main)
        assert kinds(diagnostics) == [DiagnosticKind.UNTERMINATED_GROUP]


class TestResolution:
    def test_nested_directory_relative_to_includer(self, tmp_path: Path):
        sub = tmp_path / "sub"
        sub.mkdir()
        (sub / "part.tex").write_text(r"\input{leaf}")
        (sub / "leaf.tex").write_text("leaf")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{sub/part}")
        result, diagnostics, _ = _run(main)
        assert diagnostics == []
        assert source_text(result) == "leaf"

    def test_ancestor_directory_fallback(self, tmp_path: Path):
        sub = tmp_path / "sub"
        sub.mkdir()
        (sub / "part.tex").write_text(r"\input{shared}")
        (tmp_path / "shared.tex").write_text("shared")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{sub/part}")
        result, diagnostics, _ = _run(main)
        assert diagnostics == []
        assert source_text(result) == "shared"

    def test_anonymous_input_uses_working_directory(self, tmp_path: Path):
        (tmp_path / "chap.tex").write_text("c")
        doc, _ = parse(r"\input{chap}")
        result, diagnostics = expand(doc, files=FileTable(working_dir=tmp_path))
        assert diagnostics == []
        assert source_text(result) == "c"
