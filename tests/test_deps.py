"""Dependency collection from parsed and expanded documents."""

from __future__ import annotations

from pathlib import Path

from texloom.commands import CommandTable
from texloom.deps import DependencyKind, DependencyRule, collect_dependencies, dependency_kind
from texloom.errors import DiagnosticKind, Severity
from texloom.expand import expand
from texloom.files import FileTable
from texloom.parser import parse

from .conftest import kinds


def _collect(tmp_path: Path, source: str, **kwargs):
    doc, _ = parse(source)
    return collect_dependencies(doc, files=FileTable(working_dir=tmp_path), **kwargs)


class TestCollection:
    def test_plain_document_has_none(self, tmp_path: Path):
        source = "\\documentclass{article}\n\\begin{document}\nHello % note\n\\end{document}"
        assert _collect(tmp_path, source) == ([], [])

    def test_known_commands(self, tmp_path: Path):
        (tmp_path / "fig.png").write_bytes(b"")
        (tmp_path / "a.bib").write_text("")
        (tmp_path / "b.bib").write_text("")
        (tmp_path / "chap.tex").write_text("")
        paths, diagnostics = _collect(
            tmp_path,
            "\\includegraphics[width=3cm]{fig}\n\\bibliography{a, b}\n\\input{chap}",
        )
        assert diagnostics == []
        assert [p.name for p in paths] == ["fig.png", "a.bib", "b.bib", "chap.tex"]
        assert all(p.is_absolute() for p in paths)

    def test_duplicates_are_dropped(self, tmp_path: Path):
        (tmp_path / "fig.pdf").write_bytes(b"")
        paths, _ = _collect(tmp_path, r"\includegraphics{fig}\includegraphics{fig.pdf}")
        assert [p.name for p in paths] == ["fig.pdf"]

    def test_missing_file_is_a_warning(self, tmp_path: Path):
        paths, diagnostics = _collect(tmp_path, r"\includegraphics{ghost}")
        assert paths == []
        assert kinds(diagnostics) == [DiagnosticKind.FILE_NOT_FOUND]
        assert diagnostics[0].severity is Severity.WARNING
        assert diagnostics[0].node is not None

    def test_argument_index(self, tmp_path: Path):
        (tmp_path / "code.py").write_text("")
        paths, diagnostics = _collect(tmp_path, r"\inputminted{python}{code.py}")
        assert diagnostics == []
        assert [p.name for p in paths] == ["code.py"]

    def test_custom_rules(self, tmp_path: Path):
        (tmp_path / "data.csv").write_text("")
        rules = (DependencyRule("pgfplotstableread", extensions=(".csv",)),)
        # Unknown commands take no arguments unless the table says so
        table = CommandTable()
        table.update({"pgfplotstableread": "m"})
        doc, _ = parse(r"\pgfplotstableread{data}\input{x}", commands=table)
        paths, diagnostics = collect_dependencies(
            doc, rules=rules, files=FileTable(working_dir=tmp_path)
        )
        assert [p.name for p in paths] == ["data.csv"]
        assert diagnostics == []

    def test_deterministic(self, tmp_path: Path):
        for name in ("a.tex", "b.tex", "c.png"):
            (tmp_path / name).write_text("")
        source = r"\input{b}\includegraphics{c}\input{a}"
        first = _collect(tmp_path, source)
        second = _collect(tmp_path, source)
        assert first == second
        assert [p.name for p in first[0]] == ["b.tex", "c.png", "a.tex"]


class TestExpandedDocuments:
    def test_included_files_are_followed(self, tmp_path: Path):
        sub = tmp_path / "chapters"
        sub.mkdir()
        (sub / "intro.tex").write_text(r"\includegraphics{plot}")
        (sub / "plot.png").write_bytes(b"")
        main = tmp_path / "main.tex"
        main.write_text(r"\input{chapters/intro}")

        files = FileTable(working_dir=tmp_path)
        doc, _ = files.load(main)
        expanded, _ = expand(doc, files=files)
        paths, diagnostics = collect_dependencies(expanded, files=files)

        assert diagnostics == []
        assert paths == [(sub / "intro.tex").resolve(), (sub / "plot.png").resolve()]

    def test_macro_built_references(self, tmp_path: Path):
        (tmp_path / "logo.png").write_bytes(b"")
        doc, _ = parse(r"\def\logo{\includegraphics{logo}}\logo")
        expanded, _ = expand(doc, files=FileTable(working_dir=tmp_path))
        paths, _ = collect_dependencies(expanded, files=FileTable(working_dir=tmp_path))
        assert [p.name for p in paths] == ["logo.png"]


class TestDependencyKind:
    def test_kinds(self):
        assert dependency_kind(Path("a.tex")) is DependencyKind.TEX
        assert dependency_kind(Path("a.PNG")) is DependencyKind.IMAGE
        assert dependency_kind(Path("refs.bib")) is DependencyKind.BIBLIOGRAPHY
        assert dependency_kind(Path("code.py")) is DependencyKind.OTHER
