"""Command-line interface for texloom."""

from __future__ import annotations

import argparse
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from texloom.ast import Document, source_text
from texloom.commands import CommandTable
from texloom.deps import DependencyKind, collect_dependencies, dependency_kind
from texloom.errors import Diagnostic, DiagnosticKind, has_errors
from texloom.expand import ExpansionLimits, expand
from texloom.files import ANONYMOUS, FileTable
from texloom.format import FormatOptions, format
from texloom.highlight import Category, filter_spans, highlight
from texloom.macros import Scope

CONFIG_NAME = "texloom.toml"

# Alternative spellings accepted for subcommands
ALIASES: dict[str, str] = {"dependencies": "deps", "hl": "highlight", "fmt": "format"}


class ConfigError(Exception):
    """Raised for an unreadable or ill-typed configuration file."""


@dataclass(frozen=True, slots=True)
class CliOptions:
    """Parsed CLI options."""

    command: str
    inputs: list[str]
    commands: CommandTable
    limits: ExpansionLimits
    preamble: str
    format_options: FormatOptions
    categories: list[Category] = field(default_factory=list)
    group: bool = False
    debug: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (separate function for testability)."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "files",
        nargs="*",
        default=[],
        metavar="FILE",
        help="Input .tex files ('-' or none: read stdin)",
    )
    common.add_argument(
        "--config",
        metavar="FILE",
        help=f"Config file (default: auto-discover {CONFIG_NAME})",
    )
    common.add_argument("--debug", action="store_true", help="Dump the tree to stderr")

    expansion = argparse.ArgumentParser(add_help=False)
    expansion.add_argument(
        "--max-depth", type=int, default=None, metavar="N", help="Macro nesting limit"
    )
    expansion.add_argument(
        "--max-steps", type=int, default=None, metavar="N", help="Expansion step limit"
    )

    p = argparse.ArgumentParser(
        prog="texloom",
        description="Parse, expand, highlight and format TeX/LaTeX sources",
    )
    sub = p.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser(
        "check", parents=[common, expansion], help="Parse and expand, report diagnostics only"
    )
    deps = sub.add_parser(
        "deps",
        aliases=["dependencies"],
        parents=[common, expansion],
        help="List files referenced by the document",
    )
    deps.add_argument("--group", action="store_true", help="Group dependencies by kind")
    sub.add_parser("expand", parents=[common, expansion], help="Print the macro-expanded text")
    hl = sub.add_parser("highlight", aliases=["hl"], parents=[common], help="Print highlight spans")
    hl.add_argument(
        "-c",
        "--category",
        action="append",
        default=[],
        choices=[c.value for c in Category],
        help="Only show this category (repeatable)",
    )
    fmt = sub.add_parser("format", aliases=["fmt"], parents=[common], help="Print formatted source")
    fmt.add_argument("--indent", default=None, metavar="TEXT", help="Indentation unit")
    sub.add_parser("parse", parents=[common], help="Print the parse tree")
    return p


def load_config(config_path: Path | None, input_dir: Path) -> dict[str, Any]:
    """Load a TOML config file, returning an empty dict on missing/absent file."""
    path = config_path if config_path is not None else input_dir / CONFIG_NAME

    if not path.is_file():
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc


def _table(config: dict[str, Any], name: str) -> dict[str, Any]:
    value = config.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _int(table: dict[str, Any], key: str, default: int) -> int:
    value = table.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConfigError(f"{key} must be a non-negative integer")
    return value


def resolve_options(args: argparse.Namespace) -> CliOptions:
    """Merge config file and CLI args into CliOptions.

    Precedence: config file < CLI flags.
    """
    inputs = list(args.files) or ["-"]
    first = next((Path(name) for name in inputs if name != "-"), None)
    input_dir = first.parent if first is not None else Path(".")
    if not input_dir.parts:
        input_dir = Path(".")

    config_path = Path(args.config) if args.config else None
    config = load_config(config_path, input_dir)

    # Signatures: built-in table < config
    commands = CommandTable()
    try:
        commands.update(
            {str(k): str(v) for k, v in _table(config, "commands").items()},
            {str(k): str(v) for k, v in _table(config, "environments").items()},
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    # Expansion limits: defaults < config < CLI
    cfg_expand = _table(config, "expand")
    defaults = ExpansionLimits()
    max_depth = _int(cfg_expand, "max_depth", defaults.max_depth)
    max_steps = _int(cfg_expand, "max_steps", defaults.max_steps)
    max_include_depth = _int(cfg_expand, "max_include_depth", defaults.max_include_depth)
    if getattr(args, "max_depth", None) is not None:
        max_depth = args.max_depth
    if getattr(args, "max_steps", None) is not None:
        max_steps = args.max_steps
    limits = ExpansionLimits(max_depth, max_steps, max_include_depth)

    preamble = cfg_expand.get("preamble", "")
    if not isinstance(preamble, str):
        raise ConfigError("preamble must be a string")

    # Formatting: defaults < config < CLI
    cfg_format = _table(config, "format")
    fmt_defaults = FormatOptions()
    indent = cfg_format.get("indent", fmt_defaults.indent)
    if not isinstance(indent, str):
        raise ConfigError("indent must be a string")
    if getattr(args, "indent", None) is not None:
        indent = args.indent
    major = fmt_defaults.major_commands
    cfg_major = cfg_format.get("major")
    if isinstance(cfg_major, list):
        major = frozenset(str(m) for m in cfg_major)
    format_options = FormatOptions(indent=indent, major_commands=major)

    command = ALIASES.get(args.command, args.command)
    categories = [Category(c) for c in getattr(args, "category", [])]

    return CliOptions(
        command=command,
        inputs=inputs,
        commands=commands,
        limits=limits,
        preamble=preamble,
        format_options=format_options,
        categories=categories,
        group=getattr(args, "group", False),
        debug=args.debug,
    )


# ---------------------------------------------------------------------------
# Running commands
# ---------------------------------------------------------------------------


class Session:
    """One CLI run: the shared file table and accumulated diagnostics."""

    def __init__(self, options: CliOptions, *, stdin: TextIO | None = None) -> None:
        self.options = options
        self.files = FileTable(commands=options.commands)
        self.diagnostics: list[Diagnostic] = []
        self._stdin = stdin if stdin is not None else sys.stdin

    def load(self, name: str) -> Document:
        if name == "-":
            self.files.set_source(ANONYMOUS, self._stdin.buffer.read())
            doc, diagnostics = self.files.document(ANONYMOUS)
        else:
            doc, diagnostics = self.files.load(Path(name))
        self.diagnostics.extend(diagnostics)
        return doc

    def expand(self, doc: Document) -> Document:
        scope = Scope.from_source(self.options.preamble) if self.options.preamble else Scope()
        expanded, diagnostics = expand(
            doc,
            scope,
            files=self.files,
            limits=self.options.limits,
            commands=self.options.commands,
        )
        self.diagnostics.extend(diagnostics)
        return expanded

    def source(self, file_id: int) -> str:
        entry = self.files.entry(file_id)
        if entry.document is not None:
            return entry.document.source
        if entry.contents is not None:
            return entry.contents.decode("utf-8", "surrogateescape")
        return ""

    def add_unreported(self, diagnostics: list[Diagnostic]) -> None:
        """Add diagnostics, skipping missing files the expansion already reported."""
        missing = {
            _location(d) for d in self.diagnostics if d.kind is DiagnosticKind.FILE_NOT_FOUND
        }
        self.diagnostics.extend(d for d in diagnostics if _location(d) not in missing)

    def report(self, out: TextIO) -> None:
        for diag in self.diagnostics:
            file_id = diag.span.file_id
            print(diag.format(self.source(file_id), self.files.entry(file_id).name), file=out)


def run(options: CliOptions, out: TextIO, err: TextIO, *, stdin: TextIO | None = None) -> int:
    """Execute one subcommand over all inputs. Returns the exit code."""
    from texloom.debug import dump_tree

    session = Session(options, stdin=stdin)

    for name in options.inputs:
        doc = session.load(name)
        command = options.command

        if command == "parse":
            dump_tree(doc, file=out)
            continue

        if command == "highlight":
            _print_highlight(session, doc, out)
        elif command == "format":
            out.write(format(doc, options.format_options))
        else:
            expanded = session.expand(doc)
            if options.debug:
                dump_tree(expanded, file=err)
            if command == "expand":
                out.write(source_text(expanded))
            elif command == "deps":
                paths, diagnostics = collect_dependencies(expanded, files=session.files)
                session.add_unreported(diagnostics)
                _print_dependencies(paths, options.group, out)
            continue

        if options.debug:
            dump_tree(doc, file=err)

    session.report(err)
    return 1 if has_errors(session.diagnostics) else 0


def _location(diag: Diagnostic) -> tuple[int, int]:
    return diag.span.file_id, diag.span.start.offset


def _print_dependencies(paths: list[Path], group: bool, out: TextIO) -> None:
    if not group:
        for path in paths:
            print(path, file=out)
        return
    for kind in DependencyKind:
        members = [p for p in paths if dependency_kind(p) is kind]
        if not members:
            continue
        print(f"{kind.value}:", file=out)
        for path in members:
            print(f"  {path}", file=out)


def _print_highlight(session: Session, doc: Document, out: TextIO) -> None:
    spans = highlight(doc)
    if session.options.categories:
        spans = filter_spans(spans, session.options.categories)
    data = doc.source.encode("utf-8", "surrogateescape")
    for span, category in spans:
        text = data[span.start.offset : span.end.offset].decode("utf-8", "surrogateescape")
        start, end = span.start, span.end
        print(
            f"{start.line}:{start.column}-{end.line}:{end.column}\t{category.value}\t{text!r}",
            file=out,
        )


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code (0/1/2). Does not call sys.exit()."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_usage(sys.stderr)
        return 2

    try:
        options = resolve_options(args)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    return run(options, sys.stdout, sys.stderr)
