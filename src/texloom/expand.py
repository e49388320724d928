"""Macro expander: token-level substitution, scoping and file inclusion."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from texloom.ast import Command, Document, Include
from texloom.commands import VERBATIM, CommandTable
from texloom.errors import Diagnostic, DiagnosticKind
from texloom.files import FileEntry, FileTable
from texloom.macros import (
    Delimited,
    MacroDefinition,
    OptionalParam,
    Param,
    Scope,
    Undelimited,
)
from texloom.parser import Parser
from texloom.tokens import Catcode, Span, Token, TokenType

# \def-family primitives -> whether the definition is global
DEFINERS: dict[str, bool] = {"def": False, "edef": False, "gdef": True, "xdef": True}
PREFIXES: frozenset[str] = frozenset({"global", "long", "outer", "protected"})
NEWCOMMANDS: frozenset[str] = frozenset(
    {"newcommand", "renewcommand", "providecommand", "DeclareRobustCommand"}
)
INCLUDES: frozenset[str] = frozenset({"input", "include", "subfile"})


@dataclass(frozen=True, slots=True)
class ExpansionLimits:
    """Per-branch resource bounds."""

    max_depth: int = 64
    max_steps: int = 10_000
    max_include_depth: int = 16


@dataclass(frozen=True, slots=True)
class _Return:
    """Marks the end of a macro's replacement text in the input stack."""

    name: str


class _Reader:
    """Token source with a push-back stack for re-injected replacement text."""

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0
        self._stack: list[Token | _Return] = []

    def next(self) -> Token | _Return | None:
        if self._stack:
            return self._stack.pop()
        if self._pos < len(self._tokens):
            tok = self._tokens[self._pos]
            self._pos += 1
            return tok
        return None

    def push(self, items: list[Token | _Return]) -> None:
        self._stack.extend(reversed(items))


@dataclass
class Expander:
    """Shared state of one expansion run: file table, limits, diagnostics."""

    files: FileTable = field(default_factory=FileTable)
    limits: ExpansionLimits = field(default_factory=ExpansionLimits)
    commands: CommandTable | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    _reported_files: set[int] = field(default_factory=set)

    def expand_document(
        self, doc: Document, scope: Scope, ancestors: tuple[int, ...] | None = None
    ) -> Document:
        if ancestors is None:
            ancestors = (doc.file_id,)
        branch = _Branch(self, doc, scope, ancestors)
        return branch.run()

    def report(
        self, kind: DiagnosticKind, message: str, span: Span, node: int | None = None
    ) -> None:
        self.diagnostics.append(Diagnostic.make(kind, message, span, node=node))


class _Branch:
    """Expansion of one file's token stream (one inclusion branch)."""

    def __init__(
        self, expander: Expander, doc: Document, scope: Scope, ancestors: tuple[int, ...]
    ) -> None:
        self._expander = expander
        self._limits = expander.limits
        self._doc = doc
        self._scope = scope
        self._base_depth = scope.depth
        self._ancestors = ancestors
        self._reader = _Reader([t for t in doc.tokens if t.type != TokenType.EOF])
        self._calls: list[str] = []
        self._steps = 0
        self._aborted = False
        self._output: list[Token] = []
        self._inclusions: dict[int, tuple[FileEntry, Document]] = {}

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> Document:
        while (tok := self._next()) is not None:
            if self._aborted:
                self._output.append(tok)
            elif tok.type == TokenType.BEGIN_GROUP:
                self._scope.push()
                self._output.append(tok)
            elif tok.type == TokenType.END_GROUP:
                if self._scope.depth > self._base_depth:
                    self._scope.pop()
                self._output.append(tok)
            elif tok.type in (TokenType.CONTROL_WORD, TokenType.CONTROL_SYMBOL):
                self._control(tok)
            elif tok.type == TokenType.CHARACTER and tok.catcode == Catcode.ACTIVE:
                defn = self._scope.lookup(_macro_name(tok))
                if defn is None:
                    self._output.append(tok)
                else:
                    self._invoke(tok, defn)
            else:
                self._output.append(tok)

        # Groups left open in this file do not leak into the includer
        while self._scope.depth > self._base_depth:
            self._scope.pop()

        eof = self._doc.tokens[-1]
        tokens = [*self._output, Token(TokenType.EOF, "", "", eof.span)]
        expanded = Parser(tokens, self._doc.source, self._doc.file_id, self._expander.commands).parse()
        self._splice(expanded)
        return expanded

    def _next(self) -> Token | None:
        while True:
            item = self._reader.next()
            if isinstance(item, _Return):
                if self._calls:
                    self._calls.pop()
                continue
            return item

    def _next_significant(self, consumed: list[Token], *, spaces_only: bool = False) -> Token | None:
        """Read past blanks (recording them in *consumed*); return the next token."""
        while (tok := self._next()) is not None:
            consumed.append(tok)
            if tok.type == TokenType.SPACE:
                continue
            if not spaces_only and tok.type in (TokenType.END_OF_LINE, TokenType.COMMENT):
                continue
            return tok
        return None

    def _unread(self, tok: Token, consumed: list[Token]) -> None:
        consumed.pop()
        self._reader.push([tok])

    def _fail(self, consumed: list[Token]) -> None:
        """Give up on a construct: emit its first token, rescan the rest."""
        self._output.append(consumed[0])
        self._reader.push(list(consumed[1:]))

    def _read_group(self, consumed: list[Token]) -> list[Token] | None:
        """Read a balanced group body after its opening brace was consumed."""
        depth = 0
        body: list[Token] = []
        while (tok := self._next()) is not None:
            consumed.append(tok)
            if tok.type == TokenType.BEGIN_GROUP:
                depth += 1
            elif tok.type == TokenType.END_GROUP:
                if depth == 0:
                    return body
                depth -= 1
            body.append(tok)
        return None

    def _read_bracket(self, consumed: list[Token]) -> list[Token] | None:
        """Read `[...]` content at brace depth 0 after `[` was consumed."""
        depth = 0
        body: list[Token] = []
        while (tok := self._next()) is not None:
            consumed.append(tok)
            if tok.type == TokenType.BEGIN_GROUP:
                depth += 1
            elif tok.type == TokenType.END_GROUP:
                depth -= 1
            elif depth == 0 and _is_char(tok, "]"):
                return body
            body.append(tok)
        return None

    # ------------------------------------------------------------------
    # Control sequences
    # ------------------------------------------------------------------

    def _control(self, tok: Token) -> None:
        name = tok.value
        # User bindings shadow the primitives of the same name
        defn = self._scope.lookup(name)
        if defn is not None:
            self._invoke(tok, defn)
            return

        if tok.type == TokenType.CONTROL_WORD:
            if name in PREFIXES:
                self._prefixed(tok)
                return
            if name in DEFINERS:
                self._define_def([tok], DEFINERS[name])
                return
            if name == "let":
                self._define_let([tok], False)
                return
            if name in NEWCOMMANDS:
                self._define_newcommand(tok)
                return

        if tok.type == TokenType.CONTROL_WORD and name in INCLUDES:
            self._include(tok)
            return

        if tok.type == TokenType.CONTROL_WORD and name == "begin":
            self._begin(tok)
            return

        self._output.append(tok)

    def _environment_name(self, consumed: list[Token]) -> str | None:
        nxt = self._next_significant(consumed, spaces_only=True)
        if nxt is None:
            return None
        if nxt.type != TokenType.BEGIN_GROUP:
            self._unread(nxt, consumed)
            return None
        body = self._read_group(consumed)
        if body is None:
            return None
        return "".join(t.raw for t in body).strip()

    def _begin(self, tok: Token) -> None:
        """Pass verbatim environment bodies through untouched."""
        consumed = [tok]
        name = self._environment_name(consumed)
        verbatim = self._expander.commands.verbatim if self._expander.commands else VERBATIM
        if name is None or name not in verbatim:
            self._fail(consumed)
            return

        self._output.extend(consumed)
        while (nxt := self._next()) is not None:
            if nxt.type == TokenType.CONTROL_WORD and nxt.value == "end":
                closing = [nxt]
                found = self._environment_name(closing)
                self._output.extend(closing)
                if found == name:
                    return
            else:
                self._output.append(nxt)

    def _prefixed(self, tok: Token) -> None:
        consumed = [tok]
        global_ = tok.value == "global"
        while (nxt := self._next_significant(consumed)) is not None:
            if nxt.type != TokenType.CONTROL_WORD or nxt.value in self._scope:
                self._unread(nxt, consumed)
                break
            if nxt.value in PREFIXES:
                global_ = global_ or nxt.value == "global"
                continue
            if nxt.value in DEFINERS:
                self._define_def(consumed, global_ or DEFINERS[nxt.value])
                return
            if nxt.value == "let":
                self._define_let(consumed, global_)
                return
            break
        # \global\advance and friends are not ours to interpret
        self._output.extend(consumed)

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def _define_def(self, consumed: list[Token], global_: bool) -> None:
        name_tok = self._next_significant(consumed)
        if name_tok is None or not _is_definable(name_tok):
            self._fail(consumed)
            return

        param_text: list[Token] = []
        while True:
            tok = self._next()
            if tok is None:
                self._fail(consumed)
                return
            consumed.append(tok)
            if tok.type == TokenType.BEGIN_GROUP:
                break
            param_text.append(tok)

        prefix, params = _parse_param_text(param_text)
        body_start = len(consumed)
        body = self._read_group(consumed)
        if body is None:
            self._expander.report(
                DiagnosticKind.UNTERMINATED_GROUP,
                f"unterminated replacement text of \\{name_tok.value}",
                name_tok.span,
            )
            body = consumed[body_start:]

        self._scope.define(
            MacroDefinition(_macro_name(name_tok), tuple(params), tuple(body), global_, tuple(prefix))
        )

    def _define_let(self, consumed: list[Token], global_: bool) -> None:
        target = self._next_significant(consumed)
        if target is None or not _is_definable(target):
            self._fail(consumed)
            return

        source = self._next_significant(consumed, spaces_only=True)
        if source is not None and _is_char(source, "="):
            source = self._next()
            if source is not None:
                consumed.append(source)
                if source.type == TokenType.SPACE:
                    source = self._next()
                    if source is not None:
                        consumed.append(source)
        if source is None:
            self._fail(consumed)
            return

        name = _macro_name(target)
        existing = self._scope.lookup(_macro_name(source)) if _is_definable(source) else None
        if existing is not None:
            defn = dataclasses.replace(existing, name=name, is_global=global_)
        else:
            defn = MacroDefinition(name, (), (dataclasses.replace(source, expanded=True),), global_)
        self._scope.define(defn)

    def _define_newcommand(self, tok: Token) -> None:
        consumed = [tok]
        nxt = self._next_significant(consumed)
        if nxt is not None and _is_char(nxt, "*"):
            nxt = self._next_significant(consumed)
        if nxt is None:
            self._fail(consumed)
            return

        if nxt.type == TokenType.BEGIN_GROUP:
            inner = self._read_group(consumed)
            names = [t for t in inner or () if not t.is_blank]
            if len(names) != 1 or not _is_definable(names[0]):
                self._fail(consumed)
                return
            name_tok = names[0]
        elif _is_definable(nxt):
            name_tok = nxt
        else:
            self._fail(consumed)
            return

        arity = 0
        default: list[Token] | None = None
        nxt = self._next_significant(consumed)
        if nxt is not None and _is_char(nxt, "["):
            digits = self._read_bracket(consumed)
            text = "".join(t.value for t in digits or ()).strip()
            if not text.isdigit():
                self._fail(consumed)
                return
            arity = int(text)
            nxt = self._next_significant(consumed)
            if nxt is not None and _is_char(nxt, "[") and arity > 0:
                default = self._read_bracket(consumed)
                if default is None:
                    self._fail(consumed)
                    return
                nxt = self._next_significant(consumed)

        if nxt is None:
            self._fail(consumed)
            return
        if nxt.type == TokenType.BEGIN_GROUP:
            body = self._read_group(consumed)
            if body is None:
                self._fail(consumed)
                return
        else:
            body = [nxt]

        params: list[Param] = [Undelimited() for _ in range(arity)]
        if default is not None:
            params[0] = OptionalParam(tuple(default))

        name = _macro_name(name_tok)
        if tok.value == "providecommand" and name in self._scope:
            return
        self._scope.define(MacroDefinition(name, tuple(params), tuple(body)))

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _invoke(self, tok: Token, defn: MacroDefinition) -> None:
        if self._steps >= self._limits.max_steps:
            self._expander.report(
                DiagnosticKind.MAX_EXPANSION_DEPTH_EXCEEDED,
                f"expansion step limit ({self._limits.max_steps}) reached at \\{defn.name}",
                tok.span,
            )
            self._aborted = True
            self._output.append(tok)
            return

        if len(self._calls) >= self._limits.max_depth:
            chain = " -> ".join(f"\\{name}" for name in self._calls[-3:])
            self._expander.report(
                DiagnosticKind.MAX_EXPANSION_DEPTH_EXCEEDED,
                f"macro nesting limit ({self._limits.max_depth}) exceeded (... {chain})",
                tok.span,
            )
            self._output.append(tok)
            return

        self._steps += 1
        consumed: list[Token] = []

        for expected in defn.prefix:
            actual = self._next()
            if actual is not None:
                consumed.append(actual)
            if actual is None or not actual.same_as(expected):
                self._expander.report(
                    DiagnosticKind.MACRO_ARITY_MISMATCH,
                    f"use of \\{defn.name} does not match its definition",
                    tok.span,
                )
                self._output.append(tok)
                self._reader.push(list(consumed))
                return

        args: list[list[Token]] = []
        for param in defn.params:
            arg = self._scan_argument(param, defn, tok, consumed)
            if arg is None:
                self._expander.report(
                    DiagnosticKind.MACRO_ARITY_MISMATCH,
                    f"\\{defn.name} expects {defn.arity} argument(s), found {len(args)}",
                    tok.span,
                )
                self._output.append(tok)
                self._reader.push(list(consumed))
                return
            args.append(arg)

        self._calls.append(defn.name)
        self._reader.push([*_substitute(defn.replacement, args), _Return(defn.name)])

    def _scan_argument(
        self, param: Param, defn: MacroDefinition, tok: Token, consumed: list[Token]
    ) -> list[Token] | None:
        if isinstance(param, OptionalParam):
            nxt = self._next_significant(consumed, spaces_only=True)
            if nxt is not None and _is_char(nxt, "["):
                return self._read_bracket(consumed)
            if nxt is not None:
                self._unread(nxt, consumed)
            return list(param.default)

        if isinstance(param, Undelimited):
            nxt = self._next_significant(consumed)
            if nxt is None:
                return None
            if nxt.type == TokenType.END_GROUP:
                self._unread(nxt, consumed)
                return None
            if nxt.type == TokenType.BEGIN_GROUP:
                return self._read_group(consumed)
            return [nxt]

        return self._scan_delimited(param, defn, tok, consumed)

    def _scan_delimited(
        self, param: Delimited, defn: MacroDefinition, tok: Token, consumed: list[Token]
    ) -> list[Token] | None:
        stop = param.stop
        collected: list[Token] = []
        depths: list[int] = []
        depth = 0
        reported = False

        while True:
            nxt = self._next()
            if nxt is None:
                self._expander.report(
                    DiagnosticKind.UNBALANCED_DELIMITED_SCAN,
                    f"delimiter of an argument of \\{defn.name} not found",
                    tok.span,
                )
                return None
            consumed.append(nxt)
            depths.append(depth)
            collected.append(nxt)

            if nxt.type == TokenType.BEGIN_GROUP:
                depth += 1
            elif nxt.type == TokenType.END_GROUP:
                if depth == 0:
                    if not reported:
                        self._expander.report(
                            DiagnosticKind.UNBALANCED_DELIMITED_SCAN,
                            f"extra '}}' while scanning an argument of \\{defn.name}",
                            nxt.span,
                        )
                        reported = True
                else:
                    depth -= 1

            n = len(stop)
            if (
                len(collected) >= n
                and all(d == 0 for d in depths[-n:])
                and all(a.same_as(b) for a, b in zip(collected[-n:], stop))
            ):
                return _strip_braces(collected[:-n])

    # ------------------------------------------------------------------
    # Inclusion
    # ------------------------------------------------------------------

    def _include(self, tok: Token) -> None:
        consumed = [tok]
        nxt = self._next_significant(consumed, spaces_only=True)
        if nxt is None:
            self._fail(consumed)
            return

        if nxt.type == TokenType.BEGIN_GROUP:
            body = self._read_group(consumed)
            if body is None:
                self._fail(consumed)
                return
            name = "".join(t.raw for t in body).strip()
            directive = [dataclasses.replace(tok), *consumed[1:]]
        elif nxt.type == TokenType.CHARACTER:
            # TeX-style \input file.tex: the name runs to a space or control sequence
            name_tokens = [nxt]
            while (more := self._next()) is not None:
                if more.type != TokenType.CHARACTER:
                    self._reader.push([more])
                    break
                consumed.append(more)
                name_tokens.append(more)
            name = "".join(t.value for t in name_tokens)
            directive = [dataclasses.replace(tok), *_braced(consumed[1:], name_tokens)]
        else:
            self._fail(consumed)
            return

        if not name:
            self._fail(consumed)
            return

        anchor = directive[0]
        # Kept as one node even where the re-parse takes it as a single-token argument
        self._output.extend(_zero_width_group(directive))
        self._load_inclusion(anchor, name)

    def _load_inclusion(self, anchor: Token, name: str) -> None:
        expander = self._expander
        files = expander.files

        if len(self._ancestors) > self._limits.max_include_depth:
            expander.report(
                DiagnosticKind.MAX_INCLUSION_DEPTH_EXCEEDED,
                f"inclusion depth limit ({self._limits.max_include_depth}) exceeded at '{name}'",
                anchor.span,
            )
            return

        path = files.resolve(name, self._ancestors)
        if path is None:
            expander.report(
                DiagnosticKind.FILE_NOT_FOUND, f"cannot find included file '{name}'", anchor.span
            )
            return

        entry = files.register(path, parent=self._doc.file_id)
        if entry.file_id in self._ancestors:
            chain = " -> ".join(files.entry(fid).name for fid in (*self._ancestors, entry.file_id))
            expander.report(
                DiagnosticKind.CYCLIC_INCLUDE, f"cyclic inclusion: {chain}", anchor.span
            )
            return

        try:
            child, child_diagnostics = files.document(entry.file_id)
        except OSError as exc:
            expander.report(
                DiagnosticKind.IO_ERROR,
                f"cannot read included file '{name}': {exc.strerror or exc}",
                anchor.span,
            )
            return

        if entry.file_id not in expander._reported_files:
            expander._reported_files.add(entry.file_id)
            expander.diagnostics.extend(child_diagnostics)

        expanded = _Branch(expander, child, self._scope, (*self._ancestors, entry.file_id)).run()
        self._inclusions[id(anchor)] = (entry, expanded)

    def _splice(self, doc: Document) -> None:
        """Replace successful inclusion directives with Include nodes."""
        if not self._inclusions:
            return
        for node_id in range(len(doc.nodes)):
            node = doc.nodes[node_id]
            if not isinstance(node, Command):
                continue
            found = self._inclusions.get(id(doc.tokens[node.token]))
            if found is None:
                continue
            entry, child = found
            doc.nodes.append(node)
            doc.nodes[node_id] = Include(
                len(doc.nodes) - 1, entry.file_id, str(entry.path), child, node.span
            )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _macro_name(tok: Token) -> str:
    if tok.type == TokenType.CHARACTER:
        return f"active {tok.value}"
    return tok.value


def _is_definable(tok: Token) -> bool:
    if tok.type in (TokenType.CONTROL_WORD, TokenType.CONTROL_SYMBOL):
        return True
    return tok.type == TokenType.CHARACTER and tok.catcode == Catcode.ACTIVE


def _is_char(tok: Token, ch: str) -> bool:
    return tok.type == TokenType.CHARACTER and tok.value == ch


def _is_param_digit(tok: Token) -> bool:
    return tok.type == TokenType.CHARACTER and tok.value in "123456789" and len(tok.value) == 1


def _parse_param_text(tokens: list[Token]) -> tuple[list[Token], list[Param]]:
    """Split `\\def` parameter text into a literal prefix and parameters."""
    prefix: list[Token] = []
    delimiters: list[list[Token]] = []
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.type == TokenType.PARAMETER and i + 1 < len(tokens) and _is_param_digit(tokens[i + 1]):
            delimiters.append([])
            i += 2
            continue
        if tok.type == TokenType.PARAMETER and i + 1 == len(tokens):
            # `#{`: the brace delimits the last parameter and stays in the input
            i += 1
            continue
        (delimiters[-1] if delimiters else prefix).append(tok)
        i += 1

    params: list[Param] = [
        Delimited(tuple(stop)) if stop else Undelimited() for stop in delimiters
    ]
    return prefix, params


def _substitute(replacement: tuple[Token, ...], args: list[list[Token]]) -> list[Token | _Return]:
    out: list[Token | _Return] = []
    i = 0
    while i < len(replacement):
        tok = replacement[i]
        if tok.type == TokenType.PARAMETER and i + 1 < len(replacement):
            nxt = replacement[i + 1]
            if nxt.type == TokenType.PARAMETER:
                out.append(dataclasses.replace(nxt, expanded=True))
                i += 2
                continue
            if _is_param_digit(nxt) and int(nxt.value) <= len(args):
                out.extend(args[int(nxt.value) - 1])
                i += 2
                continue
        out.append(dataclasses.replace(tok, expanded=True))
        i += 1
    return out


def _strip_braces(tokens: list[Token]) -> list[Token]:
    """Drop one pair of braces enclosing the whole argument."""
    if len(tokens) < 2:
        return tokens
    if tokens[0].type != TokenType.BEGIN_GROUP or tokens[-1].type != TokenType.END_GROUP:
        return tokens
    depth = 0
    for i, tok in enumerate(tokens):
        if tok.type == TokenType.BEGIN_GROUP:
            depth += 1
        elif tok.type == TokenType.END_GROUP:
            depth -= 1
            if depth == 0 and i != len(tokens) - 1:
                return tokens
    return tokens[1:-1]


def _braced(consumed: list[Token], name_tokens: list[Token]) -> list[Token]:
    """Wrap a bare file name in zero-width braces so it parses as one argument."""
    names = {id(t) for t in name_tokens}
    lead = [t for t in consumed if id(t) not in names]
    return [*lead, *_zero_width_group(name_tokens)]


def _zero_width_group(tokens: list[Token]) -> list[Token]:
    start = tokens[0].span
    end = tokens[-1].span
    open_brace = Token(
        TokenType.BEGIN_GROUP, "{", "", Span(start.start, start.start, start.file_id), expanded=True
    )
    close_brace = Token(
        TokenType.END_GROUP, "}", "", Span(end.end, end.end, end.file_id), expanded=True
    )
    return [open_brace, *tokens, close_brace]


def expand(
    doc: Document,
    initial_scope: Scope | None = None,
    *,
    files: FileTable | None = None,
    limits: ExpansionLimits | None = None,
    commands: CommandTable | None = None,
) -> tuple[Document, list[Diagnostic]]:
    """Expand macros and inclusions, returning the new Document and diagnostics.

    *initial_scope* is updated in place with the definitions the document
    makes at its top level.
    """
    expander = Expander(
        files=files if files is not None else FileTable(commands=commands),
        limits=limits if limits is not None else ExpansionLimits(),
        commands=commands,
    )
    scope = initial_scope if initial_scope is not None else Scope()
    result = expander.expand_document(doc, scope)
    return result, list(expander.diagnostics)
