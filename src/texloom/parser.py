"""TeX parser: builds a recoverable structural tree from a token stream."""

from __future__ import annotations

from collections.abc import Callable

from texloom.ast import (
    Argument,
    ArgumentKind,
    Command,
    Comment,
    Document,
    Environment,
    Group,
    Leaf,
    Math,
    Node,
    NodeId,
)
from texloom.catcodes import CatcodeTable
from texloom.commands import CommandSpec, CommandTable
from texloom.errors import Diagnostic, DiagnosticKind
from texloom.lexer import Lexer
from texloom.tokens import Position, Span, Token, TokenType

StopFn = Callable[[Token], bool]

# Nesting of groups, environments, math and optional arguments; deeper
# content is kept as plain tokens so tree walks stay within the stack
MAX_NESTING = 64


class Parser:
    """Single-pass recursive descent parser for TeX token streams.

    Malformed constructs are kept in the tree with a diagnostic attached;
    parsing always runs to the end of the token stream.
    """

    def __init__(
        self,
        tokens: list[Token],
        source: str,
        file_id: int = 0,
        commands: CommandTable | None = None,
    ) -> None:
        # Copied: splitting `$$` inside inline math inserts a token
        self._tokens = list(tokens)
        if not self._tokens or self._tokens[-1].type != TokenType.EOF:
            end = self._tokens[-1].span.end if self._tokens else Position(1, 1, 0)
            self._tokens.append(Token(TokenType.EOF, "", "", Span(end, end, file_id)))
        self._source = source
        self._file_id = file_id
        self._commands = commands if commands is not None else CommandTable()
        self._pos = 0
        self._group_depth = 0
        self._nesting = 0
        self._nesting_reported = False
        self._nodes: list[Node] = []
        self._diagnostics: list[Diagnostic] = []

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        idx = self._pos + offset
        if idx < len(self._tokens):
            return self._tokens[idx]
        return self._tokens[-1]  # EOF

    def _advance(self) -> int:
        idx = self._pos
        if self._tokens[idx].type != TokenType.EOF:
            self._pos += 1
        return idx

    def _at_control(self, name: str, offset: int = 0) -> bool:
        tok = self._peek(offset)
        return tok.type == TokenType.CONTROL_WORD and tok.value == name

    def _at_char(self, ch: str, offset: int = 0) -> bool:
        tok = self._peek(offset)
        return tok.type == TokenType.CHARACTER and tok.value == ch

    def _prev_end(self) -> Position:
        """End position of the previously consumed token."""
        if self._pos > 0:
            return self._tokens[self._pos - 1].span.end
        return self._tokens[0].span.start

    def _span_from(self, start_idx: int) -> Span:
        return Span(self._tokens[start_idx].span.start, self._prev_end(), self._file_id)

    def _add(self, node: Node) -> NodeId:
        self._nodes.append(node)
        return len(self._nodes) - 1

    def _leaf(self) -> NodeId:
        idx = self._advance()
        tok = self._tokens[idx]
        if tok.type == TokenType.COMMENT:
            return self._add(Comment(tok.value, idx, tok.span))
        return self._add(Leaf(idx, tok.span))

    def _report(
        self, kind: DiagnosticKind, message: str, span: Span, node: NodeId | None = None
    ) -> None:
        self._diagnostics.append(Diagnostic.make(kind, message, span, node=node))

    def _report_nesting(self, span: Span, node: NodeId | None = None) -> None:
        if self._nesting_reported:
            return
        self._nesting_reported = True
        self._report(
            DiagnosticKind.UNTERMINATED_GROUP,
            f"nesting deeper than {MAX_NESTING} levels is kept as plain text",
            span,
            node,
        )

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------

    def parse(self) -> Document:
        children = self._parse_nodes(_never)
        eof = self._peek()
        start = self._tokens[0].span.start
        root = self._add(
            Group(tuple(children), None, None, True, "", Span(start, eof.span.end, self._file_id))
        )
        return Document(
            file_id=self._file_id,
            source=self._source,
            tokens=self._tokens,
            nodes=self._nodes,
            root=root,
            diagnostics=self._diagnostics,
            size=eof.span.end.offset,
        )

    def _parse_nodes(
        self, stop: StopFn, *, in_env: bool = False, in_math: bool = False
    ) -> list[NodeId]:
        nodes: list[NodeId] = []
        while True:
            tok = self._peek()
            if tok.type == TokenType.EOF:
                break
            if tok.type == TokenType.END_GROUP and self._group_depth > 0:
                break
            if in_env and tok.type == TokenType.CONTROL_WORD and tok.value == "end":
                break
            if stop(tok):
                break
            nodes.append(self._parse_node(in_env=in_env, in_math=in_math))
        return nodes

    def _parse_node(self, *, in_env: bool, in_math: bool) -> NodeId:
        tok = self._peek()
        nested = self._nesting < MAX_NESTING
        if not nested and _opens_nesting(tok, in_math):
            self._report_nesting(tok.span)

        if tok.type == TokenType.BEGIN_GROUP:
            return self._parse_group()

        if tok.type == TokenType.END_GROUP:
            node_id = self._leaf()
            self._report(
                DiagnosticKind.UNTERMINATED_GROUP,
                "unexpected '}' with no open group",
                tok.span,
                node_id,
            )
            return node_id

        if tok.type == TokenType.MATH_SHIFT and not in_math and nested:
            return self._parse_math(in_env=in_env)

        if tok.type == TokenType.CONTROL_SYMBOL and tok.value in ("(", "[") and not in_math:
            if nested:
                return self._parse_math(in_env=in_env)

        if tok.type == TokenType.CONTROL_WORD and tok.value == "begin" and nested:
            return self._parse_begin(in_math=in_math)

        if tok.type == TokenType.CONTROL_WORD and tok.value == "end":
            node_id, name = self._parse_end()
            self._report(
                DiagnosticKind.MISMATCHED_ENVIRONMENT,
                f"\\end{{{name}}} without matching \\begin",
                self._nodes[node_id].span,
                node_id,
            )
            return node_id

        if tok.type in (TokenType.CONTROL_WORD, TokenType.CONTROL_SYMBOL):
            return self._parse_command(in_env=in_env, in_math=in_math)

        return self._leaf()

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def _parse_group(self) -> NodeId:
        if self._nesting >= MAX_NESTING:
            return self._parse_flat_group()
        open_idx = self._advance()
        self._group_depth += 1
        self._nesting += 1
        children = self._parse_nodes(_never)
        self._nesting -= 1
        self._group_depth -= 1

        if self._peek().type == TokenType.END_GROUP:
            close_idx = self._advance()
            return self._add(
                Group(tuple(children), open_idx, close_idx, True, "{", self._span_from(open_idx))
            )

        node_id = self._add(
            Group(tuple(children), open_idx, None, False, "{", self._span_from(open_idx))
        )
        self._report(
            DiagnosticKind.UNTERMINATED_GROUP,
            "unterminated group: missing '}'",
            self._tokens[open_idx].span,
            node_id,
        )
        return node_id

    def _parse_flat_group(self) -> NodeId:
        """Keep a balanced group's tokens as leaves, without nested structure."""
        open_idx = self._advance()
        children: list[NodeId] = []
        depth = 0
        while (tok := self._peek()).type != TokenType.EOF:
            if tok.type == TokenType.END_GROUP:
                if depth == 0:
                    break
                depth -= 1
            elif tok.type == TokenType.BEGIN_GROUP:
                depth += 1
            children.append(self._leaf())

        close_idx = self._advance() if self._peek().type == TokenType.END_GROUP else None
        closed = close_idx is not None
        node_id = self._add(
            Group(tuple(children), open_idx, close_idx, closed, "{", self._span_from(open_idx))
        )
        self._report_nesting(self._tokens[open_idx].span, node_id)
        if not closed:
            self._report(
                DiagnosticKind.UNTERMINATED_GROUP,
                "unterminated group: missing '}'",
                self._tokens[open_idx].span,
                node_id,
            )
        return node_id

    def _parse_optional(self, *, in_env: bool, in_math: bool) -> NodeId:
        open_idx = self._advance()
        self._nesting += 1
        children = self._parse_nodes(_is_rbracket, in_env=in_env, in_math=in_math)
        self._nesting -= 1

        if self._at_char("]"):
            close_idx = self._advance()
            return self._add(
                Group(tuple(children), open_idx, close_idx, True, "[", self._span_from(open_idx))
            )

        node_id = self._add(
            Group(tuple(children), open_idx, None, False, "[", self._span_from(open_idx))
        )
        self._report(
            DiagnosticKind.UNTERMINATED_GROUP,
            "unterminated optional argument: missing ']'",
            self._tokens[open_idx].span,
            node_id,
        )
        return node_id

    # ------------------------------------------------------------------
    # Math
    # ------------------------------------------------------------------

    def _parse_math(self, *, in_env: bool) -> NodeId:
        open_tok = self._peek()
        open_idx = self._advance()

        if open_tok.type == TokenType.MATH_SHIFT:
            display = open_tok.value == "$$"
            stop = _is_display_shift if display else _is_math_shift
            closer = open_tok.value
        else:
            display = open_tok.value == "["
            closer = "]" if display else ")"
            stop = _control_symbol(closer)

        self._nesting += 1
        children = self._parse_nodes(stop, in_env=in_env, in_math=True)
        self._nesting -= 1

        close_idx: int | None = None
        tok = self._peek()
        if stop(tok):
            if tok.type == TokenType.MATH_SHIFT and tok.value != closer:
                # `$a$$b$`: the doubled shift closes this math and opens the next
                self._split_math_shift(self._pos)
            close_idx = self._advance()

        span = self._span_from(open_idx)
        node_id = self._add(
            Math(display, tuple(children), open_idx, close_idx, close_idx is not None, span)
        )
        if close_idx is None:
            kind = "display" if display else "inline"
            self._report(
                DiagnosticKind.UNTERMINATED_GROUP,
                f"unterminated {kind} math: missing '{closer}'",
                open_tok.span,
                node_id,
            )
        return node_id

    def _split_math_shift(self, idx: int) -> None:
        tok = self._tokens[idx]
        start = tok.span.start
        middle = Position(start.line, start.column + 1, start.offset + 1)
        first = Token(
            TokenType.MATH_SHIFT, "$", tok.raw[:1], Span(start, middle, tok.span.file_id),
            expanded=tok.expanded,
        )
        second = Token(
            TokenType.MATH_SHIFT, "$", tok.raw[1:], Span(middle, tok.span.end, tok.span.file_id),
            expanded=tok.expanded,
        )
        self._tokens[idx : idx + 1] = [first, second]

    # ------------------------------------------------------------------
    # Commands and arguments
    # ------------------------------------------------------------------

    def _parse_command(self, *, in_env: bool, in_math: bool) -> NodeId:
        tok = self._peek()
        token_idx = self._advance()
        spec = self._commands.command(tok.value)

        star: int | None = None
        if spec.starred and self._at_char("*"):
            star = self._advance()

        args = self._parse_arguments(spec, tok.value, in_env=in_env, in_math=in_math)
        return self._add(Command(tok.value, token_idx, star, args, self._span_from(token_idx)))

    def _parse_arguments(
        self, spec: CommandSpec, name: str, *, in_env: bool, in_math: bool
    ) -> tuple[Argument, ...]:
        args: list[Argument] = []
        for position, kind in enumerate(spec.signature, start=1):
            if kind == "o":
                skip = self._skippable(spaces_only=True)
                if not self._at_char("[", skip) or self._nesting >= MAX_NESTING:
                    continue
                leading = self._consume_leading(skip)
                content = self._parse_optional(in_env=in_env, in_math=in_math)
                args.append(Argument(ArgumentKind.OPTIONAL, content, leading))
                continue

            skip = self._skippable()
            target = self._peek(skip)
            if _cannot_start_argument(target):
                self._report(
                    DiagnosticKind.MACRO_ARITY_MISMATCH,
                    f"missing argument {position} of \\{name}",
                    target.span if target.type != TokenType.EOF else self._peek().span,
                )
                break
            leading = self._consume_leading(skip)
            if target.type == TokenType.BEGIN_GROUP:
                content = self._parse_group()
            else:
                content = self._leaf()
            args.append(Argument(ArgumentKind.MANDATORY, content, leading))
        return tuple(args)

    def _skippable(self, *, spaces_only: bool = False) -> int:
        """Count whitespace/comment tokens TeX skips before an argument."""
        k = 0
        newlines = 0
        while True:
            tok = self._peek(k)
            if tok.type == TokenType.SPACE:
                k += 1
            elif spaces_only:
                break
            elif tok.type == TokenType.COMMENT:
                k += 1
                if self._peek(k).type == TokenType.END_OF_LINE:
                    k += 1
            elif tok.type == TokenType.END_OF_LINE and newlines == 0:
                # A second line break is a paragraph break, which ends the scan
                newlines += 1
                k += 1
            else:
                break
        return k

    def _consume_leading(self, count: int) -> tuple[NodeId, ...]:
        return tuple(self._leaf() for _ in range(count))

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------

    def _parse_begin(self, *, in_math: bool) -> NodeId:
        begin_idx = self._pos
        skip = self._skippable_from(1)
        if self._peek(1 + skip).type != TokenType.BEGIN_GROUP:
            # \begin without a name: keep it as a plain command
            return self._parse_command(in_env=False, in_math=in_math)

        self._advance()
        leading = self._consume_leading(skip)
        name_group = self._parse_group()
        name = self._document_text(name_group).strip()
        name_arg = Argument(ArgumentKind.MANDATORY, name_group, leading)

        spec = self._commands.environment(name)
        extra = self._parse_arguments(spec, f"begin{{{name}}}", in_env=False, in_math=in_math)
        begin_id = self._add(
            Command("begin", begin_idx, None, (name_arg, *extra), self._span_from(begin_idx))
        )
        begin_span = self._nodes[begin_id].span

        if name in self._commands.verbatim:
            body = self._parse_verbatim_body(name)
        else:
            self._nesting += 1
            body = self._parse_nodes(_never, in_env=True, in_math=in_math)
            self._nesting -= 1

        end_id: NodeId | None = None
        end_name: str | None = None
        if self._at_control("end"):
            end_id, end_name = self._parse_end()

        end_span = self._nodes[end_id].span if end_id is not None else None
        span = Span(begin_span.start, self._prev_end(), self._file_id)
        matched = end_name == name
        env_id = self._add(
            Environment(name, begin_id, end_id, tuple(body), matched, begin_span, end_span, span)
        )

        if end_name is None:
            self._report(
                DiagnosticKind.MISMATCHED_ENVIRONMENT,
                f"environment '{name}' is never closed",
                begin_span,
                env_id,
            )
        elif not matched:
            assert end_span is not None
            self._report(
                DiagnosticKind.MISMATCHED_ENVIRONMENT,
                f"\\begin{{{name}}} ended by \\end{{{end_name}}}",
                end_span,
                env_id,
            )
        return env_id

    def _parse_end(self) -> tuple[NodeId, str]:
        end_idx = self._advance()
        skip = self._skippable(spaces_only=True)
        if self._peek(skip).type != TokenType.BEGIN_GROUP:
            return self._add(Command("end", end_idx, None, (), self._span_from(end_idx))), ""

        leading = self._consume_leading(skip)
        name_group = self._parse_group()
        name = self._document_text(name_group).strip()
        arg = Argument(ArgumentKind.MANDATORY, name_group, leading)
        node_id = self._add(Command("end", end_idx, None, (arg,), self._span_from(end_idx)))
        return node_id, name

    def _parse_verbatim_body(self, name: str) -> list[NodeId]:
        body: list[NodeId] = []
        while self._peek().type != TokenType.EOF and not self._at_verbatim_end(name):
            body.append(self._leaf())
        return body

    def _at_verbatim_end(self, name: str) -> bool:
        if not self._at_control("end"):
            return False
        k = 1 + self._skippable_from(1)
        if self._peek(k).type != TokenType.BEGIN_GROUP:
            return False
        parts: list[str] = []
        k += 1
        while self._peek(k).type not in (TokenType.END_GROUP, TokenType.EOF):
            parts.append(self._peek(k).raw)
            k += 1
        return "".join(parts).strip() == name

    def _skippable_from(self, offset: int) -> int:
        k = 0
        while self._peek(offset + k).type == TokenType.SPACE:
            k += 1
        return k

    def _document_text(self, node_id: NodeId) -> str:
        """Raw text of a group's content, read from the tokens parsed so far."""
        node = self._nodes[node_id]
        assert isinstance(node, Group)
        start = node.open + 1 if node.open is not None else 0
        stop = node.close if node.close is not None else self._pos
        return "".join(tok.raw for tok in self._tokens[start:stop])


# Module-level stop predicates


def _never(tok: Token) -> bool:
    return False


def _is_rbracket(tok: Token) -> bool:
    return tok.type == TokenType.CHARACTER and tok.value == "]"


def _is_math_shift(tok: Token) -> bool:
    return tok.type == TokenType.MATH_SHIFT


def _is_display_shift(tok: Token) -> bool:
    return tok.type == TokenType.MATH_SHIFT and tok.value == "$$"


def _control_symbol(ch: str) -> StopFn:
    def stop(tok: Token) -> bool:
        return tok.type == TokenType.CONTROL_SYMBOL and tok.value == ch

    return stop


def _opens_nesting(tok: Token, in_math: bool) -> bool:
    if tok.type == TokenType.CONTROL_WORD:
        return tok.value == "begin"
    if in_math:
        return False
    if tok.type == TokenType.MATH_SHIFT:
        return True
    return tok.type == TokenType.CONTROL_SYMBOL and tok.value in ("(", "[")


def _cannot_start_argument(tok: Token) -> bool:
    if tok.type in (
        TokenType.EOF,
        TokenType.END_GROUP,
        TokenType.MATH_SHIFT,
        TokenType.SPACE,
        TokenType.END_OF_LINE,
        TokenType.COMMENT,
    ):
        return True
    return tok.type == TokenType.CONTROL_WORD and tok.value in ("begin", "end")


def parse(
    source: str | bytes,
    file_id: int = 0,
    *,
    catcodes: CatcodeTable | None = None,
    commands: CommandTable | None = None,
) -> tuple[Document, list[Diagnostic]]:
    """Convenience function: lex and parse source, returning (Document, diagnostics)."""
    lexer = Lexer(source, catcodes, file_id)
    tokens, lex_diagnostics = lexer.tokenize()
    doc = Parser(tokens, lexer.source, file_id, commands).parse()
    doc.diagnostics = [*lex_diagnostics, *doc.diagnostics]
    return doc, list(doc.diagnostics)
