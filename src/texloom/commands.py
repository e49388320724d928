"""Command and environment argument signatures: injectable arity table."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Argument signature: a string of 'o' (optional) and 'm' (mandatory)."""

    signature: str = ""
    starred: bool = False

    def __post_init__(self) -> None:
        if any(ch not in "om" for ch in self.signature):
            raise ValueError(f"invalid argument signature: {self.signature!r}")


UNKNOWN = CommandSpec()


def _make_commands() -> dict[str, CommandSpec]:
    defs: dict[str, CommandSpec] = {}

    def d(names: str, signature: str = "", *, starred: bool = False) -> None:
        for name in names.split():
            defs[name] = CommandSpec(signature, starred)

    # Preamble
    d("documentclass usepackage RequirePackage", "om")
    d("title author date thanks", "m")

    # Structure and inclusion
    d("begin end", "m")
    d("input include subfile includeonly", "m")
    d("part chapter section subsection subsubsection paragraph subparagraph", "om", starred=True)
    d("caption", "om", starred=True)

    # References and files
    d("label ref eqref pageref autoref nameref url", "m")
    d("href", "mm")
    d("cite citep citet nocite", "om", starred=True)
    d("includegraphics", "om", starred=True)
    d("bibliography bibliographystyle", "m")
    d("addbibresource", "om")
    d("lstinputlisting", "om")
    d("inputminted", "omm")

    # Line breaks take an optional length: \\[2pt]
    d("\\", "o", starred=True)

    # Text formatting
    d("textbf textit texttt textsc textsf textrm emph underline mbox footnote", "m")
    d("item", "o")
    d("frac", "mm")
    d("sqrt", "om")
    d("hspace vspace", "m", starred=True)

    # Definitions keep their tokens opaque for the expander
    d("newcommand renewcommand providecommand", "", starred=True)
    return defs


def _make_environments() -> dict[str, CommandSpec]:
    return {
        "figure": CommandSpec("o"),
        "table": CommandSpec("o"),
        "tabular": CommandSpec("om"),
        "minipage": CommandSpec("om"),
        "thebibliography": CommandSpec("m"),
        "minted": CommandSpec("om"),
        "lstlisting": CommandSpec("o"),
    }


COMMANDS: dict[str, CommandSpec] = _make_commands()
ENVIRONMENTS: dict[str, CommandSpec] = _make_environments()

# Environments whose body is not TeX and runs to the matching \end
VERBATIM: frozenset[str] = frozenset(
    {"verbatim", "verbatim*", "Verbatim", "lstlisting", "minted", "comment"}
)


@dataclass
class CommandTable:
    """Lookup for command and environment signatures, with overrides."""

    commands: dict[str, CommandSpec] = field(default_factory=lambda: dict(COMMANDS))
    environments: dict[str, CommandSpec] = field(default_factory=lambda: dict(ENVIRONMENTS))
    verbatim: set[str] = field(default_factory=lambda: set(VERBATIM))

    def command(self, name: str) -> CommandSpec:
        return self.commands.get(name, UNKNOWN)

    def environment(self, name: str) -> CommandSpec:
        return self.environments.get(name.rstrip("*"), UNKNOWN)

    def update(
        self,
        commands: dict[str, str] | None = None,
        environments: dict[str, str] | None = None,
    ) -> None:
        """Merge signature strings, e.g. from a config file."""
        for name, sig in (commands or {}).items():
            starred = sig.startswith("*")
            self.commands[name] = CommandSpec(sig.lstrip("*"), starred)
        for name, sig in (environments or {}).items():
            self.environments[name] = CommandSpec(sig)
