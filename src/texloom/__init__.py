"""texloom: TeX/LaTeX lexer, parser, macro expander and source tooling."""

from __future__ import annotations

from texloom.deps import collect_dependencies
from texloom.expand import expand
from texloom.format import format
from texloom.highlight import highlight
from texloom.parser import parse

__version__ = "0.1.0"

__all__ = ["collect_dependencies", "expand", "format", "highlight", "parse", "__version__"]
