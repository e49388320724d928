"""File table: ids, ancestry, contents and parse cache for included files."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from texloom.ast import Document
from texloom.catcodes import CatcodeTable
from texloom.commands import CommandTable
from texloom.errors import Diagnostic, DiagnosticKind
from texloom.parser import parse
from texloom.tokens import Catcode, Position, Span

# File id of anonymous input (stdin or an in-memory string)
ANONYMOUS = 0


@dataclass
class FileEntry:
    """One known file. The parsed Document is cached once computed."""

    file_id: int
    path: Path | None
    parent_id: int | None = None
    contents: bytes | None = None
    document: Document | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def name(self) -> str:
        return str(self.path) if self.path is not None else "<stdin>"

    @property
    def state(self) -> str:
        if self.document is not None:
            return "parsed"
        if self.contents is not None:
            return "read"
        return "unparsed"


class FileTable:
    """Registry of files taking part in one run.

    Entries are keyed by canonical path, so a file included from several
    places is read and parsed once. The cache is guarded by a lock so that
    sibling inclusion branches may be processed concurrently.
    """

    def __init__(
        self,
        *,
        working_dir: Path | None = None,
        commands: CommandTable | None = None,
        catcodes: dict[str, Catcode] | None = None,
    ) -> None:
        self.working_dir = working_dir if working_dir is not None else Path.cwd()
        self.commands = commands
        self.catcodes = catcodes
        self._entries: dict[int, FileEntry] = {ANONYMOUS: FileEntry(ANONYMOUS, None)}
        self._by_path: dict[Path, int] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, file_id: int) -> FileEntry:
        with self._lock:
            return self._entries.get(file_id) or self._entries[ANONYMOUS]

    def lookup(self, path: Path) -> FileEntry | None:
        with self._lock:
            file_id = self._by_path.get(path.resolve())
            return self._entries[file_id] if file_id is not None else None

    def register(self, path: Path, parent: int | None = None) -> FileEntry:
        """Return the entry for *path*, creating it on first sight."""
        canonical = path.resolve()
        with self._lock:
            file_id = self._by_path.get(canonical)
            if file_id is not None:
                return self._entries[file_id]
            file_id = len(self._entries)
            entry = FileEntry(file_id, canonical, parent)
            self._entries[file_id] = entry
            self._by_path[canonical] = file_id
            return entry

    def set_source(self, file_id: int, contents: bytes) -> None:
        """Provide contents directly (stdin, editor buffers), dropping any cache."""
        with self._lock:
            entry = self.entry(file_id)
            entry.contents = contents
            entry.document = None
            entry.diagnostics = []

    def directory(self, file_id: int) -> Path:
        entry = self.entry(file_id)
        if entry.path is None:
            return self.working_dir
        return entry.path.parent

    def ancestors(self, file_id: int) -> list[int]:
        """Walk parent links from *file_id* up to the root (inclusive)."""
        chain: list[int] = []
        current: int | None = file_id
        while current is not None and current not in chain:
            chain.append(current)
            current = self.entry(current).parent_id
        return chain

    # ------------------------------------------------------------------
    # Reading and parsing
    # ------------------------------------------------------------------

    def read(self, file_id: int) -> bytes:
        """Return file contents, reading them on first use. Raises OSError."""
        with self._lock:
            entry = self.entry(file_id)
            if entry.contents is None:
                if entry.path is None:
                    raise FileNotFoundError("anonymous input has no contents")
                entry.contents = entry.path.read_bytes()
            return entry.contents

    def document(self, file_id: int) -> tuple[Document, list[Diagnostic]]:
        """Return the cached parse of a file, parsing it on first use.

        Raises OSError when the file cannot be read.
        """
        with self._lock:
            entry = self.entry(file_id)
            if entry.document is None:
                contents = self.read(file_id)
                catcodes = CatcodeTable(self.catcodes)
                entry.document, entry.diagnostics = parse(
                    contents, entry.file_id, catcodes=catcodes, commands=self.commands
                )
            return entry.document, list(entry.diagnostics)

    def load(self, path: Path) -> tuple[Document, list[Diagnostic]]:
        """Register and parse a top-level file; read failures become IoError."""
        entry = self.register(path)
        try:
            return self.document(entry.file_id)
        except OSError as exc:
            doc, _ = parse(b"", entry.file_id)
            start = Position(1, 1, 0)
            diag = Diagnostic.make(
                DiagnosticKind.IO_ERROR,
                f"cannot read {path}: {exc.strerror or exc}",
                Span(start, start, entry.file_id),
            )
            doc.diagnostics.append(diag)
            return doc, [diag]

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        name: str,
        ancestors: tuple[int, ...],
        extensions: tuple[str, ...] = (".tex",),
    ) -> Path | None:
        """Find *name* relative to the including file, its ancestors, then cwd.

        *ancestors* runs from the root file to the including file. Names
        without a suffix try each extension before the bare name.
        """
        if Path(name).is_absolute():
            for candidate in _candidates(name, extensions):
                if candidate.is_file():
                    return candidate.resolve()
            return None

        directories: list[Path] = []
        for file_id in reversed(ancestors):
            directory = self.directory(file_id)
            if directory not in directories:
                directories.append(directory)
        if self.working_dir not in directories:
            directories.append(self.working_dir)

        for directory in directories:
            for candidate in _candidates(name, extensions):
                path = directory / candidate
                if path.is_file():
                    return path.resolve()
        return None


def _candidates(name: str, extensions: tuple[str, ...]) -> list[Path]:
    path = Path(name)
    if path.suffix:
        return [path, *(Path(name + ext) for ext in extensions)]
    return [*(Path(name + ext) for ext in extensions), path]


def parse_file(
    path: Path, files: FileTable | None = None
) -> tuple[Document, list[Diagnostic], FileTable]:
    """Convenience function: parse a file through a (possibly new) file table."""
    if files is None:
        files = FileTable()
    doc, diagnostics = files.load(path)
    return doc, diagnostics, files
