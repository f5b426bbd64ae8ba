"""Streaming transforms used while piping sources into the bundle.

``LineTransform`` splits a byte stream on line feeds and hands every line to
an inspector. ``ImportExtractor`` is the inspector that pulls ``require``
declarations out of the body and regenerates them as one deduplicated block.
``Prepender`` writes that block in front of the finished bundle.
"""

from __future__ import annotations

import copy
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING

from distributor.config import CHUNK_SIZE, FULL_IMPORT
from distributor.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    LineInspector = Callable[[str, bytes], str | None]

LF = b"\n"

# encoding used for lines handed to inspectors; surrogateescape keeps
# undecodable bytes intact through a decode/encode round trip
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


def _passthrough(line: str, line_bytes: bytes) -> str:  # noqa: ARG001
    return line


class LineTransform:
    """Line-by-line streaming transform.

    Feed it chunks of bytes in any size; complete lines go through the
    inspector immediately and at most one partial line is kept until the next
    chunk (or ``flush``) completes it. The inspector returns the replacement
    text for the line, or None to drop the line and its line feed.
    """

    def __init__(self, inspector: LineInspector | None = None) -> None:
        self.inspector: LineInspector = inspector or _passthrough
        self.current_size = 0
        self._pending = b""
        self._started = False

    def set_inspector(self, inspector: LineInspector) -> LineTransform:
        """Replace the per-line inspector.

        Returns:
            LineTransform: self, for chaining
        """
        if callable(inspector):
            self.inspector = inspector
        return self

    def reset_current_size(self) -> LineTransform:
        """Reset the emitted byte counter.

        Returns:
            LineTransform: self, for chaining
        """
        self.current_size = 0
        return self

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume one chunk and return the transformed complete lines."""
        if not self._started:
            chunk = chunk.lstrip(LF)
            if not chunk:
                return []
            self._started = True

        *lines, self._pending = (self._pending + chunk).split(LF)
        out: list[bytes] = []
        for raw in lines:
            emitted = self._emit(raw, terminated=True)
            if emitted:
                out.append(emitted)
        return out

    def flush(self) -> list[bytes]:
        """Emit the pending partial line and get ready for the next input stream."""
        pending, self._pending = self._pending, b""
        self._started = False
        if not pending:
            return []
        emitted = self._emit(pending, terminated=False)
        return [emitted] if emitted else []

    def process(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        """Transform a whole input stream, flushing its last partial line.

        Args:
            chunks (Iterable[bytes]): the input stream

        Yields:
            bytes: transformed output, one line per item
        """
        for chunk in chunks:
            yield from self.feed(chunk)
        yield from self.flush()

    def finish(self) -> list[bytes]:
        """Flush and signal the end of all input."""
        out = self.flush()
        self._on_finish()
        return out

    def _on_finish(self) -> None:
        """Hook run by ``finish``."""

    def _emit(self, raw: bytes, *, terminated: bool) -> bytes:
        line = raw.decode(_ENCODING, _ERRORS)
        replacement = self.inspector(line, raw)
        if replacement is None:
            return b""
        out = replacement.encode(_ENCODING, _ERRORS)
        if terminated:
            out += LF
        self.current_size += len(out)
        return out


@dataclass
class ImportDeclaration:
    """Merged view of every ``require`` of one module and import kind."""

    keyword: str
    destructured: bool
    variables: dict[str, str | None] = field(default_factory=dict)

    def render(self, module_id: str, kind: str) -> str:
        """Regenerate the declaration line, variables in first-seen order."""
        names = ", ".join(f"{name}: {alias}" if alias else name for name, alias in self.variables.items())
        if self.destructured or len(self.variables) > 1:
            names = f"{{ {names} }}"
        partition = "" if kind == FULL_IMPORT else f".{kind}"
        return f'{self.keyword} {names} = require("{module_id}"){partition};'


# kind -> declaration, for one module id
ImportRecord = dict[str, ImportDeclaration]

_REQUIRE_HINT = re.compile(r"\brequire\s*\(")
_REQUIRE_LINE = re.compile(
    r"""^\s*
    (?P<keyword>const|let|var)\b\s*
    (?P<brace>\{)?\s*
    (?P<names>[\w$]+(?:\s*:\s*[\w$]+)?(?:\s*,\s*[\w$]+(?:\s*:\s*[\w$]+)?)*)\s*,?\s*
    (?(brace)\})\s*
    =\s*require\s*\(\s*(?P<quote>["'`])(?P<id>[^"'`]+)(?P=quote)\s*\)
    (?:\.(?P<prop>[\w$]+))?
    \s*;?\s*$""",
    re.VERBOSE,
)


class ImportExtractor(LineTransform):
    """Line transform that hoists ``require`` declarations.

    Matching lines are removed from the stream and merged per module id and
    import kind (``full`` or the accessed property). ``finish`` renders the
    merged declarations and appends them to ``parsed_imports``. One extractor
    shared by every file of a run yields a single bundle-wide block.
    """

    def __init__(self) -> None:
        super().__init__()
        self.imports: dict[str, ImportRecord] = {}
        self.parsed_imports = ""
        self.set_inspector(self.match_require)

    @staticmethod
    def test_for_require(line: str) -> bool:
        """Cheap pre-check before running the full pattern."""
        return bool(_REQUIRE_HINT.search(line))

    def match_require(self, line: str, line_bytes: bytes = b"") -> str | None:  # noqa: ARG002
        """Record a ``require`` declaration line.

        Args:
            line (str): the line, without its line feed
            line_bytes (bytes): the raw bytes of the line

        Returns:
            str | None: None when the line was recorded, the line itself otherwise
        """
        if not self.test_for_require(line):
            return line
        matched = _REQUIRE_LINE.match(line)
        if not matched:
            return line

        module_id = matched["id"]
        kind = matched["prop"] or FULL_IMPORT
        record = self.imports.setdefault(module_id, {})
        declaration = record.setdefault(
            kind,
            ImportDeclaration(keyword=matched["keyword"], destructured=bool(matched["brace"])),
        )
        for name_string in matched["names"].split(","):
            name, _, alias = (part.strip() for part in name_string.partition(":"))
            declaration.variables[name] = alias or None
        return None

    def render_imports(self) -> list[str]:
        """Render one declaration line per (module id, kind), in first-seen order."""
        return [
            declaration.render(module_id, kind)
            for module_id, record in self.imports.items()
            for kind, declaration in record.items()
        ]

    def snapshot(self) -> dict[str, ImportRecord]:
        """Copy of the recorded imports, for ``restore``."""
        return copy.deepcopy(self.imports)

    def restore(self, imports: dict[str, ImportRecord]) -> ImportExtractor:
        """Roll the recorded imports back and drop any pending partial line.

        Returns:
            ImportExtractor: self, for chaining
        """
        self.imports = imports
        self._pending = b""
        self._started = False
        return self

    def _on_finish(self) -> None:
        lines = self.render_imports()
        self.imports = {}
        if not lines:
            return
        prefix = "\n" if self.parsed_imports else ""
        self.parsed_imports += prefix + "\n".join(lines)


class Prepender:
    """Rewrite a file with a header in front of its original content.

    The file is streamed into a temporary file next to it, the header going
    in before the first chunk, and the temporary file then replaces the
    original. The original stays untouched until that final swap.
    """

    def __init__(self, target: Path, header: str, *, temp_dir: Path | None = None) -> None:
        self.target = target
        self.header = header
        self.temp_dir = temp_dir or target.parent
        self.already_prepended = False
        self.temp_path: Path | None = None
        self._temp: IO[bytes] | None = None

    def write(self, chunk: bytes) -> int:
        """Write a chunk of the original content to the temporary file.

        The first call writes the header and a blank line first.

        Returns:
            int: number of bytes written for this call
        """
        if self._temp is None:
            msg = "Prepender.write called outside of run()"
            raise RuntimeError(msg)
        written = 0
        if not self.already_prepended:
            self.already_prepended = True
            written += self._temp.write(self.header.encode(_ENCODING, _ERRORS) + LF + LF)
        written += self._temp.write(chunk)
        return written

    def run(self) -> bool:
        """Perform the rewrite.

        Returns:
            bool: True when the target now starts with the header
        """
        try:
            fd, name = tempfile.mkstemp(prefix=f".{self.target.name}.", suffix=".tmp", dir=self.temp_dir)
        except OSError as e:
            logger.warning("Failed to create temp file for %s: %s", self.target, e)
            return False

        self.temp_path = Path(name)
        try:
            with os.fdopen(fd, "wb") as tmp, self.target.open("rb") as src:
                self._temp = tmp
                for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
                    self.write(chunk)
                if not self.already_prepended:
                    self.write(b"")
            shutil.copymode(self.target, self.temp_path)
            os.replace(self.temp_path, self.target)
        except OSError as e:
            logger.warning("Failed to prepend to %s, keeping it unchanged: %s", self.target, e)
            self.temp_path.unlink(missing_ok=True)
            return False
        finally:
            self._temp = None
        return True


def prepend_header(target: Path, header: str, *, temp_dir: Path | None = None) -> bool:
    """Insert ``header`` and a blank line at the top of ``target``.

    Args:
        target (Path): file to rewrite
        header (str): text to put first
        temp_dir (Path | None): where the temporary copy goes; defaults to the target's directory

    Returns:
        bool: True on success; on failure the target is left as it was
    """
    return Prepender(target, header, temp_dir=temp_dir).run()
