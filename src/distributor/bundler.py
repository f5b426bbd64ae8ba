"""Concatenation engine: stream every selected source into the output file.

Each file is written at the cursor through one random-access handle, so the
output is rewritten in place and only truncated when the new content is
shorter than what was there before.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from distributor.config import CHUNK_SIZE, MAX_RETRY, SOURCE_PROCESSOR, FileKind, register_source_processor
from distributor.exceptions import OutputPreparationError, TranspileError
from distributor.logging import logger
from distributor.streams import ImportExtractor, prepend_header
from distributor.typescript import TypeScriptTranspiler, find_ts_config, load_ts_config
from distributor.walker import relpath, walk
from distributor.wrapper import close_module, open_module

if TYPE_CHECKING:
    from collections.abc import Iterator

    from distributor.config import Entry
    from distributor.settings import BundleConfig
    from distributor.typescript import Transpiler

# errors that only cost the entry being bundled
ENTRY_ERRORS = (OSError, UnicodeError, TranspileError)


@dataclass
class BundleSession:
    """State shared by the entries of one bundling run.

    The transpiler is probed at most once and the TypeScript options are
    loaded at most once per run.
    """

    config: BundleConfig
    transpiler: Transpiler
    _use_ts: bool | None = field(default=None, init=False)
    _ts_options: dict[str, Any] | None = field(default=None, init=False)

    @property
    def use_ts(self) -> bool:
        if self._use_ts is None:
            self._use_ts = self.config.ts_installed and self.transpiler.available()
            if self.config.ts_installed and not self._use_ts:
                logger.warning("TypeScript compiler not found, TypeScript sources will be skipped")
        return self._use_ts

    @property
    def ts_options(self) -> dict[str, Any]:
        if self._ts_options is None:
            self._ts_options = self._load_ts_options()
        return self._ts_options

    def _load_ts_options(self) -> dict[str, Any]:
        try:
            if self.config.ts_config is not None:
                return load_ts_config(self.config.ts_config)
            found = find_ts_config()
        except TranspileError as e:
            logger.warning("Ignoring TypeScript config: %s", e)
            return {}
        return found if isinstance(found, dict) else {}


@register_source_processor(FileKind.SCRIPT)
def read_script(path: Path, session: BundleSession) -> Iterator[bytes]:  # noqa: ARG001
    """Yield a script file verbatim, chunk by chunk."""
    with path.open("rb") as f:
        yield from iter(lambda: f.read(CHUNK_SIZE), b"")


@register_source_processor(FileKind.TYPESCRIPT)
def read_typescript(path: Path, session: BundleSession) -> Iterator[bytes]:
    """Yield the JavaScript transpiled from a TypeScript file."""
    yield session.transpiler.transpile(path, session.ts_options)


def prepare_output(output: Path, *, retries: int = MAX_RETRY) -> int:
    """Make sure the output file and its directory exist.

    Args:
        output (Path): the output file
        retries (int): attempts before giving up

    Raises:
        OutputPreparationError: if every attempt failed

    Returns:
        int: the current size of the output file
    """
    logger.info("Started preparing output")
    error: OSError | None = None
    for attempt in range(1, retries + 1):
        try:
            if not output.parent.is_dir():
                logger.info("Missing output folder, creating %s", output.parent)
                output.parent.mkdir(parents=True, exist_ok=True)
            output.touch(exist_ok=True)
            size = output.stat().st_size
        except OSError as e:
            error = e
            logger.warning("Failed to prepare %s (attempt %d of %d): %s", output, attempt, retries, e)
            continue
        logger.info("Finished preparing output")
        return size
    raise OutputPreparationError(path=output) from error


def _is_output(entry: Entry, output: Path) -> bool:
    try:
        return entry.full_path.resolve() == output
    except OSError:
        return False


def bundle(config: BundleConfig, *, transpiler: Transpiler | None = None) -> int:
    """Run one bundling pass.

    Args:
        config (BundleConfig): validated run options
        transpiler (Transpiler | None): TypeScript backend, ``tsc`` by default

    Raises:
        OutputPreparationError: if the output file cannot be created

    Returns:
        int: size of the bundle body, hoisted imports excluded
    """
    output = config.output
    dist_size = prepare_output(output)
    session = BundleSession(config=config, transpiler=transpiler or TypeScriptTranspiler())
    extractor = ImportExtractor()
    separator = config.separator.encode("utf-8") + b"\n"
    patterns = [*config.ignore, *config.exclude]
    high_water = 0

    with output.open("r+b") as handle:
        start_from = open_module(handle, config.module_config)
        logger.info("Started piping into output")

        for entry in walk(config.source, order=config.order, patterns=patterns):
            if not entry.is_file or _is_output(entry, output):
                continue
            name = relpath(entry.full_path, config.source)
            processor = SOURCE_PROCESSOR.get(entry.kind)
            if processor is None:
                logger.debug("Skipping %s: not a source file", name)
                continue
            if entry.kind is FileKind.TYPESCRIPT and not session.use_ts:
                logger.warning("Skipping %s: TypeScript is not available", name)
                continue

            saved = extractor.snapshot()
            extractor.reset_current_size()
            handle.seek(start_from)
            try:
                for chunk in extractor.process(processor(entry.full_path, session)):
                    handle.write(chunk)
                handle.write(separator)
            except ENTRY_ERRORS as e:
                logger.warning("Failed to bundle %s: %s", name, e)
                extractor.restore(saved)
                high_water = max(high_water, handle.tell())
                continue
            start_from += extractor.current_size + len(separator)
            logger.debug("Bundled %s, cursor at %d", name, start_from)

        cursor = close_module(handle, config.module_config, start_from)
        if cursor < max(dist_size, high_water):
            handle.truncate(cursor)

    logger.info("Finished piping into output")
    extractor.finish()
    if extractor.parsed_imports:
        prepend_header(output, extractor.parsed_imports)
    return cursor
