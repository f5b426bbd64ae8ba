"""TypeScript support: config discovery and transpilation through ``tsc``."""

from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from distributor.config import DEFAULT_EXCLUDES, TS_CONFIG_PATTERN
from distributor.exceptions import TranspileError, TranspilerUnavailableError
from distributor.logging import logger

if TYPE_CHECKING:
    from collections.abc import Mapping

# compiler options that would fight with the temporary output directory
_RESERVED_OPTIONS = frozenset(
    {
        "composite",
        "declarationDir",
        "incremental",
        "noEmit",
        "out",
        "outDir",
        "outFile",
        "rootDir",
        "tsBuildInfoFile",
    },
)
_EMITTED_SUFFIXES = (".js", ".mjs", ".cjs", ".jsx")


@runtime_checkable
class Transpiler(Protocol):
    """Anything that can turn a TypeScript file into JavaScript bytes."""

    def available(self) -> bool: ...

    def transpile(self, source: Path, options: Mapping[str, Any]) -> bytes: ...


def find_ts_config(
    start: Path | None = None,
    *,
    closest_to_start: bool = True,
    path_only: bool = False,
) -> dict[str, Any] | Path | None:
    """Look for a tsconfig.json under ``start``.

    Args:
        start (Path | None): directory to search from, defaults to the CWD
        closest_to_start (bool): pick the candidate with the shortest path
            instead of the first one found
        path_only (bool): return the path instead of the parsed config

    Returns:
        dict[str, Any] | Path | None: the parsed config, its path, or None if there is none
    """
    start = start or Path.cwd()
    logger.info("Looking for TypeScript config in %s", start)
    ts_re = re.compile(TS_CONFIG_PATTERN)
    found: list[Path] = []
    for root, dirs, files in os.walk(start):
        dirs[:] = sorted(d for d in dirs if d not in DEFAULT_EXCLUDES)
        found.extend(Path(root) / f for f in sorted(files) if ts_re.match(f))
    if not found:
        logger.info("No TypeScript config found")
        return None

    first = min(found, key=lambda p: len(str(p))) if closest_to_start else found[0]
    logger.info("Found TypeScript config in %s", first)
    if path_only:
        return first
    return load_ts_config(first)


def load_ts_config(path: Path) -> dict[str, Any]:
    """Parse a tsconfig.json file.

    Raises:
        TranspileError: if the file cannot be read or is not a JSON object
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise TranspileError(path=path, message=f"cannot read TypeScript config: {e}") from e
    if not isinstance(data, dict):
        raise TranspileError(path=path, message="TypeScript config must be a JSON object")
    return data


def compiler_flags(options: Mapping[str, Any]) -> list[str]:
    """Turn scalar ``compilerOptions`` into ``tsc`` command-line flags.

    Lists, objects and options bound to the output location are left out.

    Args:
        options (Mapping[str, Any]): a parsed tsconfig, or its compilerOptions

    Returns:
        list[str]: flags for tsc
    """
    compiler_options = options.get("compilerOptions", options)
    flags: list[str] = []
    for key, value in compiler_options.items():
        if key in _RESERVED_OPTIONS or value is None:
            continue
        if isinstance(value, bool):
            flags.extend([f"--{key}", "true" if value else "false"])
        elif isinstance(value, str | int | float):
            flags.extend([f"--{key}", str(value)])
    return flags


class TypeScriptTranspiler:
    """Transpiler backed by the ``tsc`` executable.

    ``tsc`` is looked up on PATH, then in ``./node_modules/.bin``.
    """

    def __init__(self, executable: str | Path | None = None) -> None:
        self._executable = str(executable) if executable else None
        self._probed = executable is not None

    @property
    def executable(self) -> str | None:
        if not self._probed:
            self._executable = shutil.which("tsc") or shutil.which("tsc", path=str(Path.cwd() / "node_modules" / ".bin"))
            self._probed = True
        return self._executable

    def available(self) -> bool:
        return self.executable is not None

    def transpile(self, source: Path, options: Mapping[str, Any]) -> bytes:
        """Compile one file and return the emitted JavaScript.

        Args:
            source (Path): the TypeScript file
            options (Mapping[str, Any]): parsed tsconfig or compilerOptions

        Raises:
            TranspilerUnavailableError: if tsc cannot be found
            TranspileError: if tsc fails or emits nothing

        Returns:
            bytes: the JavaScript emitted for ``source``
        """
        executable = self.executable
        if executable is None:
            raise TranspilerUnavailableError

        with tempfile.TemporaryDirectory(prefix="distributor-tsc-") as out_dir:
            command = [executable, *compiler_flags(options), "--pretty", "false", "--outDir", out_dir, str(source)]
            logger.debug("Running %s", " ".join(command))
            try:
                proc = subprocess.run(command, capture_output=True, check=False)  # noqa: S603
            except OSError as e:
                raise TranspileError(path=source, message=f"cannot run tsc: {e}") from e

            emitted = [p for p in Path(out_dir).rglob(f"{source.stem}.*") if p.suffix in _EMITTED_SUFFIXES]
            if not emitted:
                output = (proc.stdout or proc.stderr).decode("utf-8", "replace").strip()
                raise TranspileError(path=source, message=f"tsc exited with {proc.returncode}: {output}")
            if proc.returncode:
                # tsc still emits on type errors
                logger.warning("tsc reported errors for %s", source)
            return emitted[0].read_bytes()
