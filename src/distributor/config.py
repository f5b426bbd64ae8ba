from __future__ import annotations

from enum import StrEnum, auto
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    SourceProcessorFn = Callable[..., Iterator[bytes]]


class FileKind(StrEnum):
    """Categorization of source files for the bundling pipeline.

    Scripts are piped through verbatim, TypeScript goes through the
    transpiler first, everything else is left out of the bundle.
    """

    SCRIPT = auto()
    TYPESCRIPT = auto()
    OTHER = auto()


class ModuleType(StrEnum):
    """Module shell written around the concatenated body."""

    NONE = "none"
    WEB = "web"
    AMD = "AMD"
    COMMONJS = "CommonJS"
    UMD = "UMD"


EXT2KIND: dict[str, FileKind] = {
    ".cjs": FileKind.SCRIPT,
    ".cts": FileKind.TYPESCRIPT,
    ".js": FileKind.SCRIPT,
    ".mjs": FileKind.SCRIPT,
    ".mts": FileKind.TYPESCRIPT,
    ".ts": FileKind.TYPESCRIPT,
    ".tsx": FileKind.TYPESCRIPT,
}

# directories never searched when looking for config files
DEFAULT_EXCLUDES = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".idea",
    ".vscode",
    "node_modules",
}

CONFIG_FILE_PATTERN = r"^\.*distrc\.*js\w*$"
TS_CONFIG_PATTERN = r"^tsconfig\.json$"

ENV_PREFIX = "DISTRIBUTOR_"

MAX_RETRY = 3
CHUNK_SIZE = 64 * 1024

FULL_IMPORT = "full"

SOURCE_PROCESSOR: dict[FileKind, Callable[..., Iterator[bytes]]] = {}


def guess_file_kind(path: Path) -> FileKind:
    """Classify a file by its extension.

    Args:
        path (Path): The file path to classify.

    Returns:
        FileKind: The kind of source, or FileKind.OTHER if unknown.
    """
    return EXT2KIND.get(path.suffix.lower(), FileKind.OTHER)


class Entry(BaseModel):
    """One directory entry produced by the path walker.

    Attributes:
        name: Entry name (last path component).
        path: Parent directory of the entry.
        is_directory: Whether the entry is a directory.
        is_file: Whether the entry is a regular file.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(..., description="Entry name")
    path: Path = Field(..., description="Parent directory")
    is_directory: bool = Field(default=False, description="Entry is a directory")
    is_file: bool = Field(default=False, description="Entry is a regular file")

    @computed_field
    @property
    def full_path(self) -> Path:
        """Path of the entry itself."""
        return self.path / self.name

    @computed_field
    @property
    def kind(self) -> FileKind:
        """Source kind based on the entry extension."""
        return guess_file_kind(Path(self.name))


def register_source_processor(
    key: FileKind | list[FileKind],
) -> Callable[[SourceProcessorFn], SourceProcessorFn]:
    """Decorator to register the function that yields the bytes of a source kind.

    The concatenation engine looks processors up by FileKind; kinds without a
    processor do not contribute to the bundle.

    Args:
        key (FileKind | list[FileKind]): The kind(s) the decorated function handles.

    Returns:
        Callable[[SourceProcessorFn], SourceProcessorFn]: A decorator that registers the given
        function in the SOURCE_PROCESSOR mapping and returns it wrapped.
    """

    def decorator(func: SourceProcessorFn) -> SourceProcessorFn:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
            return func(*args, **kwargs)

        if isinstance(key, list):
            for k in key:
                SOURCE_PROCESSOR[k] = wrapper
        else:
            SOURCE_PROCESSOR[key] = wrapper
        return wrapper

    return decorator
