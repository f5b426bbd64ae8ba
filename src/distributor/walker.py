"""Ordered traversal of a source tree.

The walker lists one directory at a time, drops symbolic links and entries
matching the exclusion patterns, orders what is left and splices each
subdirectory's own entries in right after the directory itself.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from distributor.config import Entry
from distributor.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    ErrorHandler = Callable[[OSError], None]


def relpath(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` with POSIX separators.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path, or the original path as a string if it is not under root.
    """
    try:
        return str(path.relative_to(root)).replace("\\", "/")
    except ValueError:
        return str(path)


def normalize_patterns(patterns: Sequence[str]) -> list[str]:
    """Strip whitespace from patterns and drop the empty ones.

    Args:
        patterns (Sequence[str]): the raw patterns

    Returns:
        list[str]: the normalized patterns
    """
    out: list[str] = []
    for p in patterns:
        p2 = (p or "").strip()
        if p2:
            out.append(p2)
    return out


def compile_patterns(patterns: Sequence[str]) -> list[re.Pattern[str]]:
    """Compile exclusion patterns once for the whole traversal.

    Args:
        patterns (Sequence[str]): regular expressions tested against entry names

    Returns:
        list[re.Pattern[str]]: compiled patterns, in the given order
    """
    return [re.compile(p) for p in normalize_patterns(patterns)]


def matches_any(name: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    """Check if an entry name matches any compiled pattern.

    Args:
        name (str): the entry name to check
        patterns (Sequence[re.Pattern[str]]): the compiled patterns

    Returns:
        bool: True on the first pattern found anywhere in ``name``
    """
    return any(p.search(name) for p in patterns)


def order_entries(entries: Sequence[Entry], order: Sequence[str]) -> list[Entry]:
    """Stable-sort entries by the last index of their name in ``order``.

    Names missing from ``order`` rank -1 and keep their relative order ahead
    of every named entry.

    Args:
        entries (Sequence[Entry]): entries of one directory level
        order (Sequence[str]): preferred names, later names sort later

    Returns:
        list[Entry]: the ordered entries
    """
    if not order:
        return list(entries)
    last_index = {name: i for i, name in enumerate(order)}
    return sorted(entries, key=lambda e: last_index.get(e.name, -1))


def _log_error(error: OSError) -> None:
    logger.warning("Cannot read %s: %s", error.filename, error.strerror or error)


def list_entries(
    directory: Path,
    *,
    order: Sequence[str] = (),
    patterns: Sequence[re.Pattern[str]] = (),
    on_error: ErrorHandler = _log_error,
) -> list[Entry]:
    """List and order one directory level.

    Symbolic links are skipped entirely. Names are sorted before ordering so
    the listing does not depend on the platform.

    Args:
        directory (Path): directory to list
        order (Sequence[str]): preferred entry order
        patterns (Sequence[re.Pattern[str]]): exclusion patterns
        on_error (ErrorHandler): called with the OSError when listing fails

    Returns:
        list[Entry]: the kept entries of ``directory``; empty when it cannot be read
    """
    entries: list[Entry] = []
    try:
        with os.scandir(directory) as it:
            dirents = sorted(it, key=lambda d: d.name)
    except OSError as e:
        on_error(e)
        return entries

    for dirent in dirents:
        try:
            if dirent.is_symlink():
                continue
            is_dir = dirent.is_dir(follow_symlinks=False)
            is_file = dirent.is_file(follow_symlinks=False)
        except OSError as e:
            on_error(e)
            continue
        if patterns and matches_any(dirent.name, patterns):
            continue
        entries.append(Entry(name=dirent.name, path=directory, is_directory=is_dir, is_file=is_file))
    return order_entries(entries, order)


def walk(
    root: Path,
    *,
    order: Sequence[str] = (),
    patterns: Sequence[str] = (),
    on_error: ErrorHandler = _log_error,
) -> Iterator[Entry]:
    """Yield the entries under ``root`` in bundling order.

    Every directory is yielded followed by its own ordered entries. The
    traversal keeps an explicit stack of directory iterators, so depth is not
    bounded by the interpreter's recursion limit. The iterator is single use:
    start a new walk for each bundling run.

    Args:
        root (Path): source directory
        order (Sequence[str]): preferred entry order, applied at every level
        patterns (Sequence[str]): regular expressions; matching names are skipped
        on_error (ErrorHandler): receives directory read errors, siblings continue

    Yields:
        Entry: files and directories, depth first
    """
    compiled = compile_patterns(patterns)
    stack: list[Iterator[Entry]] = [iter(list_entries(root, order=order, patterns=compiled, on_error=on_error))]
    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            stack.pop()
            continue
        yield entry
        if entry.is_directory:
            children = list_entries(entry.full_path, order=order, patterns=compiled, on_error=on_error)
            stack.append(iter(children))
