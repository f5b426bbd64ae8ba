"""Polling watcher that turns source tree changes into bundling jobs."""

from __future__ import annotations

import os
import threading
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from distributor.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from distributor.job_queue import JobQueue

    Snapshot = dict[str, tuple[int, int]]
    ChangeEvent = tuple["WatchEvent", str]
    ChangeHandler = Callable[[list[ChangeEvent]], None]


class WatchEvent(StrEnum):
    """Kind of change observed between two snapshots."""

    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"

    @property
    def past_tense(self) -> str:
        return {"add": "added", "change": "changed", "remove": "removed"}[self.value]


def _never_ignored(path: Path) -> bool:  # noqa: ARG001
    return False


def snapshot(root: Path, is_ignored: Callable[[Path], bool] = _never_ignored) -> Snapshot:
    """Record ``(mtime_ns, size)`` for every regular file under ``root``.

    Symbolic links are skipped and unreadable entries are left out.

    Args:
        root (Path): directory to scan
        is_ignored (Callable[[Path], bool]): files to leave out of the snapshot

    Returns:
        Snapshot: stat signature keyed by POSIX path relative to ``root``
    """
    snap: Snapshot = {}
    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            with os.scandir(directory) as it:
                dirents = list(it)
        except OSError:
            continue
        for dirent in dirents:
            try:
                if dirent.is_symlink():
                    continue
                if dirent.is_dir(follow_symlinks=False):
                    pending.append(Path(dirent.path))
                    continue
                path = Path(dirent.path)
                if not dirent.is_file(follow_symlinks=False) or is_ignored(path):
                    continue
                st = dirent.stat(follow_symlinks=False)
            except OSError:
                continue
            snap[path.relative_to(root).as_posix()] = (st.st_mtime_ns, st.st_size)
    return snap


def diff_snapshots(before: Snapshot, after: Snapshot) -> list[ChangeEvent]:
    """List the changes between two snapshots, sorted by name.

    Args:
        before (Snapshot): previous state
        after (Snapshot): current state

    Returns:
        list[ChangeEvent]: ``(event, relative name)`` pairs
    """
    events: list[ChangeEvent] = []
    for name in sorted(before.keys() | after.keys()):
        if name not in before:
            events.append((WatchEvent.ADD, name))
        elif name not in after:
            events.append((WatchEvent.REMOVE, name))
        elif before[name] != after[name]:
            events.append((WatchEvent.CHANGE, name))
    return events


class SourceWatcher:
    """Poll a directory tree and report changes to a handler.

    ``start`` runs the polling loop on a daemon thread; ``poll_once`` does a
    single comparison and can be driven directly.
    """

    def __init__(
        self,
        root: Path,
        on_change: ChangeHandler,
        *,
        interval: float = 0.5,
        is_ignored: Callable[[Path], bool] = _never_ignored,
    ) -> None:
        self.root = root
        self.on_change = on_change
        self.interval = interval
        self.is_ignored = is_ignored
        self._last: Snapshot = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def snapshot(self) -> Snapshot:
        """Take and remember the current state of the tree."""
        self._last = snapshot(self.root, self.is_ignored)
        return self._last

    def poll_once(self) -> list[ChangeEvent]:
        """Compare the tree with the last snapshot and report any change."""
        previous = self._last
        events = diff_snapshots(previous, self.snapshot())
        if events:
            self.on_change(events)
        return events

    def start(self) -> SourceWatcher:
        """Snapshot the tree and start polling in the background."""
        self.snapshot()
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="distributor-watch", daemon=True)
        self._thread.start()
        logger.info("Watching %s for changes", self.root)
        return self

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.poll_once()
            except Exception:
                logger.exception("Watch poll failed")


def make_change_handler(jobs: JobQueue, job: Callable[..., object]) -> ChangeHandler:
    """Build a handler that logs each event and enqueues one job for it.

    Args:
        jobs (JobQueue): queue receiving the jobs
        job (Callable[..., object]): the bundling callable

    Returns:
        ChangeHandler: callable suitable for SourceWatcher
    """

    def handle(events: list[ChangeEvent]) -> None:
        for event, name in events:
            logger.info("Source file %s %s", name, event.past_tense)
            jobs.enqueue(job)

    return handle
