import threading
from pathlib import Path

import pytest

from distributor.job_queue import JobQueue
from distributor.watch import SourceWatcher, WatchEvent, diff_snapshots, make_change_handler, snapshot


@pytest.mark.unit
def test_diff_snapshots_reports_add_change_remove() -> None:
    before = {"a.js": (1, 10), "b.js": (1, 10), "c.js": (1, 10)}
    after = {"a.js": (1, 10), "b.js": (2, 11), "d.js": (1, 1)}

    assert diff_snapshots(before, after) == [
        (WatchEvent.CHANGE, "b.js"),
        (WatchEvent.REMOVE, "c.js"),
        (WatchEvent.ADD, "d.js"),
    ]


@pytest.mark.unit
def test_snapshot_skips_ignored_files(tmp_path: Path) -> None:
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "a.js").write_text("a", encoding="utf-8")
    (tmp_path / "dist.js").write_text("out", encoding="utf-8")

    snap = snapshot(tmp_path, lambda p: p.name == "dist.js")

    assert list(snap) == ["lib/a.js"]
    assert snap["lib/a.js"][1] == 1


@pytest.mark.unit
def test_poll_once_calls_handler_with_events(tmp_path: Path) -> None:
    received: list[list] = []
    watcher = SourceWatcher(tmp_path, received.append)
    watcher.snapshot()

    (tmp_path / "new.js").write_text("x", encoding="utf-8")
    events = watcher.poll_once()

    assert events == [(WatchEvent.ADD, "new.js")]
    assert received == [events]
    assert watcher.poll_once() == []
    assert len(received) == 1


@pytest.mark.unit
def test_watcher_thread_detects_changes(tmp_path: Path) -> None:
    seen = threading.Event()
    watcher = SourceWatcher(tmp_path, lambda events: seen.set(), interval=0.01).start()
    try:
        (tmp_path / "a.js").write_text("a", encoding="utf-8")
        assert seen.wait(5)
    finally:
        watcher.stop(5)


@pytest.mark.unit
def test_change_handler_enqueues_one_job_per_event() -> None:
    jobs = JobQueue()
    handler = make_change_handler(jobs, lambda: None)

    handler([(WatchEvent.CHANGE, "a.js"), (WatchEvent.ADD, "b.js"), (WatchEvent.REMOVE, "c.js")])

    assert jobs.size == 3
    jobs.shutdown()


@pytest.mark.unit
def test_watch_backlog_is_not_coalesced() -> None:
    release = threading.Event()
    started = threading.Event()
    runs: list[str] = []

    def bundle_job() -> None:
        if not started.is_set():
            started.set()
            release.wait(5)
        runs.append("run")

    with JobQueue() as jobs:
        jobs.run_on_new_job()
        jobs.reset_on_done()
        handler = make_change_handler(jobs, bundle_job)
        jobs.enqueue(bundle_job)
        assert started.wait(5)

        handler([(WatchEvent.CHANGE, "a.js")])
        handler([(WatchEvent.CHANGE, "a.js")])
        handler([(WatchEvent.ADD, "b.js")])
        assert jobs.size == 4

        release.set()
        assert jobs.join(5)

    assert runs == ["run"] * 4
    assert jobs.size == 0
