"""Sequential job queue with at most one running job.

Jobs run one after another on a single worker thread. The queue emits
``added`` when a job is enqueued, ``finished`` when a job settles (completed or
failed) and ``done`` when a settled job leaves the queue empty.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

from distributor.exceptions import JobStateError
from distributor.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    Listener = Callable[["JobQueue", "Job | None"], Any]


class QueueEvent(StrEnum):
    """Events emitted by a JobQueue."""

    ADDED = auto()
    FINISHED = auto()
    DONE = auto()


class JobState(StrEnum):
    """Lifecycle of a Job."""

    QUEUED = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()


def push_if_new(items: list[Any], item: Any) -> bool:  # noqa: ANN401
    """Append ``item`` unless it is already in ``items``.

    Returns:
        bool: True if the item was appended
    """
    if item in items:
        return False
    items.append(item)
    return True


class Job:
    """A unit of work owned by a JobQueue.

    Attributes:
        control: the queue the job belongs to
        callback: the callable run by the job
        state: where the job is in its lifecycle
        result: the callback return value, once completed
    """

    def __init__(self, control: JobQueue | None, callback: Callable[..., Any]) -> None:
        self.control = control
        self.callback = callback
        self.state = JobState.QUEUED
        self.result: Any = None
        self._error: BaseException | None = None

    def __repr__(self) -> str:
        name = getattr(self.callback, "__name__", type(self.callback).__name__)
        return f"Job({name}, state={self.state.value})"

    @property
    def error(self) -> BaseException | None:
        """Exception the job failed with, if any."""
        return self._error

    @error.setter
    def error(self, value: BaseException | None) -> None:
        if isinstance(value, BaseException):
            self._error = value

    @property
    def running(self) -> bool:
        return self.state is JobState.RUNNING

    def run(self, *args: Any) -> Any:  # noqa: ANN401
        """Run the callback once.

        Raises:
            JobStateError: if the job already ran or is running
            BaseException: whatever the callback raises, after recording it on the job

        Returns:
            Any: the callback return value
        """
        if self.state is not JobState.QUEUED:
            raise JobStateError(message=f"{self!r} cannot run again")
        self.state = JobState.RUNNING
        try:
            self.result = self.callback(*args)
        except BaseException as e:
            self.error = e
            self.state = JobState.FAILED
            raise
        self.state = JobState.COMPLETED
        return self.result


class JobQueue:
    """FIFO of jobs executed strictly one at a time.

    ``run`` starts the queue and keeps it going after every settled job.
    ``run_on_new_job`` makes any enqueue start the queue as well, which is how
    watch mode feeds it. Listeners receive ``(queue, job)`` and are called on
    the thread that emits the event.
    """

    def __init__(self) -> None:
        self.queue: list[Job] = []
        self.complete_jobs: list[Job] = []
        self.failed_jobs: list[Job] = []
        self.events: dict[QueueEvent, list[Listener]] = {event: [] for event in QueueEvent}

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="distributor-job")
        self._active: Job | None = None
        self._settling = 0
        self._run_args: tuple[Any, ...] = ()
        self._new_job_args: tuple[Any, ...] = ()

    def __enter__(self) -> JobQueue:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    # accessors

    @property
    def complete(self) -> int:
        return len(self.complete_jobs)

    @property
    def failed(self) -> int:
        return len(self.failed_jobs)

    @property
    def processed(self) -> int:
        return self.complete + self.failed

    @property
    def size(self) -> int:
        return len(self.queue)

    @property
    def empty(self) -> bool:
        return not self.queue

    @property
    def percentage(self) -> float:
        """Share of processed jobs among processed and queued ones, rounded to 2 places."""
        with self._lock:
            processed, size = self.processed, self.size
        total = processed + size
        if not total:
            return 0
        return round(processed / total, 2)

    @property
    def processing(self) -> bool:
        return self._active is not None

    @property
    def running_job(self) -> Job | None:
        return self._active

    def get_jobs(self) -> list[Job]:
        """Copy of the jobs still in the queue, running one included."""
        with self._lock:
            return list(self.queue)

    # events

    def on(self, event: QueueEvent | str, listener: Listener) -> JobQueue:
        """Register a listener; registering the same listener twice is a no-op."""
        with self._lock:
            push_if_new(self.events[QueueEvent(event)], listener)
        return self

    def off(self, event: QueueEvent | str, listener: Listener) -> JobQueue:
        with self._lock:
            listeners = self.events[QueueEvent(event)]
            if listener in listeners:
                listeners.remove(listener)
        return self

    def emit(self, event: QueueEvent | str, job: Job | None = None) -> JobQueue:
        """Call every listener of ``event`` in registration order.

        A listener that raises is logged and does not stop the others.
        """
        with self._lock:
            listeners = list(self.events[QueueEvent(event)])
        for listener in listeners:
            try:
                listener(self, job)
            except Exception:
                logger.exception("Listener %r for %s event failed", listener, event)
        return self

    def on_done(self, callback: Listener) -> JobQueue:
        return self.on(QueueEvent.DONE, callback)

    def on_finished(self, callback: Listener) -> JobQueue:
        return self.on(QueueEvent.FINISHED, callback)

    def on_new_job(self, callback: Listener) -> JobQueue:
        return self.on(QueueEvent.ADDED, callback)

    # queue operations

    def enqueue(self, *callbacks: Callable[..., Any]) -> JobQueue:
        """Wrap each callable in a Job, append it and emit ``added`` for it."""
        for callback in callbacks:
            job = Job(self, callback)
            with self._lock:
                self.queue.append(job)
            self.emit(QueueEvent.ADDED, job)
        return self

    def dequeue(self) -> JobQueue:
        """Drop the head of the queue, unless it is the running job."""
        with self._lock:
            if self.queue and self.queue[0] is not self._active:
                self.queue.pop(0)
        return self

    def next_job(self, *args: Any) -> JobQueue:
        """Start the head job on the worker thread when nothing is running.

        Args:
            *args: passed to the job callback
        """
        with self._lock:
            if not self.queue or self._active is not None:
                return self
            job = self._active = self.queue[0]
            try:
                self._executor.submit(self._execute, job, args)
            except RuntimeError as e:
                # the worker was shut down
                self._active = None
                logger.warning("Cannot start %r: %s", job, e)
        return self

    def run(self, *args: Any) -> JobQueue:
        """Start the queue and keep starting the next job after each one settles."""
        with self._lock:
            self._run_args = args
        self.on_finished(self._chain)
        return self.next_job(*args)

    def run_on_new_job(self, *args: Any) -> JobQueue:
        """Run the queue whenever a job is added."""
        with self._lock:
            self._new_job_args = args
        return self.on_new_job(self._run_on_added)

    def reset_on_done(self) -> JobQueue:
        """Clear the completed and failed lists every time the queue drains."""
        return self.on_done(self._reset)

    def join(self, timeout: float | None = None) -> bool:
        """Block until no job is queued, running or settling.

        Args:
            timeout (float | None): maximum wait in seconds, None to wait forever

        Returns:
            bool: True when the queue went idle, False on timeout
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: self._active is None and not self.queue and not self._settling,
                timeout=timeout,
            )

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the worker thread; queued jobs that never started are left as is."""
        self._executor.shutdown(wait=wait)

    # internals

    def _chain(self, queue: JobQueue, job: Job | None) -> None:  # noqa: ARG002
        self.next_job(*self._run_args)

    def _run_on_added(self, queue: JobQueue, job: Job | None) -> None:  # noqa: ARG002
        self.run(*self._new_job_args)

    def _reset(self, queue: JobQueue, job: Job | None) -> None:  # noqa: ARG002
        with self._lock:
            self.complete_jobs.clear()
            self.failed_jobs.clear()

    def _execute(self, job: Job, args: tuple[Any, ...]) -> None:
        try:
            job.run(*args)
        except BaseException as e:
            logger.error("Job %r failed: %s", job, e)

        with self._lock:
            push_if_new(self.failed_jobs if job.state is JobState.FAILED else self.complete_jobs, job)
            self.queue = [queued for queued in self.queue if queued is not job]
            self._active = None
            self._settling += 1
        try:
            self.emit(QueueEvent.FINISHED, job)
            if self.empty:
                self.emit(QueueEvent.DONE, job)
        finally:
            with self._idle:
                self._settling -= 1
                self._idle.notify_all()
