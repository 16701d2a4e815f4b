from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class RecurringTask:
    name: str
    interval_seconds: float
    fn: Callable[[], Any]
    run_at_start: bool = False


class TaskQueue:
    """Single worker thread draining queued tasks in order.

    A task already waiting or running is not queued a second time, so a slow
    job never piles up behind itself.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: "queue.Queue[RecurringTask]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._pending: set[str] = set()
        self._thread: threading.Thread | None = None
        self._running = False
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._worker, name="task-queue", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            self._running = False
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout=timeout)

    def submit(self, task: RecurringTask) -> bool:
        with self._lock:
            if task.name in self._pending:
                return False
            try:
                self._queue.put_nowait(task)
            except queue.Full:
                self.dropped += 1
                print(f"task_dropped name={task.name} reason=queue_full")
                return False
            self._pending.add(task.name)
            return True

    def join(self) -> None:
        self._queue.join()

    def run_pending(self) -> int:
        """Drain the queue on the calling thread; used by one-shot runs."""
        n = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return n
            self._run(task)
            n += 1

    def _worker(self) -> None:
        while self._running:
            try:
                task = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._run(task)

    def _run(self, task: RecurringTask) -> None:
        try:
            task.fn()
            self.processed += 1
        except Exception as e:
            self.failed += 1
            print(f"task_error name={task.name} err={e}")
        finally:
            with self._lock:
                self._pending.discard(task.name)
            self._queue.task_done()


class Scheduler:
    """Timers that enqueue recurring tasks; the TaskQueue worker runs them."""

    def __init__(self, tasks: list[RecurringTask] | None = None, task_queue: TaskQueue | None = None):
        self.tasks: dict[str, RecurringTask] = {}
        self.queue = task_queue or TaskQueue()
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._running = False
        for t in tasks or []:
            self.add(t)

    def add(self, task: RecurringTask) -> None:
        if task.interval_seconds <= 0:
            raise ValueError(f"interval_must_be_positive:{task.name}")
        self.tasks[task.name] = task

    def start(self) -> None:
        with self._lock:
            self._running = True
        self.queue.start()
        for task in self.tasks.values():
            if task.run_at_start:
                self.queue.submit(task)
            self._arm(task)
        print(f"scheduler_started tasks={','.join(sorted(self.tasks))}")

    def stop(self) -> None:
        with self._lock:
            self._running = False
            timers = list(self._timers.values())
            self._timers.clear()
        for t in timers:
            t.cancel()
        self.queue.stop()
        print(f"scheduler_stopped processed={self.queue.processed} failed={self.queue.failed} dropped={self.queue.dropped}")

    def trigger(self, name: str) -> bool:
        task = self.tasks.get(name)
        if task is None:
            raise KeyError(name)
        return self.queue.submit(task)

    def _arm(self, task: RecurringTask) -> None:
        with self._lock:
            if not self._running:
                return
            timer = threading.Timer(task.interval_seconds, self._fire, args=(task,))
            timer.daemon = True
            self._timers[task.name] = timer
            timer.start()

    def _fire(self, task: RecurringTask) -> None:
        self.queue.submit(task)
        self._arm(task)
