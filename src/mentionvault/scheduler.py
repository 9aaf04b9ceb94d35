from __future__ import annotations

import logging
import threading
from typing import Callable

from .utils import log_event

Task = Callable[[], object]


class Scheduler:
    """Background timers that are cancelled together on shutdown.

    Each scheduled task runs on its own daemon thread and waits on a shared
    stop event, so ``shutdown`` interrupts pending delays immediately. A task
    that raises is logged and, for repeating tasks, tried again next tick.
    """

    def __init__(self, name: str = "mentionvault.scheduler") -> None:
        self._name = name
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger(name)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def schedule_once(self, delay_seconds: float, task: Task) -> threading.Thread:
        def _runner() -> None:
            if self._stop.wait(max(delay_seconds, 0)):
                return
            self._run_task(task)

        return self._start(_runner, "once")

    def schedule_repeating(
        self,
        interval_seconds: float,
        task: Task,
        initial_delay_seconds: float | None = None,
    ) -> threading.Thread:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        first_delay = interval_seconds if initial_delay_seconds is None else initial_delay_seconds

        def _runner() -> None:
            delay = first_delay
            while not self._stop.wait(max(delay, 0)):
                self._run_task(task)
                delay = interval_seconds

        return self._start(_runner, "repeating")

    def shutdown(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        with self._lock:
            threads = list(self._threads)
            self._threads.clear()
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join(timeout)
        log_event(self.logger, logging.INFO, "scheduler_stopped", tasks=len(threads))

    def _start(self, target: Callable[[], None], kind: str) -> threading.Thread:
        if self._stop.is_set():
            raise RuntimeError("scheduler is shut down")
        thread = threading.Thread(target=target, name=f"{self._name}.{kind}", daemon=True)
        with self._lock:
            self._threads.append(thread)
        thread.start()
        return thread

    def _run_task(self, task: Task) -> None:
        try:
            task()
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "scheduler_task_failed", error=str(exc))
