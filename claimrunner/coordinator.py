"""Coordinator: partition the task list, spawn workers, finalize exactly once.

Workers are separate processes started from a ``spawn`` context. They get
their partition and the run configuration as process arguments and report
back over a queue. Two signals are tracked per worker, the explicit
``finished`` message and the process exit. The report is built from
whichever signal settles the last worker.
"""
from __future__ import annotations

import logging
import multiprocessing as mp
import os
import queue
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .aggregator import FinalReport, ResultAggregator, list_partials
from .collaborators import preflight
from .config import RunConfig
from .errors import ConfigurationError
from .inputs import load_proxies, load_tasks
from .models import RETRY_CODES, Partition, ProxyDescriptor, Task
from .proxy import assign_proxy
from .worker import run_worker_process

LOGGER = logging.getLogger(__name__)

DEFAULT_WORKERS = 4
TERMINATE_JOIN_TIMEOUT = 5.0


def resolve_worker_count(config: RunConfig, task_count: int, proxy_count: int) -> int:
    """Explicit override, else one worker per proxy (capped), else a small default."""
    if task_count <= 0:
        return 0
    if config.workers:
        count = config.workers
    elif proxy_count:
        count = min(proxy_count, config.worker_cap)
    else:
        count = min(DEFAULT_WORKERS, os.cpu_count() or 1)
    return max(1, min(count, task_count))


def partition_tasks(tasks: Sequence[Task], worker_count: int) -> List[List[Task]]:
    """Split into contiguous slices whose sizes differ by at most one."""
    if worker_count <= 0:
        return []
    base, extra = divmod(len(tasks), worker_count)
    slices: List[List[Task]] = []
    start = 0
    for index in range(worker_count):
        size = base + (1 if index < extra else 0)
        slices.append(list(tasks[start:start + size]))
        start += size
    return slices


def build_partitions(
    tasks: Sequence[Task],
    proxies: Sequence[ProxyDescriptor],
    config: RunConfig,
) -> List[Partition]:
    proxies = proxies if config.use_proxies else []
    worker_count = resolve_worker_count(config, len(tasks), len(proxies))
    return [
        Partition(worker_index=index, tasks=tuple(chunk), proxy=assign_proxy(index, proxies))
        for index, chunk in enumerate(partition_tasks(tasks, worker_count))
        if chunk
    ]


@dataclass
class WorkerHandle:
    index: int
    process: Any
    finished: bool = False
    finished_at: Optional[float] = None
    exited: bool = False
    stats: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class RunSummary:
    report_path: Path
    failed_path: Path
    status_counts: Dict[str, int] = field(default_factory=dict)
    missing: List[int] = field(default_factory=list)
    crashed: List[int] = field(default_factory=list)
    total_tasks: int = 0


class Coordinator:
    """Owns the worker pool for one run."""

    def __init__(
        self,
        config: RunConfig,
        *,
        log_file: Optional[Path] = None,
        start_method: str = "spawn",
        poll_interval: float = 0.2,
        started_at: Optional[datetime] = None,
    ) -> None:
        self.config = config
        self.log_file = log_file
        self.poll_interval = poll_interval
        self.started_at = started_at or datetime.now()
        self._ctx = mp.get_context(start_method)
        self._signals = None
        self._handles: Dict[int, WorkerHandle] = {}
        self._tasks: List[Task] = []
        self._finalized = False
        self._summary: Optional[RunSummary] = None

    @property
    def report_path(self) -> Path:
        return self.config.output_dir / f"report-{self.started_at.strftime('%Y%m%d-%H%M%S')}.csv"

    @property
    def failed_path(self) -> Path:
        return self.config.output_dir / "failed.txt"

    def plan(self) -> List[Partition]:
        """Load inputs and compute partitions without spawning anything."""
        self._tasks = load_tasks(self.config.tasks_file)
        proxies = load_proxies(self.config.proxies_file) if self.config.use_proxies else []
        return build_partitions(self._tasks, proxies, self.config)

    def run(self) -> RunSummary:
        """Run every partition to completion and build the final report."""
        stale = list_partials(self.config.partial_dir)
        if stale:
            raise ConfigurationError(
                f"{len(stale)} partial log(s) left in {self.config.partial_dir} by an earlier run; "
                "run 'claimrunner aggregate' or remove them first"
            )

        preflight(self.config)
        partitions = self.plan()
        LOGGER.info(
            "Loaded %d task(s), spawning %d worker(s) (sizes=%s)",
            len(self._tasks),
            len(partitions),
            [len(p.tasks) for p in partitions],
        )

        if not partitions:
            self._maybe_finalize()
        else:
            self._spawn(partitions)
            try:
                self._wait()
            finally:
                self._signals.close()
                self._signals.join_thread()

        return self._summary

    def _spawn(self, partitions: Sequence[Partition]) -> None:
        self.config.partial_dir.mkdir(parents=True, exist_ok=True)
        self._signals = self._ctx.Queue()
        for partition in partitions:
            process = self._ctx.Process(
                target=run_worker_process,
                args=(partition, self.config, self._signals, self.log_file),
                name=f"claimrunner-worker-{partition.worker_index}",
                daemon=False,
            )
            process.start()
            LOGGER.info(
                "Worker started: index=%d pid=%s tasks=%d proxy=%s",
                partition.worker_index,
                process.pid,
                len(partition.tasks),
                partition.proxy.redacted() if partition.proxy else "none",
            )
            self._handles[partition.worker_index] = WorkerHandle(partition.worker_index, process)

    def _wait(self) -> None:
        while not self._finalized:
            try:
                message = self._signals.get(timeout=self.poll_interval)
            except queue.Empty:
                message = None
            if message is not None:
                self._on_message(message)

            for handle in self._handles.values():
                if not handle.exited and handle.process.exitcode is not None:
                    self._on_exit(handle)
            self._enforce_exit_grace()

    def _drain(self) -> None:
        while True:
            try:
                message = self._signals.get_nowait()
            except queue.Empty:
                return
            self._on_message(message, finalize=False)

    def _on_message(self, message: Any, *, finalize: bool = True) -> None:
        if not isinstance(message, dict):
            LOGGER.warning("Ignoring non-dict worker message: %r", message)
            return
        handle = self._handles.get(message.get("worker_index"))
        if handle is None:
            LOGGER.warning("Ignoring message from unknown worker: %r", message)
            return

        event = message.get("event")
        if event == "finished":
            handle.finished = True
            handle.finished_at = time.monotonic()
            handle.stats = message.get("stats")
            LOGGER.info("Worker %d finished: %s", handle.index, handle.stats)
        elif event == "failed":
            handle.error = message.get("error")
            LOGGER.error("Worker %d reported failure: %s", handle.index, handle.error)
        else:
            LOGGER.warning("Unknown event from worker %d: %r", handle.index, event)
        if finalize:
            self._maybe_finalize()

    def _on_exit(self, handle: WorkerHandle) -> None:
        handle.process.join()
        handle.exited = True
        # A message queued right before exit may still be in the pipe
        self._drain()
        if handle.process.exitcode != 0:
            LOGGER.warning("Worker %d exited with code %s", handle.index, handle.process.exitcode)
        else:
            LOGGER.debug("Worker %d exited", handle.index)
        self._maybe_finalize()

    def _enforce_exit_grace(self) -> None:
        now = time.monotonic()
        for handle in self._handles.values():
            if handle.exited or not handle.finished or handle.finished_at is None:
                continue
            if now - handle.finished_at < self.config.exit_grace_seconds:
                continue
            if handle.process.is_alive():
                LOGGER.warning(
                    "Worker %d signalled completion but did not exit within %.1fs, terminating",
                    handle.index,
                    self.config.exit_grace_seconds,
                )
                handle.process.terminate()
                handle.process.join(TERMINATE_JOIN_TIMEOUT)
            self._on_exit(handle)

    def _maybe_finalize(self) -> None:
        if self._finalized:
            return
        if not all(handle.exited for handle in self._handles.values()):
            return
        self._finalized = True
        self._summary = self._finalize()

    def _finalize(self) -> RunSummary:
        crashed = sorted(h.index for h in self._handles.values() if not h.finished)
        for index in crashed:
            LOGGER.warning("Worker %d exited without a completion signal", index)

        report = ResultAggregator(self.config.partial_dir, self.report_path).run()
        missing = self._missing_tasks(report)
        if missing:
            LOGGER.warning("%d task(s) have no result record: %s", len(missing), missing)
        self._write_failed(report, missing)

        summary = RunSummary(
            report_path=self.report_path,
            failed_path=self.failed_path,
            status_counts=report.status_counts(),
            missing=missing,
            crashed=crashed,
            total_tasks=len(self._tasks),
        )
        LOGGER.info("All workers done: %s", summary.status_counts)
        return summary

    def _missing_tasks(self, report: FinalReport) -> List[int]:
        seen = {row.task_index for row in report.rows}
        return [task.index for task in self._tasks if task.index not in seen]

    def _write_failed(self, report: FinalReport, missing: Sequence[int]) -> None:
        """Write secrets worth retrying, in input order, as a reusable task list."""
        retry = set(missing)
        retry.update(row.task_index for row in report.rows if row.status in RETRY_CODES)
        by_index = {task.index: task for task in self._tasks}

        self.failed_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.failed_path, "w", encoding="utf-8") as f:
            for index in sorted(retry):
                task = by_index.get(index)
                if task is not None:
                    f.write(task.secret.get_secret_value() + "\n")
        LOGGER.info("Wrote %d task(s) to retry into %s", len(retry), self.failed_path)
