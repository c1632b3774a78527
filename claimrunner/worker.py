"""Worker that drains one partition through the task pipeline."""
from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .collaborators import Collaborators, build_collaborators
from .config import RunConfig
from .logging_utils import setup_logging
from .models import Partition, ResultCode, TaskResult
from .pipeline import TaskPipeline
from .sink import ResultSink, partial_path

LOGGER = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    """Per-worker counters reported with the completion signal."""

    worker_index: int
    processed: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)

    def record(self, status: ResultCode) -> None:
        self.processed += 1
        self.by_status[status.value] = self.by_status.get(status.value, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_index": self.worker_index,
            "processed": self.processed,
            "by_status": dict(self.by_status),
        }


class WorkerRunner:
    """Runs the tasks of one partition, serially or in fixed-size batches."""

    def __init__(
        self,
        partition: Partition,
        config: RunConfig,
        collaborators: Collaborators,
        *,
        sink: Optional[ResultSink] = None,
    ) -> None:
        """Initialize worker.

        Parameters
        ----------
        partition : Partition
            Tasks and proxy owned by this worker
        config : RunConfig
            Run configuration (concurrency width, delays, retry limits)
        collaborators : Collaborators
            Signer, CAPTCHA solver and API client bound to this worker's proxy
        sink : ResultSink, optional
            Partial log writer (defaults to ``partial/worker-<i>.jsonl``)
        """
        self.partition = partition
        self.config = config
        self.collaborators = collaborators
        self.sink = sink or ResultSink(partial_path(config.partial_dir, partition.worker_index))
        self.pipeline = TaskPipeline(
            collaborators,
            config,
            self.sink,
            worker_index=partition.worker_index,
        )
        self.stats = WorkerStats(worker_index=partition.worker_index)

    async def run(self) -> WorkerStats:
        """Process every task of the partition, then flush the sink."""
        LOGGER.info(
            "Starting worker %d (tasks=%d, concurrency=%d, proxy=%s)",
            self.partition.worker_index,
            len(self.partition.tasks),
            self.config.concurrency,
            self.partition.proxy.redacted() if self.partition.proxy else "none",
        )
        try:
            if self.config.concurrency == 1:
                await self._run_serial()
            else:
                await self._run_batches()
        finally:
            self.sink.close()
            await self.collaborators.api.aclose()

        self._log_stats()
        return self.stats

    async def _run_serial(self) -> None:
        for position, task in enumerate(self.partition.tasks):
            if position:
                await asyncio.sleep(self.config.task_delay)
            result = await self.pipeline.process(task)
            self.stats.record(result.status)

    async def _run_batches(self) -> None:
        tasks = self.partition.tasks
        total = len(tasks)
        width = self.config.concurrency

        for batch_start in range(0, total, width):
            batch = tasks[batch_start:batch_start + width]
            LOGGER.info(
                "Processing batch %d: tasks %d-%d of %d",
                batch_start // width + 1,
                batch_start + 1,
                batch_start + len(batch),
                total,
            )
            results = await asyncio.gather(
                *(self.pipeline.process(task) for task in batch),
                return_exceptions=True,
            )
            for task, result in zip(batch, results):
                if isinstance(result, TaskResult):
                    self.stats.record(result.status)
                else:
                    LOGGER.error("Task %s escaped the pipeline: %r", task.label, result)
                    self.stats.record(ResultCode.ERROR)

            if batch_start + width < total:
                await asyncio.sleep(self.config.batch_delay)

    def _log_stats(self) -> None:
        LOGGER.info(
            "Worker %d done: processed=%d, written=%d, dropped=%d, statuses=%s",
            self.partition.worker_index,
            self.stats.processed,
            self.sink.written,
            self.sink.dropped,
            self.stats.by_status,
        )


def run_worker_process(
    partition: Partition,
    config: RunConfig,
    signals: Any,
    log_file: Optional[Path] = None,
) -> None:
    """Process entry point: run the partition, then send the completion signal.

    ``signals`` is the coordinator's message queue. A ``finished`` message is
    sent after the sink is flushed; a fatal error sends ``failed`` and exits
    non-zero.
    """
    setup_logging(config.python_log_level, log_file, worker_index=partition.worker_index)
    try:
        collaborators = build_collaborators(config, partition.proxy)
        stats = asyncio.run(WorkerRunner(partition, config, collaborators).run())
    except Exception as exc:
        LOGGER.critical("Worker %d crashed: %s", partition.worker_index, exc, exc_info=True)
        signals.put({"event": "failed", "worker_index": partition.worker_index, "error": str(exc)})
        sys.exit(1)

    signals.put({"event": "finished", "worker_index": partition.worker_index, "stats": stats.to_dict()})
