"""Per-run log file with worker and task tags.

Every process (coordinator and workers) appends to the same timestamped run
log. The worker index and the current task label are kept in context
variables, so pipelines interleaved inside one worker's event loop are still
tagged with their own task.
"""
from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(worker)s] [%(task)s] %(name)s: %(message)s"

_worker_tag: ContextVar[str] = ContextVar("worker_tag", default="main")
_task_tag: ContextVar[str] = ContextVar("task_tag", default="-")


class ContextTagFilter(logging.Filter):
    """Inject ``worker`` and ``task`` attributes into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.worker = _worker_tag.get()
        record.task = _task_tag.get()
        return True


def set_worker_tag(worker_index: Optional[int]) -> None:
    _worker_tag.set("main" if worker_index is None else f"w{worker_index}")


@contextmanager
def task_context(label: str) -> Iterator[None]:
    """Tag log records emitted inside the block with a task label."""
    token = _task_tag.set(label)
    try:
        yield
    finally:
        _task_tag.reset(token)


def run_log_path(output_dir: Path, started_at: Optional[datetime] = None) -> Path:
    stamp = (started_at or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return Path(output_dir) / f"run-{stamp}.log"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    worker_index: Optional[int] = None,
) -> None:
    """Configure the root logger for this process.

    Parameters
    ----------
    level : int
        Root log level
    log_file : Path, optional
        Run log to append to (shared across processes)
    worker_index : int, optional
        Worker tag for records from this process, ``None`` for the coordinator
    """
    set_worker_tag(worker_index)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    tag_filter = ContextTagFilter()

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    stream.addFilter(tag_filter)
    root.addHandler(stream)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(tag_filter)
        root.addHandler(file_handler)

    # Quiet chatty client libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
