"""Append-only partial result log, one JSON record per line."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Optional

import orjson
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .models import TaskResult

LOGGER = logging.getLogger(__name__)

WRITE_ATTEMPTS = 3
WRITE_BACKOFF = 0.05


def partial_path(partial_dir: Path, worker_index: int) -> Path:
    return Path(partial_dir) / f"worker-{worker_index}.jsonl"


class ResultSink:
    """Worker-local writer for ``TaskResult`` records.

    Concurrent pipelines in the same event loop append through one handle;
    each record is a single write of a complete line. A write that still
    fails after the retries is logged and reported as ``False``.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        max_attempts: int = WRITE_ATTEMPTS,
        backoff: float = WRITE_BACKOFF,
    ) -> None:
        self.path = Path(path)
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.written = 0
        self.dropped = 0
        self._fh: Optional[BinaryIO] = None

    def _write(self, line: bytes) -> None:
        if self._fh is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "ab")
        try:
            self._fh.write(line)
            self._fh.flush()
        except OSError:
            self._discard_handle()
            raise

    def _discard_handle(self) -> None:
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            fh.close()
        except OSError as exc:
            LOGGER.debug("Ignoring close error on %s: %s", self.path, exc)

    async def append(self, result: TaskResult) -> bool:
        """Append one record; returns ``False`` if it could not be persisted."""
        line = orjson.dumps(result.model_dump(mode="json")) + b"\n"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.backoff),
                retry=retry_if_exception_type(OSError),
                reraise=True,
            ):
                with attempt:
                    self._write(line)
        except OSError as exc:
            self.dropped += 1
            LOGGER.error(
                "Dropped result for task %d after %d write attempts: %s",
                result.task_index,
                self.max_attempts,
                exc,
            )
            return False
        self.written += 1
        return True

    def close(self) -> None:
        """Flush and close the handle."""
        if self._fh is not None:
            self._fh.flush()
            self._fh.close()
            self._fh = None

    def __enter__(self) -> ResultSink:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
