"""Distribute claim tasks across isolated worker processes.

This package provides:
- Balanced partitioning of tasks and round-robin proxy assignment
- A per-task claim pipeline with bounded retries
- Crash-tolerant per-worker partial logs
- Aggregation into one CSV report with per-asset columns
"""

from .aggregator import FinalReport, ResultAggregator
from .config import RunConfig
from .coordinator import Coordinator, RunSummary
from .errors import ClaimRunnerError, ConfigurationError
from .models import ResultCode, Task, TaskResult
from .pipeline import TaskPipeline
from .retry import RetryExecutor, RetryOutcome
from .worker import WorkerRunner

__version__ = "0.1.0"

__all__ = [
    "ClaimRunnerError",
    "ConfigurationError",
    "Coordinator",
    "FinalReport",
    "ResultAggregator",
    "ResultCode",
    "RetryExecutor",
    "RetryOutcome",
    "RunConfig",
    "RunSummary",
    "Task",
    "TaskPipeline",
    "TaskResult",
    "WorkerRunner",
]
