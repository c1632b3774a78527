"""Pydantic models shared across the claim runner components."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class TaskStatus(str, Enum):
    """Lifecycle of a task inside its worker."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class ResultCode(str, Enum):
    """Terminal status recorded for every task."""

    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    NO_UNOPENED_BOXES = "NO_UNOPENED_BOXES"
    FAILED_TOKEN = "FAILED_TOKEN"
    FAILED = "FAILED"
    ERROR = "ERROR"


# Statuses written to failed.txt so they can be fed back as a task list
RETRY_CODES = frozenset({ResultCode.FAILED_TOKEN, ResultCode.FAILED, ResultCode.ERROR})


class Task(BaseModel):
    index: int
    secret: SecretStr
    address: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING

    @property
    def label(self) -> str:
        """Log-safe identifier: the address once known, else a masked secret."""
        if self.address:
            return self.address
        return self.secret.get_secret_value()[:8] + "…"


class ProxyDescriptor(BaseModel):
    """Proxy endpoint plus optional credentials."""

    model_config = ConfigDict(frozen=True)

    scheme: str = "http"
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> ProxyDescriptor:
        """Parse proxy from URL format.

        Format: scheme://[username:password@]host:port
        """
        url = url.strip()
        scheme = "http"
        if "://" in url:
            scheme, url = url.split("://", 1)

        username = password = None
        if "@" in url:
            creds, url = url.rsplit("@", 1)
            if ":" in creds:
                username, password = creds.split(":", 1)
            else:
                username = creds

        host, sep, port = url.rstrip("/").rpartition(":")
        if not sep or not host:
            raise ValueError(f"proxy is missing host or port: {url!r}")
        if not port.isdigit():
            raise ValueError(f"proxy port is not numeric: {port!r}")

        return cls(
            scheme=scheme.lower() or "http",
            host=host,
            port=int(port),
            username=username or None,
            password=password or None,
        )

    @property
    def url(self) -> str:
        """Proxy URL in httpx format."""
        if self.username and self.password:
            return f"{self.scheme}://{self.username}:{self.password}@{self.host}:{self.port}"
        if self.username:
            return f"{self.scheme}://{self.username}@{self.host}:{self.port}"
        return f"{self.scheme}://{self.host}:{self.port}"

    def redacted(self) -> str:
        if self.username:
            return f"{self.scheme}://{self.username}:***@{self.host}:{self.port}"
        return self.url


class Partition(BaseModel):
    """Slice of the task list handed to exactly one worker."""

    worker_index: int
    tasks: Tuple[Task, ...]
    proxy: Optional[ProxyDescriptor] = None


class InventoryItem(BaseModel):
    """One claimable box."""

    model_config = ConfigDict(frozen=True)

    box_id: str
    week: int
    opened: bool = False
    amounts: Tuple[float, ...] = (0.0,)
    asset_type: str

    @property
    def amount(self) -> float:
        return float(sum(self.amounts))


class AssetTotals(BaseModel):
    total: float = 0.0
    opened: float = 0.0
    unopened: float = 0.0


class InventorySummary(BaseModel):
    total_items: int = 0
    opened_count: int = 0
    unopened_count: int = 0
    assets: Dict[str, AssetTotals] = Field(default_factory=dict)


class TaskResult(BaseModel):
    """Terminal record for a task, appended once to the worker's partial log."""

    model_config = ConfigDict(frozen=True)

    task_index: int
    task_id: str
    worker_index: int
    status: ResultCode
    fully_processed: bool = False
    summary: InventorySummary = Field(default_factory=InventorySummary)
    claims_attempted: int = 0
    claims_failed: int = 0
    error: Optional[str] = None
    timestamp: str = Field(default_factory=utc_timestamp)
