"""Readers for the task list and proxy list files."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .errors import InputError
from .models import ProxyDescriptor, Task
from .proxy import parse_proxies

LOGGER = logging.getLogger(__name__)


def read_entries(path: Path | str) -> List[str]:
    """Return stripped lines, ignoring blanks and ``#`` comments."""
    entries: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            entries.append(line)
    return entries


def load_tasks(path: Path | str) -> List[Task]:
    """Load the task list. An unreadable file aborts the run."""
    try:
        secrets = read_entries(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"cannot read task list {path}: {exc}") from exc

    tasks = [Task(index=i, secret=secret) for i, secret in enumerate(secrets)]
    LOGGER.info("Loaded %d task(s) from %s", len(tasks), path)
    return tasks


def load_proxies(path: Path | str | None) -> List[ProxyDescriptor]:
    """Load the optional proxy list. A missing file disables proxying."""
    if path is None:
        return []
    path = Path(path)
    if not path.exists():
        LOGGER.info("No proxy list at %s, using direct connections", path)
        return []
    try:
        lines = read_entries(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"cannot read proxy list {path}: {exc}") from exc

    proxies = parse_proxies(lines)
    LOGGER.info("Loaded %d proxy(ies) from %s", len(proxies), path)
    return proxies
