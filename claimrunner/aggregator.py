"""Merge per-worker partial logs into the final CSV report.

Two passes: the first reads every record and discovers the asset types, the
second writes rows against the complete, sorted column set.
"""
from __future__ import annotations

import csv
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

import orjson
from pydantic import ValidationError

from .models import TaskResult

LOGGER = logging.getLogger(__name__)

FIXED_COLUMNS = ["task_id", "status", "fully_processed", "total_items"]
ASSET_FIELDS = ("total", "opened", "unopened")
TRAILING_COLUMNS = ["opened_count", "error", "timestamp"]

_WORKER_RE = re.compile(r"(\d+)")


@dataclass
class FinalReport:
    header: List[str]
    rows: List[TaskResult]
    asset_types: List[str]
    skipped_lines: int = 0
    sources: List[Path] = field(default_factory=list)

    def status_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for row in self.rows:
            counts[row.status.value] = counts.get(row.status.value, 0) + 1
        return counts


def _partial_sort_key(path: Path) -> Tuple[int, str]:
    match = _WORKER_RE.search(path.stem)
    return (int(match.group(1)) if match else -1, path.name)


def list_partials(partial_dir: Path) -> List[Path]:
    partial_dir = Path(partial_dir)
    if not partial_dir.is_dir():
        return []
    return sorted(partial_dir.glob("*.jsonl"), key=_partial_sort_key)


def read_partials(paths: Iterable[Path]) -> Tuple[List[TaskResult], int]:
    """Parse all records; unparsable lines are logged and skipped."""
    results: List[TaskResult] = []
    skipped = 0
    for path in paths:
        with open(path, "rb") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    results.append(TaskResult.model_validate(orjson.loads(line)))
                except (orjson.JSONDecodeError, ValidationError) as exc:
                    skipped += 1
                    LOGGER.warning(
                        "Skipping unparsable record %s:%d: %s",
                        path.name,
                        line_num,
                        str(exc).splitlines()[0],
                    )
    return results, skipped


def discover_asset_types(results: Iterable[TaskResult]) -> List[str]:
    keys = set()
    for result in results:
        keys.update(result.summary.assets)
    return sorted(keys)


def build_header(asset_types: Sequence[str]) -> List[str]:
    header = list(FIXED_COLUMNS)
    for asset in asset_types:
        header.extend(f"{asset}_{name}" for name in ASSET_FIELDS)
    header.extend(TRAILING_COLUMNS)
    return header


def format_amount(value: float) -> str:
    text = format(round(value, 6), "f").rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def to_row(result: TaskResult, asset_types: Sequence[str]) -> List[str]:
    summary = result.summary
    row = [
        result.task_id,
        result.status.value,
        "true" if result.fully_processed else "false",
        str(summary.total_items),
    ]
    for asset in asset_types:
        totals = summary.assets.get(asset)
        if totals is None:
            row.extend(["0"] * len(ASSET_FIELDS))
        else:
            row.extend(format_amount(getattr(totals, name)) for name in ASSET_FIELDS)
    row.extend([str(summary.opened_count), result.error or "", result.timestamp])
    return row


def dedupe(results: Iterable[TaskResult]) -> List[TaskResult]:
    """Keep the first record per task, ordered by input position."""
    seen: Dict[int, TaskResult] = {}
    for result in results:
        if result.task_index in seen:
            LOGGER.warning("Duplicate record for task %d ignored", result.task_index)
            continue
        seen[result.task_index] = result
    return [seen[index] for index in sorted(seen)]


class ResultAggregator:
    """Build the final report once all workers are done."""

    def __init__(self, partial_dir: Path | str, report_path: Path | str, *, cleanup: bool = True) -> None:
        self.partial_dir = Path(partial_dir)
        self.report_path = Path(report_path)
        self.cleanup = cleanup

    def run(self) -> FinalReport:
        sources = list_partials(self.partial_dir)
        if not sources:
            LOGGER.warning("No partial logs in %s, writing header-only report", self.partial_dir)

        parsed, skipped = read_partials(sources)
        rows = dedupe(parsed)
        asset_types = discover_asset_types(rows)
        report = FinalReport(
            header=build_header(asset_types),
            rows=rows,
            asset_types=asset_types,
            skipped_lines=skipped,
            sources=sources,
        )
        self._write(report)
        LOGGER.info(
            "Report written to %s: %d row(s), asset types=%s, skipped=%d",
            self.report_path,
            len(rows),
            asset_types,
            skipped,
        )

        if self.cleanup:
            for path in sources:
                path.unlink()
            LOGGER.debug("Removed %d partial log(s)", len(sources))
        return report

    def _write(self, report: FinalReport) -> None:
        self.report_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.report_path.with_name(self.report_path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerow(report.header)
            for result in report.rows:
                writer.writerow(to_row(result, report.asset_types))
        os.replace(tmp_path, self.report_path)
