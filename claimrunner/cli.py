"""CLI for the claim runner."""
from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click

from .aggregator import ResultAggregator
from .config import LOG_LEVELS, RunConfig
from .coordinator import Coordinator
from .errors import ClaimRunnerError
from .logging_utils import run_log_path, setup_logging

LOGGER = logging.getLogger(__name__)


def _load_config(env_file: Optional[str], **overrides: Any) -> RunConfig:
    try:
        return RunConfig.from_env(Path(env_file) if env_file else None, **overrides)
    except ClaimRunnerError as exc:
        click.echo(f"❌ {exc}", err=True)
        sys.exit(1)


@click.group()
def cli():
    """Distribute claim tasks across worker processes."""
    pass


@cli.command()
@click.option("--tasks", "tasks_file", type=click.Path(path_type=Path), help="Task list (one secret per line)")
@click.option("--proxy-file", "proxies_file", type=click.Path(path_type=Path), help="Proxy list (one URL per line)")
@click.option("--output-dir", type=click.Path(path_type=Path), help="Directory for logs and reports")
@click.option("--workers", type=int, help="Worker count override")
@click.option("--concurrency", type=int, help="Tasks in flight per worker")
@click.option("--max-attempts", type=int, help="Attempts per retried stage")
@click.option("--log-level", type=click.Choice(sorted(LOG_LEVELS)), help="Log verbosity")
@click.option("--use-proxies/--no-proxies", "use_proxies", default=None, help="Route workers through proxies")
@click.option("--env-file", type=click.Path(exists=True), help="Extra .env file to load")
def run(env_file: Optional[str], **options: Any) -> None:
    """Run every task and write the final report."""
    config = _load_config(env_file, **options)
    started_at = datetime.now()
    log_file = run_log_path(config.output_dir, started_at)
    setup_logging(config.python_log_level, log_file)

    try:
        summary = Coordinator(config, log_file=log_file, started_at=started_at).run()
    except ClaimRunnerError as exc:
        LOGGER.error("Run aborted: %s", exc)
        sys.exit(1)
    except Exception as exc:
        LOGGER.critical("Run crashed: %s", exc, exc_info=True)
        sys.exit(1)

    click.echo(f"✅ {summary.total_tasks} task(s) processed, report: {summary.report_path}")
    for status, count in sorted(summary.status_counts.items()):
        click.echo(f"  {status:18s}: {count:6d}")
    if summary.missing:
        click.echo(f"⚠️  {len(summary.missing)} task(s) without a result, see {summary.failed_path}")


@cli.command()
@click.option("--output-dir", type=click.Path(path_type=Path), help="Directory holding partial/")
@click.option("--keep-partials", is_flag=True, help="Do not delete partial logs afterwards")
@click.option("--env-file", type=click.Path(exists=True), help="Extra .env file to load")
def aggregate(output_dir: Optional[Path], keep_partials: bool, env_file: Optional[str]) -> None:
    """Build a report from partial logs left by an interrupted run."""
    config = _load_config(env_file, output_dir=output_dir)
    setup_logging(config.python_log_level)

    report_path = config.output_dir / f"report-{datetime.now().strftime('%Y%m%d-%H%M%S')}.csv"
    report = ResultAggregator(config.partial_dir, report_path, cleanup=not keep_partials).run()
    click.echo(f"✅ {len(report.rows)} row(s) written to {report_path}")


@cli.command()
@click.option("--tasks", "tasks_file", type=click.Path(path_type=Path), help="Task list")
@click.option("--proxy-file", "proxies_file", type=click.Path(path_type=Path), help="Proxy list")
@click.option("--workers", type=int, help="Worker count override")
@click.option("--use-proxies/--no-proxies", "use_proxies", default=None, help="Route workers through proxies")
@click.option("--env-file", type=click.Path(exists=True), help="Extra .env file to load")
def plan(env_file: Optional[str], **options: Any) -> None:
    """Show worker count, partition sizes and proxies without running."""
    config = _load_config(env_file, **options)
    setup_logging(logging.WARNING)

    try:
        partitions = Coordinator(config).plan()
    except ClaimRunnerError as exc:
        click.echo(f"❌ {exc}", err=True)
        sys.exit(1)

    click.echo(f"\n📊 Plan: {len(partitions)} worker(s)\n" + "=" * 40)
    for partition in partitions:
        proxy = partition.proxy.redacted() if partition.proxy else "direct"
        click.echo(f"  worker {partition.worker_index:3d}: {len(partition.tasks):6d} task(s)  {proxy}")
    click.echo()


if __name__ == "__main__":
    cli()
