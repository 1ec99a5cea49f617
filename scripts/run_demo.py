#!/usr/bin/env python3
"""
Scheduler Demo Script

Runs a handful of sample jobs against the configured store and prints each
job's execution stats when done.

Usage:
    python scripts/run_demo.py --seconds 10
    python scripts/run_demo.py --store redis --log-format json
"""

import asyncio
import random
import sys
from pathlib import Path
from typing import Any, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import click
from rich.console import Console
from rich.table import Table

from jobfire_core.config import SchedulerSettings, create_store, get_settings
from jobfire_core.core.logging import setup_logging
from jobfire_core.scheduling import RUN_ONCE, JobContext, JobScheduler

console = Console()


# =============================================================================
# Sample Jobs
# =============================================================================


async def heartbeat(context: JobContext, params: Any) -> str:
    context.logger.info("heartbeat", region=params["region"])
    return "alive"


async def slow_export(context: JobContext, params: Any) -> Optional[int]:
    """Exports in small batches and stops as soon as it is cancelled."""
    exported = 0
    for _ in range(params["batches"]):
        if context.cancelled:
            context.logger.warning("export_aborted", exported=exported)
            return None
        await asyncio.sleep(0.1)
        exported += 1
    return exported


async def flaky_sync(context: JobContext, params: Any) -> str:
    if random.random() < params["failure_rate"]:
        raise ConnectionError("upstream unavailable")
    return "synced"


def warm_cache(context: JobContext, params: Any) -> int:
    return len(params["keys"])


def register_jobs(scheduler: JobScheduler) -> None:
    scheduler.add_job("heartbeat", heartbeat, interval_ms=1000, params={"region": "eu-west-1"})
    scheduler.add_job("slow-export", slow_export, interval_ms=2000, timeout_ms=500, params={"batches": 30})
    scheduler.add_job("flaky-sync", flaky_sync, interval_ms=1500, retries=2, params={"failure_rate": 0.6})
    scheduler.add_job("warm-cache", warm_cache, interval_ms=RUN_ONCE, params={"keys": ["users", "plans"]})
    scheduler.add_job("minutely-report", heartbeat, cron="* * * * *", run_on_start=True, params={"region": "all"})


# =============================================================================
# Reporting
# =============================================================================


async def print_stats(scheduler: JobScheduler) -> None:
    table = Table(title="Job Execution Stats")
    table.add_column("Job", style="cyan")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Timeouts", justify="right")
    table.add_column("Avg ms", justify="right")

    for job in scheduler.jobs:
        stats = await scheduler.get_job_history(job.id)
        if stats is None:
            table.add_row(job.id, "-", "-", "-", "-")
            continue
        table.add_row(
            job.id,
            str(stats.success_count),
            str(stats.failure_count),
            str(stats.timeout_count),
            f"{stats.avg_duration_ms:.1f}",
        )

    console.print(table)


async def run_demo(settings: SchedulerSettings, seconds: float) -> None:
    store = create_store(settings)
    try:
        async with JobScheduler(settings, store=store) as scheduler:
            register_jobs(scheduler)
            console.print(f"[bold]Running {len(scheduler.jobs)} jobs for {seconds:g}s...[/bold]")
            await asyncio.sleep(seconds)
            scheduler.clear_all_timers()
        await print_stats(scheduler)
    finally:
        await store.close()


# =============================================================================
# Entry Point
# =============================================================================


@click.command()
@click.option("--seconds", "-s", type=float, default=8.0, help="How long to run the scheduler")
@click.option("--store", "store_backend", type=click.Choice(["memory", "redis", "mongo"]),
              help="Result store backend (defaults to JOBFIRE_STORE_BACKEND)")
@click.option("--max-concurrent", type=int, help="Concurrency ceiling")
@click.option("--log-format", type=click.Choice(["json", "pretty"]), help="Log renderer")
@click.option("--debug/--no-debug", default=True, help="Emit scheduler debug events")
def main(
    seconds: float,
    store_backend: Optional[str],
    max_concurrent: Optional[int],
    log_format: Optional[str],
    debug: bool,
):
    """Run the sample jobs and print their stats."""
    overrides = {"debug": debug}
    if store_backend:
        overrides["store_backend"] = store_backend
    if max_concurrent:
        overrides["max_concurrent_jobs"] = max_concurrent
    if log_format:
        overrides["log_format"] = log_format
    settings = get_settings().model_copy(update=overrides)

    setup_logging(
        level="DEBUG" if debug else settings.log_level,
        format=settings.log_format,
        service_name="jobfire-demo",
    )

    try:
        asyncio.run(run_demo(settings, seconds))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
    except Exception as e:
        console.print(f"[red]Demo failed: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
