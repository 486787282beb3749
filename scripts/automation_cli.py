#!/usr/bin/env python3
"""
Operator CLI for the monthly revenue and dividend automation.

Reads settings from payout_config (default sets/automation.yaml, or
--config), connects to settings.database_url (or --db-url) and runs one
command.

Usage:
    python3 scripts/automation_cli.py [--config PATH] [--db-url URL] <command> [options]

Examples:
    # Create tables and seed the cron schedules
    python3 scripts/automation_cli.py init-db

    # Run a scheduled job by hand for February 2026
    python3 scripts/automation_cli.py run-job DividendDistribution --period 2026-02

    # Recompute one company's revenue report (bank fixture as JSON)
    python3 scripts/automation_cli.py --bank-fixture bank.json \\
        manual revenue --company-id <uuid> --month 2 --year 2026

    # Queue a distribution and process it
    python3 scripts/automation_cli.py enqueue-distribution --period 2026-02
    python3 scripts/automation_cli.py drain

    # Queue operations
    python3 scripts/automation_cli.py queue metrics
    python3 scripts/automation_cli.py queue retry-failed --limit 50
    python3 scripts/automation_cli.py queue progress --dividend-id <uuid> --total 120

    # Long-running processes (Ctrl-C to stop)
    python3 scripts/automation_cli.py scheduler
    python3 scripts/automation_cli.py worker

Bank fixture format: {"<account identifier>": [{"date": "2026-02-03T10:00:00+00:00",
"type": "credit", "amount": "1250.00", "reference": "TXN-1"}, ...]}
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from payout_automation.collaborators import FetchedTransaction  # noqa: E402
from payout_kernel.exceptions import BankAuthError, PayoutKernelError  # noqa: E402
from payout_kernel.models.revenue import TransactionType  # noqa: E402


# =============================================================================
# Bank adapters available to the CLI
# =============================================================================


class FixtureBankFetcher:
    """Serves bank transactions from a JSON file keyed by account identifier."""

    def __init__(self, path: Path):
        with open(path) as f:
            self._data = json.load(f)

    def fetch_transactions(self, account_identifier, start_date, end_date):
        rows = self._data.get(account_identifier, [])
        result = []
        for row in rows:
            when = datetime.fromisoformat(row["date"])
            if start_date <= when <= end_date:
                result.append(FetchedTransaction(
                    date=when,
                    type=TransactionType(row["type"]),
                    amount=Decimal(str(row["amount"])),
                    reference=row["reference"],
                    balance_after=(
                        Decimal(str(row["balance_after"]))
                        if row.get("balance_after") is not None
                        else None
                    ),
                    description=row.get("description"),
                ))
        return result


class UnconfiguredBankFetcher:
    """Fails every fetch; revenue runs report each company as failed."""

    def fetch_transactions(self, account_identifier, start_date, end_date):
        raise BankAuthError(account_identifier, "no bank adapter configured (use --bank-fixture)")


# =============================================================================
# Output
# =============================================================================


def _print_section(title: str) -> None:
    print()
    print("=" * 72)
    print(f"  {title}")
    print("=" * 72)


def _print_run(run) -> None:
    if run is None:
        print("  Skipped: job lock held by another instance")
        return
    print(f"  Run:       {run.idempotency_key}  ({run.trigger.value}, attempt {run.attempt_count})")
    print(f"  Status:    {run.status.value}")
    print(
        f"  Items:     total={run.total_items} succeeded={run.succeeded_items} "
        f"skipped={run.skipped_items} failed={run.failed_items}"
    )
    print(f"  Duration:  {run.duration_ms} ms")
    if run.error_summary:
        print(f"  Error:     {run.error_summary}")


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(orchestrator, args) -> int:
    added = orchestrator.seed_schedules()
    _print_section("Database initialized")
    print(f"  Schedules added: {added}")
    for schedule in orchestrator.scheduler.list_schedules():
        print(f"  {schedule.job_name:<28} {schedule.cron_expression:<12} next={schedule.next_run_at}")
    return 0


def cmd_run_job(orchestrator, args) -> int:
    from payout_batch.domain.types import RunStatus, RunTrigger
    from payout_kernel.domain.period import ReportingPeriod

    period = ReportingPeriod.parse(args.period) if args.period else None
    run = orchestrator.run_job(args.job_name, period, RunTrigger.MANUAL)
    _print_section(f"Job {args.job_name}")
    _print_run(run)
    return 0 if run is None or run.status == RunStatus.COMPLETED else 2


def cmd_manual(orchestrator, args) -> int:
    from payout_batch.orchestrator import ManualJobOptions

    options = ManualJobOptions(
        month=args.month,
        year=args.year,
        company_id=UUID(args.company_id) if args.company_id else None,
        revenue_report_id=UUID(args.report_id) if args.report_id else None,
    )
    result = orchestrator.execute_manual_job(args.job_type, options)
    _print_section(f"Manual {args.job_type}")
    print(f"  Outcome:   {result.outcome.value}")
    if result.note:
        print(f"  Note:      {result.note}")
    if result.error:
        print(f"  Error:     {result.error}")
    if args.job_type == "revenue" and result.split is not None:
        split = result.split
        print(f"  Net revenue:    {split.net_revenue}")
        print(f"  Platform fee:   {split.platform_fee}")
        print(f"  Net profit:     {split.net_profit}")
        print(f"  Dividend pool:  {split.dividend_pool}")
        print(f"  Reinvestment:   {split.reinvestment_amount}")
    elif args.job_type == "dividend":
        print(f"  Per share:      {result.amount_per_share}")
        print(f"  Distributed:    {result.total_distributed}")
        print(f"  Paid:           {result.shareholders_paid}")
    elif args.job_type == "price":
        print(f"  Price:          {result.previous_price} -> {result.new_price} ({result.change_percent}%)")
    return 0 if result.success else 2


def cmd_enqueue_distribution(orchestrator, args) -> int:
    from payout_kernel.domain.period import ReportingPeriod

    period = ReportingPeriod.parse(args.period) if args.period else None
    job_ids = orchestrator.dividend_engine.enqueue_dividend_distribution(period, orchestrator.queue)
    _print_section("Distribution jobs enqueued")
    print(f"  Jobs: {len(job_ids)}")
    return 0


def cmd_drain(orchestrator, args) -> int:
    worker = orchestrator.create_worker()
    processed = worker.drain(max_jobs=args.max_jobs)
    _print_section("Queue drained")
    print(f"  Jobs processed: {processed}")
    return 0


def cmd_queue(orchestrator, args) -> int:
    queue = orchestrator.queue

    if args.queue_command == "metrics":
        m = queue.metrics()
        _print_section(f"Queue {m.queue_name}{' (paused)' if m.paused else ''}")
        for label in ("waiting", "active", "delayed", "stalled", "completed", "failed"):
            print(f"  {label:<10} {getattr(m, label)}")
        return 0

    if args.queue_command == "failed":
        _print_section("Failed jobs")
        for job in queue.get_failed(args.limit):
            print(f"  {job.job_id}  {job.job_type.value:<28} attempts={job.attempts_made}  {job.last_error}")
        return 0

    if args.queue_command == "retry-failed":
        count = queue.retry_all_failed(args.limit)
        print(f"Requeued {count} failed jobs")
        return 0

    if args.queue_command == "pause":
        queue.pause()
        print("Queue paused")
        return 0

    if args.queue_command == "resume":
        queue.resume()
        print("Queue resumed")
        return 0

    if args.queue_command == "clean":
        settings = orchestrator.settings.queue
        removed = queue.clean(settings.keep_completed, settings.keep_failed)
        print(f"Removed {removed} finished jobs")
        return 0

    if args.queue_command == "progress":
        p = queue.distribution_progress(UUID(args.dividend_id), args.total)
        _print_section(f"Distribution {p.dividend_id}")
        print(f"  Completed: {p.completed}/{p.total_payouts} ({p.percentage}%)")
        print(f"  Failed:    {p.failed}")
        print(f"  Pending:   {p.pending}")
        print(f"  Drained:   {p.is_drained}")
        return 0

    print(f"ERROR: Unknown queue command {args.queue_command!r}", file=sys.stderr)
    return 1


def cmd_health(orchestrator, args) -> int:
    health = orchestrator.automation_health()
    queue_health = orchestrator.queue_health()
    _print_section(f"Automation health: {'OK' if health.healthy else 'DEGRADED'}")
    for job in health.jobs:
        status = job.last_run_status.value if job.last_run_status else "never run"
        print(
            f"  {job.job_name:<28} {status:<20} runs={job.total_runs} "
            f"ok={job.success_count} failed={job.failure_count} next={job.next_run_at}"
        )
        if job.last_error:
            print(f"      last error: {job.last_error}")
    print(
        f"  Queue {queue_health.queue_name}: {'OK' if queue_health.healthy else 'DEGRADED'} "
        f"(failed={queue_health.failed}/{queue_health.max_failed}, paused={queue_health.paused})"
    )
    return 0 if health.healthy and queue_health.healthy else 2


def _wait_for_interrupt() -> None:
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    stop.wait()


def cmd_scheduler(orchestrator, args) -> int:
    orchestrator.seed_schedules()
    orchestrator.scheduler.start()
    print("Scheduler running. Ctrl-C to stop.")
    _wait_for_interrupt()
    orchestrator.scheduler.stop()
    return 0


def cmd_worker(orchestrator, args) -> int:
    worker = orchestrator.create_worker()
    worker.start()
    print(f"Worker {worker.worker_id} running. Ctrl-C to stop.")
    _wait_for_interrupt()
    worker.stop()
    return 0


# =============================================================================
# Entry point
# =============================================================================


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Monthly revenue and dividend automation operator tool.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML (default: bundled automation.yaml).")
    parser.add_argument("--db-url", default=None, help="Database URL (default: settings.database_url).")
    parser.add_argument("--bank-fixture", type=Path, default=None, help="JSON file serving bank transactions.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and seed schedules.")

    run_job = sub.add_parser("run-job", help="Run a scheduled job now.")
    run_job.add_argument("job_name", help="MonthlyRevenueCalculation, DividendDistribution or StockPriceAdjustment.")
    run_job.add_argument("--period", default=None, help="YYYY-MM (default: last month).")

    manual = sub.add_parser("manual", help="Manual correction for one company or report.")
    manual.add_argument("job_type", choices=["revenue", "dividend", "price"])
    manual.add_argument("--company-id", default=None)
    manual.add_argument("--report-id", default=None)
    manual.add_argument("--month", type=int, default=None)
    manual.add_argument("--year", type=int, default=None)

    enqueue = sub.add_parser("enqueue-distribution", help="Queue dividend distributions for a period.")
    enqueue.add_argument("--period", default=None, help="YYYY-MM (default: last month).")

    drain = sub.add_parser("drain", help="Process queued jobs until none is claimable.")
    drain.add_argument("--max-jobs", type=int, default=None)

    queue = sub.add_parser("queue", help="Queue management.")
    queue_sub = queue.add_subparsers(dest="queue_command", required=True)
    queue_sub.add_parser("metrics")
    failed = queue_sub.add_parser("failed")
    failed.add_argument("--limit", type=int, default=100)
    retry = queue_sub.add_parser("retry-failed")
    retry.add_argument("--limit", type=int, default=100)
    queue_sub.add_parser("pause")
    queue_sub.add_parser("resume")
    queue_sub.add_parser("clean")
    progress = queue_sub.add_parser("progress")
    progress.add_argument("--dividend-id", required=True)
    progress.add_argument("--total", type=int, required=True)

    sub.add_parser("health", help="Run history and queue health.")
    sub.add_parser("scheduler", help="Run the cron scheduler until interrupted.")
    sub.add_parser("worker", help="Run queue workers until interrupted.")

    return parser.parse_args(argv)


COMMANDS = {
    "init-db": cmd_init_db,
    "run-job": cmd_run_job,
    "manual": cmd_manual,
    "enqueue-distribution": cmd_enqueue_distribution,
    "drain": cmd_drain,
    "queue": cmd_queue,
    "health": cmd_health,
    "scheduler": cmd_scheduler,
    "worker": cmd_worker,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    import logging
    from dataclasses import replace

    from payout_batch.orchestrator import AutomationOrchestrator
    from payout_config import get_active_settings
    from payout_kernel.logging_config import configure_logging

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = get_active_settings(args.config)
    except (OSError, PayoutKernelError) as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return 1
    if args.db_url:
        settings = replace(settings, database_url=args.db_url)

    bank_fetcher = (
        FixtureBankFetcher(args.bank_fixture) if args.bank_fixture else UnconfiguredBankFetcher()
    )
    orchestrator = AutomationOrchestrator.from_settings(
        settings, bank_fetcher, create_schema=args.command == "init-db",
    )
    try:
        return COMMANDS[args.command](orchestrator, args)
    except PayoutKernelError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    finally:
        orchestrator.close()


if __name__ == "__main__":
    sys.exit(main())
