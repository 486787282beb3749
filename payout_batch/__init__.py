"""
payout_batch -- Cron scheduling and orchestration of the monthly automation.

Persisted cron schedules, run history with per-period idempotency, an
in-process polling scheduler and the orchestrator that wires settings,
engines, queue and lock together.

Architecture:
    payout_batch/ is the outermost package.  Only its pure domain layer is
    imported from below: payout_automation reports RunCounts and
    payout_config validates cron expressions with payout_batch.domain.
    This package __init__ therefore imports nothing.

Invariants:
    - One logical run per (job, reporting period) via a UNIQUE
      idempotency key.
    - One running instance per job via the distributed lock.
    - Schedule evaluation is pure; all timestamps come from the Clock.
    - Graceful shutdown: stop() lets the current tick finish.
"""
