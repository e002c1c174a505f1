"""Periodic expiry sweeps.

Each sweep scans for candidates, then handles every order in its own locked
transaction and re-checks state there, so a pass can overlap user traffic
and running it twice changes nothing the second time.
"""
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import click
import logging

from evidence_orders.services import (
    dispute_service,
    payment_service,
    quote_service,
)
from evidence_orders.services.clock import utcnow

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = 'order_expiry_sweeps'


def run_expiry_sweeps(now=None):
    now = now or utcnow()
    results = {
        'quotes_expired': quote_service.expire_old_quotes(now),
        'payments_expired': payment_service.expire_overdue_payments(now),
        'disputes_escalated':
            dispute_service.auto_escalate_stale_disputes(now),
    }
    summary = {}
    for name, result in results.items():
        if not result.ok:
            logger.warning("Sweep %s failed: %s", name, result.error)
        summary[name] = result.data if result.ok else 0
    logger.info(
        "Expiry sweep at %s: quotes=%d payments=%d disputes=%d",
        now.isoformat(),
        summary['quotes_expired'],
        summary['payments_expired'],
        summary['disputes_escalated'],
    )
    return summary


class OrderSweepScheduler:
    """Runs :func:`run_expiry_sweeps` on an interval inside the app context."""

    def __init__(self, app):
        self.app = app
        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 120,
        }
        self.scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            job_defaults=job_defaults,
            timezone='UTC',
        )

    def run_sweeps(self):
        with self.app.app_context():
            try:
                run_expiry_sweeps()
            except Exception:
                # Keep the scheduler thread alive for the next interval.
                logger.exception("Expiry sweep crashed")

    def setup_jobs(self):
        if self.scheduler.get_job(SWEEP_JOB_ID):
            self.scheduler.remove_job(SWEEP_JOB_ID)
        self.scheduler.add_job(
            self.run_sweeps,
            trigger=IntervalTrigger(
                minutes=self.app.config['SWEEP_INTERVAL_MINUTES']),
            id=SWEEP_JOB_ID,
            name='Expire quotes, payments and stale disputes',
            max_instances=1,
            coalesce=True,
        )

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info(
            "Sweep scheduler started, every %s minutes",
            self.app.config['SWEEP_INTERVAL_MINUTES'],
        )

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sweep scheduler stopped")


def register_commands(app):
    @app.cli.command('sweep')
    def sweep_command():
        """Run one expiry sweep now."""
        summary = run_expiry_sweeps()
        for name, count in summary.items():
            click.echo(f'{name}: {count}')
