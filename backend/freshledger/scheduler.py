"""
Expiry Sweep Scheduler
Runs the expiry reconciliation jobs on fixed intervals, outside request handling
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class ExpirySweepScheduler:
    """Periodic expiry sweeps bound to one Flask app"""

    def __init__(self, app, scheduler=None):
        self.app = app
        self.scheduler = scheduler

    def run_sweep(self):
        """Full sweep: expired stock becomes waste"""
        from .services.expiry_service import run_expiry_sweep

        with self.app.app_context():
            try:
                result = run_expiry_sweep(actor="scheduler")
                logger.info(
                    "Scheduled expiry sweep processed %s items (waste cost %s)",
                    result["processed_count"], result["total_waste_cost"],
                )
                return result
            except Exception:
                logger.exception("Scheduled expiry sweep failed")
                return None

    def run_status_sweep(self):
        """Cheap sweep: status bookkeeping only"""
        from .services.expiry_service import mark_expired_status

        with self.app.app_context():
            try:
                return mark_expired_status()
            except Exception:
                logger.exception("Scheduled expiry status sweep failed")
                return None

    def add_jobs(self, scheduler):
        sweep_minutes = int(self.app.config.get("EXPIRY_SWEEP_INTERVAL_MINUTES", 60))
        status_minutes = int(self.app.config.get("EXPIRY_STATUS_INTERVAL_MINUTES", 10))

        scheduler.add_job(
            func=self.run_sweep,
            trigger=IntervalTrigger(minutes=sweep_minutes),
            id="expiry_sweep",
            name="Convert expired stock into waste",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            func=self.run_status_sweep,
            trigger=IntervalTrigger(minutes=status_minutes),
            id="expiry_status_sweep",
            name="Mark expired stock items",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        return scheduler

    def start(self):
        """Start the background scheduler"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Expiry scheduler already running")
            return

        self.scheduler = self.add_jobs(self.scheduler or BackgroundScheduler(daemon=True))
        self.scheduler.start()
        logger.info(
            "Expiry scheduler started. Sweep every %s min, status check every %s min",
            self.app.config.get("EXPIRY_SWEEP_INTERVAL_MINUTES"),
            self.app.config.get("EXPIRY_STATUS_INTERVAL_MINUTES"),
        )

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Expiry scheduler stopped")
        self.scheduler = None
