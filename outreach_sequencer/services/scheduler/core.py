"""
Core scheduler functionality.

This module contains the sequence scheduler and its lifecycle:
- SequenceScheduler class
- Thread management with prompt, event-driven shutdown
- Tick processing with per-run error isolation
- Health reporting
"""

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Tuple

from outreach_sequencer.extensions import db
from outreach_sequencer.services.notifications import get_notification_service
from outreach_sequencer.services.sequence_engine import ConflictError, get_sequence_engine
from outreach_sequencer.services.sequence_engine.timing import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Consecutive tick failures before operators are emailed
ALERT_AFTER_FAILURES = 3

# Global scheduler instance
_sequence_scheduler = None


def get_sequence_scheduler():
    """Get the global scheduler instance."""
    global _sequence_scheduler
    if _sequence_scheduler is None:
        _sequence_scheduler = SequenceScheduler()
    return _sequence_scheduler


class SequenceScheduler:
    """Background ticker that progresses due sequence runs."""

    def __init__(self, app=None):
        self.app = app
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()

        self.interval_seconds = 300
        self.batch_size = 100

        self.last_tick_at = None
        self.last_summary = None
        self.last_error = None
        self.consecutive_failures = 0
        self.total_ticks = 0

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize the scheduler with the Flask app."""
        self.app = app
        self.interval_seconds = app.config.get('SCHEDULER_INTERVAL_SECONDS', 300)
        self.batch_size = app.config.get('SCHEDULER_BATCH_SIZE', 100)
        logger.info(f"Scheduler initialized (interval={self.interval_seconds}s, batch={self.batch_size})")

    def start(self):
        """Start the background processing thread."""
        if self.app is None:
            raise RuntimeError("Scheduler has no Flask app; call init_app() first")

        if self.running:
            logger.warning("Scheduler is already running")
            return

        self._stop_event.clear()
        self.running = True
        self.thread = threading.Thread(target=self._process_loop, name='sequence-scheduler', daemon=True)
        self.thread.start()
        logger.info("Sequence scheduler started successfully")

    def stop(self, timeout: float = 30):
        """Stop the background thread; an in-progress tick finishes first."""
        if not self.running:
            logger.info("Scheduler is already stopped")
            return

        logger.info("Stopping scheduler...")
        self.running = False
        self._stop_event.set()

        if self.thread and self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning(f"Scheduler thread did not terminate within {timeout} seconds")

        logger.info("Scheduler stopped")

    def _process_loop(self):
        """Main processing loop for the scheduler."""
        logger.info("Starting scheduler processing loop")

        while not self._stop_event.is_set():
            try:
                summary = self.tick()
                logger.info(f"Tick complete: {summary['processed']} runs processed, sleeping for {self.interval_seconds} seconds")
            except Exception as e:
                logger.error(f"Error in scheduler processing loop: {str(e)}")

            self._stop_event.wait(self.interval_seconds)

        logger.info("Scheduler processing loop ended")

    def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Process every run due at ``now`` (one batch) and return a summary by outcome."""
        now = as_naive_utc(now) if now else utcnow()

        with self._tick_lock:
            with self.app.app_context():
                try:
                    engine = get_sequence_engine()
                    refs = [(run.id, run.version) for run in engine.find_due_runs(now, self.batch_size)]
                    summary = self._process_batch(engine, refs, now)
                except Exception as e:
                    db.session.rollback()
                    self.consecutive_failures += 1
                    self.last_error = str(e)
                    logger.error(f"Tick failed ({self.consecutive_failures} consecutive): {str(e)}")
                    if self.consecutive_failures == ALERT_AFTER_FAILURES:
                        get_notification_service().send_error_notification(
                            'Scheduler Tick Failed',
                            str(e),
                            {'consecutive_failures': self.consecutive_failures, 'tick_at': now.isoformat()}
                        )
                    raise
                finally:
                    db.session.remove()

        self.total_ticks += 1
        self.consecutive_failures = 0
        self.last_tick_at = utcnow()
        self.last_summary = summary
        return summary

    def _process_batch(self, engine, refs: Iterable[Tuple[str, int]], now: datetime) -> Dict[str, Any]:
        """Run one transition per (run_id, version) pair; errors never escape a single run."""
        outcomes = Counter()
        conflicts = 0
        errors = 0
        processed = 0

        for run_id, version in refs:
            processed += 1
            try:
                outcome = engine.process_due_run(run_id, expected_version=version, now=now)
                outcomes[outcome.outcome] += 1
            except ConflictError as e:
                db.session.rollback()
                conflicts += 1
                logger.info(f"Skipping run {run_id}: {e.message}")
            except Exception as e:
                db.session.rollback()
                errors += 1
                logger.error(f"Error processing run {run_id}: {str(e)}")

        summary = {
            'processed': processed,
            'outcomes': dict(outcomes),
            'conflicts': conflicts,
            'errors': errors,
            'tick_at': now.isoformat()
        }
        if processed:
            logger.info(f"Processed {processed} due runs: {dict(outcomes)} (conflicts={conflicts}, errors={errors})")
        return summary

    def health(self) -> Dict[str, Any]:
        """Report running state, last tick and whether ticks are keeping up."""
        now = utcnow()
        stale_after = timedelta(seconds=self.interval_seconds * 3)

        if self.last_tick_at is None:
            healthy = False
        else:
            healthy = now - self.last_tick_at <= stale_after and self.consecutive_failures == 0

        return {
            'running': self.running,
            'thread_alive': bool(self.thread and self.thread.is_alive()),
            'healthy': healthy,
            'interval_seconds': self.interval_seconds,
            'batch_size': self.batch_size,
            'last_tick_at': self.last_tick_at.isoformat() if self.last_tick_at else None,
            'last_summary': self.last_summary,
            'last_error': self.last_error,
            'consecutive_failures': self.consecutive_failures,
            'total_ticks': self.total_ticks
        }
