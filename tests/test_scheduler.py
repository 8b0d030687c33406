"""
Unit tests for the sequence scheduler.

Covers tick processing, per-run error isolation, duplicate-delivery
protection between workers, lifecycle and health reporting.
"""

import time
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from outreach_sequencer.extensions import db
from outreach_sequencer.models import LeadSequence
from outreach_sequencer.services.scheduler.core import SequenceScheduler, get_sequence_scheduler
from tests.conftest import T0


@pytest.fixture
def scheduler(app):
    """Create a scheduler instance for testing."""
    return SequenceScheduler(app)


def _reload(run_id):
    db.session.expire_all()
    return db.session.get(LeadSequence, run_id)


class TestSchedulerSetup:

    def test_init_reads_config(self, app):
        app.config['SCHEDULER_INTERVAL_SECONDS'] = 42
        app.config['SCHEDULER_BATCH_SIZE'] = 7

        scheduler = SequenceScheduler(app)

        assert scheduler.interval_seconds == 42
        assert scheduler.batch_size == 7
        assert scheduler.running is False

    def test_start_requires_app(self):
        with pytest.raises(RuntimeError):
            SequenceScheduler().start()

    def test_global_scheduler_is_registered_on_app(self, app):
        assert app.extensions['sequence_scheduler'] is get_sequence_scheduler()


class TestTick:

    def test_tick_processes_due_runs(self, scheduler, engine, executor, make_sequence):
        sequence = make_sequence()
        due = engine.enroll('lead-1', sequence.id, now=T0)
        later = engine.enroll('lead-2', sequence.id, now=T0 + timedelta(hours=2))

        summary = scheduler.tick(T0 + timedelta(minutes=5))

        assert summary['processed'] == 1
        assert summary['outcomes'] == {'executed': 1}
        assert summary['conflicts'] == 0
        assert summary['errors'] == 0
        assert _reload(due.id).current_step == 1
        assert _reload(later.id).current_step == 0
        executor.execute.assert_called_once()

    def test_tick_respects_batch_size(self, scheduler, engine, make_sequence):
        sequence = make_sequence()
        for i in range(3):
            engine.enroll(f'lead-{i}', sequence.id, now=T0)
        scheduler.batch_size = 2

        assert scheduler.tick(T0)['processed'] == 2

    def test_claimed_runs_do_not_fill_the_batch(self, scheduler, engine, executor, make_sequence):
        sequence = make_sequence()
        claimed = engine.enroll('lead-1', sequence.id, now=T0)
        waiting = engine.enroll('lead-2', sequence.id, now=T0 + timedelta(minutes=1))
        engine.store.update_run(claimed, claimed.version, in_progress_step=1,
                                in_progress_since=T0 + timedelta(minutes=2))
        scheduler.batch_size = 1

        summary = scheduler.tick(T0 + timedelta(minutes=5))

        assert summary['outcomes'] == {'executed': 1}
        assert _reload(waiting.id).current_step == 1
        assert _reload(claimed.id).current_step == 0

    def test_tick_records_stats(self, scheduler, engine):
        summary = scheduler.tick(T0)

        assert summary['processed'] == 0
        assert summary['tick_at'] == T0.isoformat()
        assert scheduler.total_ticks == 1
        assert scheduler.last_summary == summary
        assert scheduler.last_tick_at is not None

    def test_failing_run_does_not_block_others(self, scheduler, engine, make_sequence):
        sequence = make_sequence()
        first = engine.enroll('lead-1', sequence.id, now=T0)
        second = engine.enroll('lead-2', sequence.id, now=T0)
        real_process = engine.process_due_run

        def flaky(run_id, expected_version=None, now=None):
            if run_id == first.id:
                raise RuntimeError("database hiccup")
            return real_process(run_id, expected_version, now)

        with patch.object(engine, 'process_due_run', side_effect=flaky):
            summary = scheduler.tick(T0)

        assert summary['errors'] == 1
        assert summary['outcomes'] == {'executed': 1}
        assert _reload(second.id).current_step == 1

    def test_tick_failure_is_counted_and_raised(self, scheduler, engine):
        with patch.object(engine, 'find_due_runs', side_effect=RuntimeError("connection refused")):
            with pytest.raises(RuntimeError):
                scheduler.tick(T0)

        assert scheduler.consecutive_failures == 1
        assert scheduler.last_error == "connection refused"
        assert scheduler.health()['healthy'] is False

    @patch('outreach_sequencer.services.scheduler.core.get_notification_service')
    def test_repeated_tick_failures_alert_operators(self, mock_get_service, scheduler, engine):
        with patch.object(engine, 'find_due_runs', side_effect=RuntimeError("connection refused")):
            for _ in range(4):
                with pytest.raises(RuntimeError):
                    scheduler.tick(T0)

        mock_get_service.return_value.send_error_notification.assert_called_once()
        assert mock_get_service.return_value.send_error_notification.call_args[0][0] == 'Scheduler Tick Failed'


class TestDuplicateProtection:

    def test_two_workers_with_same_fetch_execute_once(self, scheduler, engine, executor, make_sequence):
        run = engine.enroll('lead-1', make_sequence().id, now=T0)
        refs = [(run.id, run.version)]

        first = scheduler._process_batch(engine, refs, T0)
        second = scheduler._process_batch(engine, refs, T0)

        assert first['outcomes'] == {'executed': 1}
        assert second['conflicts'] == 1
        assert second['outcomes'] == {}
        assert executor.execute.call_count == 1

    def test_run_changed_after_fetch_is_skipped(self, scheduler, engine, executor, make_sequence):
        run = engine.enroll('lead-1', make_sequence().id, now=T0)
        refs = [(run.id, run.version)]
        engine.stop(run.id)

        summary = scheduler._process_batch(engine, refs, T0)

        assert summary['conflicts'] == 1
        executor.execute.assert_not_called()


class TestLifecycle:

    def test_start_and_stop(self, scheduler, engine):
        scheduler.interval_seconds = 3600

        scheduler.start()
        assert scheduler.running is True
        assert scheduler.thread.is_alive()

        scheduler.stop(timeout=5)
        assert scheduler.running is False
        assert not scheduler.thread.is_alive()

    def test_stop_when_not_running(self, scheduler):
        scheduler.stop()
        assert scheduler.running is False

    def test_start_twice_keeps_one_thread(self, scheduler, engine):
        scheduler.interval_seconds = 3600
        scheduler.start()
        thread = scheduler.thread

        scheduler.start()
        assert scheduler.thread is thread

        scheduler.stop(timeout=5)

    def test_loop_survives_tick_errors(self, scheduler, engine):
        scheduler.interval_seconds = 0.01
        with patch.object(scheduler, 'tick', side_effect=RuntimeError("boom")) as tick:
            scheduler.start()
            time.sleep(0.1)
            scheduler.stop(timeout=5)

        assert tick.call_count >= 2


class TestHealth:

    def test_unhealthy_before_first_tick(self, scheduler):
        health = scheduler.health()
        assert health['healthy'] is False
        assert health['last_tick_at'] is None
        assert health['total_ticks'] == 0

    def test_healthy_after_recent_tick(self, scheduler, engine):
        scheduler.tick(T0)
        health = scheduler.health()
        assert health['healthy'] is True
        assert health['consecutive_failures'] == 0

    def test_stale_tick_is_unhealthy(self, scheduler, engine):
        scheduler.tick(T0)
        scheduler.last_tick_at = datetime.utcnow() - timedelta(seconds=scheduler.interval_seconds * 4)
        assert scheduler.health()['healthy'] is False


def test_worker_single_tick():
    """The standalone worker can run one tick against a fresh app and exit cleanly."""
    from outreach_sequencer.worker import main

    assert main(['--config', 'testing', '--once']) == 0


def test_worker_single_tick_failure_exits_nonzero():
    """A tick that cannot reach the database is logged and reported through the exit code."""
    from outreach_sequencer.worker import main

    with patch.object(SequenceScheduler, 'tick', side_effect=RuntimeError("connection refused")):
        assert main(['--config', 'testing', '--once']) == 1
