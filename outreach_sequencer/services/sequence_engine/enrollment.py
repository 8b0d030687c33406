"""
Enrollment and manual run transitions.

This module contains functionality for:
- Enrolling a lead into a sequence (one open run per lead)
- Initial due-time calculation
- Pause, resume and stop transitions
- Clearing the needs-attention state of a faulted run
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from outreach_sequencer.models import LeadSequence

from .definitions import RunStatus, parse_sequence, serialize_steps, serialize_stop_conditions
from .exceptions import (
    AlreadyEnrolledError,
    ConflictError,
    InvalidTransitionError,
    RunNotFoundError,
    SequenceInactiveError,
    SequenceNotFoundError,
)
from .storage import RunStore
from .timing import BusinessHours, as_naive_utc, compute_due_at, utcnow

logger = logging.getLogger(__name__)

MAX_TRANSITION_ATTEMPTS = 3
DEFAULT_STOP_REASON = 'stopped_manually'


class EnrollmentManager:
    """Creates runs and applies operator-driven status changes."""

    def __init__(self, store: RunStore, business_hours: Optional[BusinessHours] = None):
        self.store = store
        self.business_hours = business_hours or BusinessHours()

    def enroll(self, lead_id: str, sequence_id: str, now: Optional[datetime] = None,
               actor: Optional[str] = None) -> LeadSequence:
        """
        Enroll a lead into an active sequence.

        The pre-check gives a friendly error for the common case; the partial
        unique index on open runs decides the race between concurrent enrolls.
        """
        now = as_naive_utc(now) if now else utcnow()

        sequence = self.store.get_sequence(sequence_id)
        if sequence is None:
            raise SequenceNotFoundError(sequence_id)
        if not sequence.active:
            raise SequenceInactiveError(sequence_id)

        existing = self.store.get_active_or_paused_run(lead_id)
        if existing is not None:
            raise AlreadyEnrolledError(lead_id, existing.id)

        plan = parse_sequence(sequence.steps, sequence.stop_conditions)
        first_step = plan.steps[0]

        run = LeadSequence(
            lead_id=lead_id,
            sequence_id=sequence.id,
            current_step=0,
            status=RunStatus.ACTIVE.value,
            next_due_at=compute_due_at(now, first_step, self.business_hours),
            steps_completed=[],
            started_at=now,
            steps_snapshot=serialize_steps(plan.steps),
            stop_conditions_snapshot=serialize_stop_conditions(plan.stop_conditions),
            version=1,
            failure_count=0,
            needs_attention=False,
            updated_at=now
        )
        run = self.store.insert_run(run)

        self.store.increment_enrollment_counter(sequence.id)
        self.store.record_activity(
            lead_id,
            'enrolled_in_sequence',
            f"Enrolled in sequence '{sequence.name}'",
            run_id=run.id,
            meta={
                'sequence_id': sequence.id,
                'sequence_name': sequence.name,
                'total_steps': len(plan),
                'next_due_at': run.next_due_at.isoformat(),
                'actor': actor
            }
        )

        logger.info(f"Enrolled lead {lead_id} in sequence {sequence.id}, first step due {run.next_due_at.isoformat()}")
        return run

    def get_lead_run(self, lead_id: str) -> Optional[LeadSequence]:
        """Current active or paused run for a lead, if any."""
        return self.store.get_active_or_paused_run(lead_id)

    def _transition(self, run_id: str, action: str, allowed_from: Iterable[str],
                    build_changes: Callable[[LeadSequence], Dict]) -> LeadSequence:
        allowed_from = tuple(allowed_from)
        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            run = self.store.get_run(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status not in allowed_from:
                raise InvalidTransitionError(run.id, run.status, action)

            try:
                return self.store.update_run(run, run.version, **build_changes(run))
            except ConflictError:
                logger.warning(f"Lost race on run {run_id} during {action} (attempt {attempt}/{MAX_TRANSITION_ATTEMPTS})")

        raise ConflictError(
            f"Could not {action} run {run_id}: concurrent updates did not settle",
            {'run_id': run_id, 'action': action}
        )

    def pause(self, run_id: str, actor: Optional[str] = None) -> LeadSequence:
        run = self._transition(
            run_id, 'pause', (RunStatus.ACTIVE.value,),
            lambda _: {'status': RunStatus.PAUSED.value}
        )
        self.store.record_activity(
            run.lead_id, 'sequence_paused', "Sequence paused",
            run_id=run.id, meta={'current_step': run.current_step, 'actor': actor}
        )
        logger.info(f"Paused run {run.id} at step {run.current_step}")
        return run

    def resume(self, run_id: str, actor: Optional[str] = None) -> LeadSequence:
        """Resume a paused run. ``next_due_at`` is kept; a past due time is simply due now."""
        run = self._transition(
            run_id, 'resume', (RunStatus.PAUSED.value,),
            lambda _: {'status': RunStatus.ACTIVE.value}
        )
        self.store.record_activity(
            run.lead_id, 'sequence_resumed', "Sequence resumed",
            run_id=run.id,
            meta={
                'current_step': run.current_step,
                'next_due_at': run.next_due_at.isoformat() if run.next_due_at else None,
                'actor': actor
            }
        )
        logger.info(f"Resumed run {run.id} at step {run.current_step}")
        return run

    def stop(self, run_id: str, reason: Optional[str] = None, now: Optional[datetime] = None,
             actor: Optional[str] = None) -> LeadSequence:
        now = as_naive_utc(now) if now else utcnow()
        reason = reason or DEFAULT_STOP_REASON

        run = self._transition(
            run_id, 'stop', (RunStatus.ACTIVE.value, RunStatus.PAUSED.value),
            lambda _: {
                'status': RunStatus.STOPPED.value,
                'stopped_reason': reason,
                'completed_at': now
            }
        )
        self.store.record_activity(
            run.lead_id, 'sequence_stopped', f"Sequence stopped: {reason}",
            run_id=run.id, meta={'reason': reason, 'current_step': run.current_step, 'actor': actor}
        )
        logger.info(f"Stopped run {run.id}: {reason}")
        return run

    def clear_attention(self, run_id: str, now: Optional[datetime] = None,
                        actor: Optional[str] = None) -> LeadSequence:
        """
        Acknowledge a faulted run.

        Clears the in-progress marker and failure counter. A non-terminal run
        becomes due now so the current step is attempted again on the next tick.
        """
        now = as_naive_utc(now) if now else utcnow()

        def changes(run):
            if not run.needs_attention:
                raise InvalidTransitionError(run.id, run.status, 'clear attention on')
            values = {
                'needs_attention': False,
                'in_progress_step': None,
                'in_progress_since': None,
                'failure_count': 0
            }
            if not run.is_terminal:
                values['next_due_at'] = now
            return values

        run = self._transition(
            run_id, 'clear attention on',
            (RunStatus.ACTIVE.value, RunStatus.PAUSED.value, RunStatus.STOPPED.value, RunStatus.COMPLETED.value),
            changes
        )
        self.store.record_activity(
            run.lead_id, 'sequence_attention_cleared', "Needs-attention state cleared",
            run_id=run.id, meta={'status': run.status, 'actor': actor}
        )
        logger.info(f"Cleared needs-attention on run {run.id}")
        return run
