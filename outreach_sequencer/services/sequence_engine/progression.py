"""
Step progression state machine.

This module contains functionality for:
- Deciding whether a due run stops, reschedules, skips or executes
- At-most-once step execution through an in-progress marker
- Advancing runs and computing the next due time
- Execution failure accounting and needs-attention escalation
- Recovery of runs whose worker died mid-execution

Every run write is a compare-and-swap on the run version; no lock is held
while the action executor is running.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from outreach_sequencer.models import LeadSequence

from .action_executor import ActionExecutor, ActionResult
from .conditions import ConditionEvaluator
from .definitions import RunStatus, SequencePlan, Step, StopCondition, parse_sequence
from .exceptions import ActionExecutionError, ConflictError, RunNotFoundError
from .lead_signals import LeadSignalProvider
from .storage import RunStore
from .timing import BusinessHours, as_naive_utc, compute_due_at, utcnow

logger = logging.getLogger(__name__)

OUTCOME_NOT_DUE = 'not_due'
OUTCOME_STOPPED = 'stopped'
OUTCOME_RESCHEDULED = 'rescheduled'
OUTCOME_SKIPPED = 'skipped'
OUTCOME_EXECUTED = 'executed'
OUTCOME_COMPLETED = 'completed'
OUTCOME_FAILED = 'failed'
OUTCOME_EXHAUSTED = 'exhausted'
OUTCOME_IN_FLIGHT = 'in_flight'
OUTCOME_FAULTED = 'faulted'
OUTCOME_ABORTED = 'aborted'

RESULT_SUCCESS = 'success'
RESULT_SKIPPED = 'skipped'

EXHAUSTED_REASON = 'execution_failed_exhausted'

RECOVERY_FAULT = 'fault'
RECOVERY_RETRY = 'retry'

MAX_FINALIZE_ATTEMPTS = 3


@dataclass
class StepOutcome:
    run_id: str
    outcome: str
    step_order: Optional[int] = None
    reason: Optional[str] = None
    next_due_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['next_due_at'] = self.next_due_at.isoformat() if self.next_due_at else None
        return data


class ProgressionEngine:
    """Drives one due run forward by at most one step per call."""

    def __init__(self, store: RunStore, signals: LeadSignalProvider, executor: ActionExecutor,
                 business_hours: Optional[BusinessHours] = None, max_attempts: int = 3,
                 in_progress_timeout: int = 900, in_flight_recovery: str = RECOVERY_FAULT,
                 notifier=None):
        self.store = store
        self.signals = signals
        self.executor = executor
        self.business_hours = business_hours or BusinessHours()
        self.evaluator = ConditionEvaluator(self.business_hours)
        self.max_attempts = max(1, max_attempts)
        self.in_progress_timeout = timedelta(seconds=in_progress_timeout)
        self.in_flight_recovery = in_flight_recovery
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def process_due_run(self, run_id: str, expected_version: Optional[int] = None,
                        now: Optional[datetime] = None) -> StepOutcome:
        """
        Run one transition for a due run.

        ``expected_version`` is the version the caller saw when it fetched the
        run; if the row has moved on since, ConflictError is raised and nothing
        is executed.
        """
        now = as_naive_utc(now) if now else utcnow()

        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if expected_version is not None and run.version != expected_version:
            raise ConflictError(
                f"Run {run_id} changed since it was fetched (expected version {expected_version}, found {run.version})",
                {'run_id': run_id, 'expected_version': expected_version}
            )

        if not self._is_due(run, now):
            return StepOutcome(run.id, OUTCOME_NOT_DUE, next_due_at=run.next_due_at)

        if run.in_progress_step is not None:
            return self._handle_in_flight(run, now)

        plan = self._load_plan(run)
        lead_state = self.signals.load_state(run.lead_id, run.started_at)

        matched = self.evaluator.evaluate_stop(plan.stop_conditions, lead_state)
        if matched is not None:
            return self._stop_for_condition(run, matched, now)

        step = plan.step_at(run.current_step)
        if step is None:
            logger.warning(f"Run {run.id} is active past its last step; completing it")
            run = self.store.update_run(run, run.version, **self._completion_changes(now))
            self._on_completed(run)
            return StepOutcome(run.id, OUTCOME_COMPLETED)

        result = self.evaluator.evaluate(step, lead_state, now)

        if result.rescheduled:
            run = self.store.update_run(run, run.version, next_due_at=result.reschedule_at)
            logger.info(f"Run {run.id} step {step.order} rescheduled to {result.reschedule_at.isoformat()} ({result.reason})")
            return StepOutcome(run.id, OUTCOME_RESCHEDULED, step.order, result.reason, run.next_due_at)

        if result.skipped:
            return self._skip_step(run, plan, step, result.reason, now)

        return self._execute_step(run, plan, step, now)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_due(run: LeadSequence, now: datetime) -> bool:
        return (
            run.status == RunStatus.ACTIVE.value
            and not run.needs_attention
            and run.next_due_at is not None
            and run.next_due_at <= now
        )

    @staticmethod
    def _load_plan(run: LeadSequence) -> SequencePlan:
        return parse_sequence(run.steps_snapshot, run.stop_conditions_snapshot)

    def _completion_changes(self, now: datetime) -> Dict[str, Any]:
        return {
            'status': RunStatus.COMPLETED.value,
            'completed_at': now,
            'next_due_at': None
        }

    def _advance_changes(self, run: LeadSequence, plan: SequencePlan, entry: Dict[str, Any],
                         now: datetime) -> Dict[str, Any]:
        """Append a history entry and move to the next step, or complete the run."""
        next_index = run.current_step + 1
        changes = {
            'current_step': next_index,
            'steps_completed': list(run.steps_completed or []) + [entry]
        }
        if next_index >= len(plan):
            changes.update(self._completion_changes(now))
        else:
            changes['next_due_at'] = compute_due_at(now, plan.steps[next_index], self.business_hours)
        return changes

    @staticmethod
    def _history_entry(step: Step, result: str, now: datetime, provider_ref: Optional[str] = None,
                       notes: Optional[str] = None) -> Dict[str, Any]:
        entry = {
            'step_order': step.order,
            'action_type': step.action_type.value,
            'executed_at': now.isoformat(),
            'result': result
        }
        if provider_ref:
            entry['provider_ref'] = provider_ref
        if notes:
            entry['notes'] = notes
        return entry

    def _sequence_name(self, run: LeadSequence) -> str:
        sequence = self.store.get_sequence(run.sequence_id)
        return sequence.name if sequence else run.sequence_id

    def _notify_attention(self, run: LeadSequence, reason: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send_attention_notification(run, self._sequence_name(run), reason)
        except Exception as e:
            logger.error(f"Failed to send attention notification for run {run.id}: {str(e)}")

    def _on_completed(self, run: LeadSequence) -> None:
        self.store.increment_completed_counter(run.sequence_id)
        self.store.record_activity(
            run.lead_id, 'sequence_completed', "Sequence completed",
            run_id=run.id, meta={'sequence_id': run.sequence_id, 'steps': len(run.steps_completed or [])}
        )
        logger.info(f"Run {run.id} completed")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _stop_for_condition(self, run: LeadSequence, condition: StopCondition, now: datetime) -> StepOutcome:
        run = self.store.update_run(
            run, run.version,
            status=RunStatus.STOPPED.value,
            stopped_reason=condition.value,
            completed_at=now
        )
        if condition == StopCondition.CONVERTED:
            self.store.increment_converted_counter(run.sequence_id)

        self.store.record_activity(
            run.lead_id, 'sequence_stopped', f"Sequence stopped: {condition.value}",
            run_id=run.id, meta={'reason': condition.value, 'current_step': run.current_step}
        )
        logger.info(f"Run {run.id} stopped by condition '{condition.value}' at step {run.current_step}")
        return StepOutcome(run.id, OUTCOME_STOPPED, reason=condition.value)

    def _skip_step(self, run: LeadSequence, plan: SequencePlan, step: Step, reason: str,
                   now: datetime) -> StepOutcome:
        entry = self._history_entry(step, RESULT_SKIPPED, now, notes=reason)
        run = self.store.update_run(run, run.version, **self._advance_changes(run, plan, entry, now))

        self.store.record_activity(
            run.lead_id, 'sequence_step_skipped', f"Step {step.order} ({step.action_type.value}) skipped: {reason}",
            run_id=run.id, meta={'step_order': step.order, 'reason': reason}
        )
        logger.info(f"Run {run.id} skipped step {step.order}: {reason}")

        if run.status == RunStatus.COMPLETED.value:
            self._on_completed(run)
            return StepOutcome(run.id, OUTCOME_COMPLETED, step.order, reason)
        return StepOutcome(run.id, OUTCOME_SKIPPED, step.order, reason, run.next_due_at)

    def _execute_step(self, run: LeadSequence, plan: SequencePlan, step: Step, now: datetime) -> StepOutcome:
        # Claim: commits the marker before any external call
        run = self.store.update_run(run, run.version, in_progress_step=step.order, in_progress_since=now)
        claimed_version = run.version

        try:
            result = self.executor.execute(
                run.lead_id,
                step.action_type.value,
                step.action_config.to_dict(),
                idempotency_key=f"{run.id}:{step.order}"
            )
        except ActionExecutionError as e:
            result = ActionResult(success=False, error=e.message)
        except Exception as e:
            logger.error(f"Unexpected executor error on run {run.id} step {step.order}: {str(e)}")
            result = ActionResult(success=False, error=str(e))

        if result.success:
            return self._finalize_success(run, claimed_version, plan, step, result, now)
        return self._finalize_failure(run, claimed_version, step, result.error or 'Unknown error', now)

    def _reread_after_conflict(self, run: LeadSequence, step: Step) -> Optional[LeadSequence]:
        """Re-read a run after a lost finalize; None means the step must not be finalized."""
        fresh = self.store.get_run(run.id)
        if fresh is None:
            return None
        if fresh.is_terminal:
            logger.warning(f"Run {run.id} became {fresh.status} while step {step.order} was executing")
            return None
        if fresh.in_progress_step != step.order or fresh.current_step != step.order - 1:
            logger.warning(f"Run {run.id} step {step.order} was finalized elsewhere")
            return None
        return fresh

    def _finalize_success(self, run: LeadSequence, expected_version: int, plan: SequencePlan, step: Step,
                          result: ActionResult, now: datetime) -> StepOutcome:
        entry = self._history_entry(step, RESULT_SUCCESS, now, provider_ref=result.provider_ref)
        audit_meta = {'step_order': step.order, 'action_type': step.action_type.value, 'provider_ref': result.provider_ref}

        for attempt in range(1, MAX_FINALIZE_ATTEMPTS + 1):
            changes = self._advance_changes(run, plan, entry, now)
            changes.update(in_progress_step=None, in_progress_since=None, failure_count=0, last_error=None)
            try:
                run = self.store.update_run(run, expected_version, **changes)
                break
            except ConflictError:
                logger.warning(f"Finalize of run {run.id} step {step.order} lost a race (attempt {attempt})")
                fresh = self._reread_after_conflict(run, step)
                if fresh is None:
                    self.store.record_activity(
                        run.lead_id, 'sequence_step_executed',
                        f"Step {step.order} ({step.action_type.value}) executed after the run changed state",
                        run_id=run.id, meta=dict(audit_meta, finalized=False)
                    )
                    return StepOutcome(run.id, OUTCOME_ABORTED, step.order, 'run_changed_during_execution')
                run, expected_version = fresh, fresh.version
        else:
            raise ConflictError(
                f"Could not finalize run {run.id} step {step.order}: concurrent updates did not settle",
                {'run_id': run.id, 'step_order': step.order}
            )

        self.store.record_activity(
            run.lead_id, 'sequence_step_executed', f"Step {step.order} ({step.action_type.value}) executed",
            run_id=run.id, meta=audit_meta
        )
        logger.info(f"Run {run.id} executed step {step.order} ({step.action_type.value})")

        if run.status == RunStatus.COMPLETED.value:
            self._on_completed(run)
            return StepOutcome(run.id, OUTCOME_COMPLETED, step.order)
        return StepOutcome(run.id, OUTCOME_EXECUTED, step.order, next_due_at=run.next_due_at)

    def _finalize_failure(self, run: LeadSequence, expected_version: int, step: Step, error: str,
                          now: datetime) -> StepOutcome:
        for attempt in range(1, MAX_FINALIZE_ATTEMPTS + 1):
            failure_count = (run.failure_count or 0) + 1
            exhausted = failure_count >= self.max_attempts
            changes = {
                'in_progress_step': None,
                'in_progress_since': None,
                'failure_count': failure_count,
                'last_error': error
            }
            if exhausted:
                changes.update(
                    status=RunStatus.STOPPED.value,
                    stopped_reason=EXHAUSTED_REASON,
                    completed_at=now,
                    needs_attention=True
                )
            try:
                run = self.store.update_run(run, expected_version, **changes)
                break
            except ConflictError:
                logger.warning(f"Failure bookkeeping for run {run.id} lost a race (attempt {attempt})")
                fresh = self._reread_after_conflict(run, step)
                if fresh is None:
                    self.store.record_activity(
                        run.lead_id, 'sequence_step_failed', f"Step {step.order} failed: {error}",
                        run_id=run.id, meta={'step_order': step.order, 'error': error, 'finalized': False}
                    )
                    return StepOutcome(run.id, OUTCOME_ABORTED, step.order, 'run_changed_during_execution')
                run, expected_version = fresh, fresh.version
        else:
            raise ConflictError(
                f"Could not record failure for run {run.id} step {step.order}",
                {'run_id': run.id, 'step_order': step.order}
            )

        self.store.record_activity(
            run.lead_id, 'sequence_step_failed', f"Step {step.order} failed: {error}",
            run_id=run.id, meta={'step_order': step.order, 'error': error, 'failure_count': run.failure_count}
        )

        if exhausted:
            logger.error(f"Run {run.id} stopped after {run.failure_count} failed attempts on step {step.order}: {error}")
            self.store.record_activity(
                run.lead_id, 'sequence_stopped', f"Sequence stopped: {EXHAUSTED_REASON}",
                run_id=run.id, meta={'reason': EXHAUSTED_REASON, 'current_step': run.current_step}
            )
            self._notify_attention(run, f"Step {step.order} failed {run.failure_count} times: {error}")
            return StepOutcome(run.id, OUTCOME_EXHAUSTED, step.order, EXHAUSTED_REASON)

        logger.warning(f"Run {run.id} step {step.order} failed (attempt {run.failure_count}/{self.max_attempts}): {error}")
        return StepOutcome(run.id, OUTCOME_FAILED, step.order, error, run.next_due_at)

    def _handle_in_flight(self, run: LeadSequence, now: datetime) -> StepOutcome:
        """A marker is set: either another worker is mid-call or one died mid-call."""
        step_order = run.in_progress_step
        since = run.in_progress_since

        if since is not None and now - since < self.in_progress_timeout:
            return StepOutcome(run.id, OUTCOME_IN_FLIGHT, step_order)

        if self.in_flight_recovery == RECOVERY_RETRY:
            run = self.store.update_run(run, run.version, in_progress_step=None, in_progress_since=None)
            self.store.record_activity(
                run.lead_id, 'sequence_step_recovered',
                f"Step {step_order} was interrupted mid-execution; retrying",
                run_id=run.id, meta={'step_order': step_order}
            )
            logger.warning(f"Run {run.id} step {step_order} interrupted; clearing marker and retrying")
            return self.process_due_run(run.id, run.version, now)

        error = f"Step {step_order} was interrupted mid-execution; delivery state unknown"
        run = self.store.update_run(run, run.version, needs_attention=True, last_error=error)
        self.store.record_activity(
            run.lead_id, 'sequence_step_faulted', error,
            run_id=run.id, meta={'step_order': step_order, 'in_progress_since': since.isoformat() if since else None}
        )
        logger.error(f"Run {run.id} faulted: {error}")
        self._notify_attention(run, error)
        return StepOutcome(run.id, OUTCOME_FAULTED, step_order, error)
