"""
Run storage for the sequence engine.

This module contains functionality for:
- Loading sequences and runs
- Inserting runs under the one-open-run-per-lead guarantee
- Compare-and-swap run updates on the ``version`` column
- Due-run queries for the scheduler
- Best-effort audit events and sequence counters
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from outreach_sequencer.extensions import db
from outreach_sequencer.models import Activity, LeadSequence, SequenceDefinition
from outreach_sequencer.models.lead_sequence import OPEN_STATUSES

from .definitions import RunStatus, StopCondition
from .exceptions import AlreadyEnrolledError, ConflictError
from .timing import utcnow

logger = logging.getLogger(__name__)


class RunStore:
    """Storage interface consumed by the engine."""

    def get_sequence(self, sequence_id: str) -> Optional[SequenceDefinition]:
        raise NotImplementedError

    def find_eligible_sequences(self, team_id: str, tag_id: str) -> List[SequenceDefinition]:
        raise NotImplementedError

    def get_run(self, run_id: str) -> Optional[LeadSequence]:
        raise NotImplementedError

    def get_active_or_paused_run(self, lead_id: str) -> Optional[LeadSequence]:
        raise NotImplementedError

    def insert_run(self, run: LeadSequence) -> LeadSequence:
        raise NotImplementedError

    def update_run(self, run: LeadSequence, expected_version: int, **changes) -> LeadSequence:
        raise NotImplementedError

    def find_active_runs_due_before(self, ts: datetime, limit: int = 100,
                                    claimed_before: Optional[datetime] = None) -> List[LeadSequence]:
        raise NotImplementedError

    def record_activity(self, lead_id: str, activity_type: str, description: str,
                        run_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError

    def increment_enrollment_counter(self, sequence_id: str) -> None:
        raise NotImplementedError

    def increment_completed_counter(self, sequence_id: str) -> None:
        raise NotImplementedError

    def increment_converted_counter(self, sequence_id: str) -> None:
        raise NotImplementedError


class SqlRunStore(RunStore):
    """RunStore on the shared Flask-SQLAlchemy session."""

    def get_sequence(self, sequence_id: str) -> Optional[SequenceDefinition]:
        return db.session.get(SequenceDefinition, sequence_id)

    def find_eligible_sequences(self, team_id: str, tag_id: str) -> List[SequenceDefinition]:
        """Active sequences of a team tagged with ``tag_id``, oldest first."""
        sequences = SequenceDefinition.query.filter_by(
            team_id=team_id,
            active=True
        ).order_by(SequenceDefinition.created_at.asc(), SequenceDefinition.id.asc()).all()

        # JSON containment is not portable across backends; filter in Python
        return [sequence for sequence in sequences if sequence.has_tag(tag_id)]

    def get_run(self, run_id: str) -> Optional[LeadSequence]:
        return db.session.get(LeadSequence, run_id)

    def get_active_or_paused_run(self, lead_id: str) -> Optional[LeadSequence]:
        return LeadSequence.query.filter(
            LeadSequence.lead_id == lead_id,
            LeadSequence.status.in_(OPEN_STATUSES)
        ).first()

    def insert_run(self, run: LeadSequence) -> LeadSequence:
        """Insert a new run; the partial unique index rejects a second open run."""
        try:
            db.session.add(run)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.get_active_or_paused_run(run.lead_id)
            logger.warning(f"Concurrent enrollment rejected for lead {run.lead_id}")
            raise AlreadyEnrolledError(run.lead_id, existing.id if existing else None)
        return run

    def update_run(self, run: LeadSequence, expected_version: int, **changes) -> LeadSequence:
        """
        Write ``changes`` only if the stored version still equals ``expected_version``.

        The version is bumped on every successful write. A lost race rolls
        back and raises ConflictError; the caller re-reads and decides.
        """
        values = dict(changes)
        values['version'] = expected_version + 1
        values['updated_at'] = utcnow()

        try:
            updated = LeadSequence.query.filter(
                LeadSequence.id == run.id,
                LeadSequence.version == expected_version
            ).update(values, synchronize_session=False)
        except SQLAlchemyError:
            db.session.rollback()
            raise

        if updated == 0:
            db.session.rollback()
            raise ConflictError(
                f"Run {run.id} was modified concurrently (expected version {expected_version})",
                {'run_id': run.id, 'expected_version': expected_version}
            )

        db.session.commit()
        db.session.refresh(run)
        return run

    def find_active_runs_due_before(self, ts: datetime, limit: int = 100,
                                    claimed_before: Optional[datetime] = None) -> List[LeadSequence]:
        """
        Active runs due at or before ``ts``, earliest first.

        With ``claimed_before``, runs whose in-progress marker was set after
        that moment are left out so live claims do not fill the batch.
        """
        query = LeadSequence.query.filter(
            LeadSequence.status == RunStatus.ACTIVE.value,
            LeadSequence.next_due_at.isnot(None),
            LeadSequence.next_due_at <= ts,
            LeadSequence.needs_attention.is_(False)
        )
        if claimed_before is not None:
            query = query.filter(or_(
                LeadSequence.in_progress_step.is_(None),
                LeadSequence.in_progress_since.is_(None),
                LeadSequence.in_progress_since <= claimed_before
            ))
        return query.order_by(LeadSequence.next_due_at.asc()).limit(limit).all()

    def find_runs_needing_attention(self, limit: int = 100) -> List[LeadSequence]:
        return LeadSequence.query.filter(
            LeadSequence.needs_attention.is_(True)
        ).order_by(LeadSequence.updated_at.desc()).limit(limit).all()

    def record_activity(self, lead_id: str, activity_type: str, description: str,
                        run_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> None:
        """Append an audit event. Failures are logged and swallowed."""
        try:
            activity = Activity(
                lead_id=lead_id,
                run_id=run_id,
                activity_type=activity_type,
                description=description,
                timestamp=utcnow(),
                meta_json=meta or {}
            )
            db.session.add(activity)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to record activity '{activity_type}' for lead {lead_id}: {str(e)}")

    def _increment(self, sequence_id: str, column) -> None:
        try:
            SequenceDefinition.query.filter_by(id=sequence_id).update(
                {column: column + 1},
                synchronize_session=False
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to increment {column.key} for sequence {sequence_id}: {str(e)}")

    def increment_enrollment_counter(self, sequence_id: str) -> None:
        self._increment(sequence_id, SequenceDefinition.total_enrolled)

    def increment_completed_counter(self, sequence_id: str) -> None:
        self._increment(sequence_id, SequenceDefinition.total_completed)

    def increment_converted_counter(self, sequence_id: str) -> None:
        self._increment(sequence_id, SequenceDefinition.total_converted)

    def sequence_stats(self, sequence_id: str) -> Dict[str, Any]:
        """Run counts by status plus completion and conversion rates."""
        rows = db.session.query(
            LeadSequence.status,
            func.count(LeadSequence.id)
        ).filter(LeadSequence.sequence_id == sequence_id).group_by(LeadSequence.status).all()
        by_status = {status: count for status, count in rows}

        converted = LeadSequence.query.filter_by(
            sequence_id=sequence_id,
            stopped_reason=StopCondition.CONVERTED.value
        ).count()
        attention = LeadSequence.query.filter_by(
            sequence_id=sequence_id,
            needs_attention=True
        ).count()

        enrolled = sum(by_status.values())
        completed = by_status.get(RunStatus.COMPLETED.value, 0)

        return {
            'sequence_id': sequence_id,
            'enrolled': enrolled,
            'active': by_status.get(RunStatus.ACTIVE.value, 0),
            'paused': by_status.get(RunStatus.PAUSED.value, 0),
            'completed': completed,
            'stopped': by_status.get(RunStatus.STOPPED.value, 0),
            'converted': converted,
            'needs_attention': attention,
            'completion_rate': round(completed / enrolled * 100, 2) if enrolled else 0.0,
            'conversion_rate': round(converted / enrolled * 100, 2) if enrolled else 0.0
        }

    def count_open_runs(self, sequence_id: str) -> int:
        return LeadSequence.query.filter(
            LeadSequence.sequence_id == sequence_id,
            LeadSequence.status.in_(OPEN_STATUSES)
        ).count()

    def leads_with_open_runs(self, lead_ids: List[str]) -> Set[str]:
        """The subset of ``lead_ids`` currently enrolled in an active or paused run."""
        if not lead_ids:
            return set()
        rows = db.session.query(LeadSequence.lead_id).filter(
            LeadSequence.lead_id.in_(lead_ids),
            LeadSequence.status.in_(OPEN_STATUSES)
        ).all()
        return {lead_id for (lead_id,) in rows}

    def delete_sequence(self, sequence_id: str) -> int:
        """
        Delete a sequence and its finished runs; returns the number of runs removed.

        Callers check ``count_open_runs`` first. Activities keep their
        ``run_id`` as history.
        """
        try:
            removed = LeadSequence.query.filter(
                LeadSequence.sequence_id == sequence_id,
                LeadSequence.status.notin_(OPEN_STATUSES)
            ).delete(synchronize_session=False)
            SequenceDefinition.query.filter_by(id=sequence_id).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return removed
