import uuid
from datetime import datetime
from outreach_sequencer.extensions import db
from sqlalchemy import JSON, Index, text

OPEN_STATUSES = ('active', 'paused')
TERMINAL_STATUSES = ('stopped', 'completed')


class LeadSequence(db.Model):
    """One lead's run through one sequence."""
    __tablename__ = 'lead_sequences'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = db.Column(db.String(36), nullable=False, index=True)  # Owned by the lead service
    sequence_id = db.Column(db.String(36), db.ForeignKey('sequences.id'), nullable=False, index=True)
    current_step = db.Column(db.Integer, nullable=False, default=0)  # 0-based index into steps
    status = db.Column(db.String(20), nullable=False, default='active')
    # Status options: active, paused, stopped, completed
    next_due_at = db.Column(db.DateTime, nullable=True)
    steps_completed = db.Column(JSON, nullable=False, default=list)
    stopped_reason = db.Column(db.String(255), nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Definition snapshot taken at enrollment
    steps_snapshot = db.Column(JSON, nullable=False, default=list)
    stop_conditions_snapshot = db.Column(JSON, nullable=False, default=list)

    # Optimistic concurrency and at-most-once execution bookkeeping
    version = db.Column(db.Integer, nullable=False, default=1)
    in_progress_step = db.Column(db.Integer, nullable=True)  # step order claimed by a worker
    in_progress_since = db.Column(db.DateTime, nullable=True)
    failure_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    needs_attention = db.Column(db.Boolean, nullable=False, default=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Only one open run per lead
    __table_args__ = (
        Index(
            'uq_lead_sequences_open_run',
            'lead_id',
            unique=True,
            postgresql_where=text("status IN ('active', 'paused')"),
            sqlite_where=text("status IN ('active', 'paused')")
        ),
        Index('idx_lead_sequences_due', 'status', 'next_due_at'),
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def total_steps(self):
        return len(self.steps_snapshot or [])

    def to_dict(self):
        return {
            'id': str(self.id),
            'lead_id': str(self.lead_id),
            'sequence_id': str(self.sequence_id),
            'current_step': self.current_step,
            'total_steps': self.total_steps,
            'status': self.status,
            'next_due_at': self.next_due_at.isoformat() if self.next_due_at else None,
            'steps_completed': self.steps_completed or [],
            'stopped_reason': self.stopped_reason,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'version': self.version,
            'in_progress_step': self.in_progress_step,
            'failure_count': self.failure_count,
            'last_error': self.last_error,
            'needs_attention': self.needs_attention
        }

    def __repr__(self):
        return f'<LeadSequence {self.id} lead={self.lead_id} status={self.status}>'
