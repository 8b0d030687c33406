import uuid
from datetime import datetime
from outreach_sequencer.extensions import db
from sqlalchemy import JSON


class Activity(db.Model):
    __tablename__ = 'activities'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = db.Column(db.String(36), nullable=False, index=True)
    run_id = db.Column(db.String(36), nullable=True, index=True)
    activity_type = db.Column(db.String(50), nullable=False)
    # Activity types: enrolled_in_sequence, sequence_paused, sequence_resumed, sequence_stopped,
    # sequence_step_executed, sequence_step_skipped, sequence_step_failed, sequence_completed, etc.
    description = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    meta_json = db.Column(JSON, nullable=True)

    def to_dict(self):
        return {
            'id': str(self.id),
            'lead_id': str(self.lead_id),
            'run_id': str(self.run_id) if self.run_id else None,
            'activity_type': self.activity_type,
            'description': self.description,
            'timestamp': self.timestamp.isoformat(),
            'meta_json': self.meta_json
        }

    def __repr__(self):
        return f'<Activity {self.activity_type} for Lead {self.lead_id}>'
