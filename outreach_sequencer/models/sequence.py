import uuid
from datetime import datetime
from outreach_sequencer.extensions import db
from sqlalchemy import JSON

DEFAULT_STOP_CONDITIONS = ['replied', 'meeting_scheduled', 'do_not_contact']


class SequenceDefinition(db.Model):
    __tablename__ = 'sequences'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = db.Column(db.String(36), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    steps = db.Column(JSON, nullable=False, default=list)  # Ordered step definitions
    stop_conditions = db.Column(JSON, nullable=False, default=lambda: list(DEFAULT_STOP_CONDITIONS))
    eligibility_tags = db.Column(JSON, nullable=False, default=list)  # Formation/category tag ids
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    total_enrolled = db.Column(db.Integer, nullable=False, default=0)
    total_completed = db.Column(db.Integer, nullable=False, default=0)
    total_converted = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    runs = db.relationship('LeadSequence', backref='sequence', lazy=True)

    def has_tag(self, tag_id: str) -> bool:
        return tag_id in (self.eligibility_tags or [])

    def to_dict(self):
        return {
            'id': str(self.id),
            'team_id': str(self.team_id),
            'name': self.name,
            'description': self.description,
            'steps': self.steps or [],
            'stop_conditions': self.stop_conditions or [],
            'eligibility_tags': self.eligibility_tags or [],
            'active': self.active,
            'total_enrolled': self.total_enrolled,
            'total_completed': self.total_completed,
            'total_converted': self.total_converted,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<SequenceDefinition {self.name}>'
