from datetime import datetime
from outreach_sequencer.extensions import db

FLAG_FIELDS = ('unsubscribed', 'do_not_contact', 'converted', 'meeting_scheduled')


class LeadSignal(db.Model):
    """Read model of lead state pushed by the lead service."""
    __tablename__ = 'lead_signals'

    lead_id = db.Column(db.String(36), primary_key=True)
    unsubscribed = db.Column(db.Boolean, nullable=False, default=False)
    do_not_contact = db.Column(db.Boolean, nullable=False, default=False)
    converted = db.Column(db.Boolean, nullable=False, default=False)
    meeting_scheduled = db.Column(db.Boolean, nullable=False, default=False)
    last_reply_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def flags(self):
        return {field: bool(getattr(self, field)) for field in FLAG_FIELDS}

    def to_dict(self):
        data = {'lead_id': str(self.lead_id)}
        data.update(self.flags())
        data['last_reply_at'] = self.last_reply_at.isoformat() if self.last_reply_at else None
        data['updated_at'] = self.updated_at.isoformat() if self.updated_at else None
        return data

    def __repr__(self):
        return f'<LeadSignal {self.lead_id}>'
