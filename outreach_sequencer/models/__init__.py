# Import db from extensions to use the same instance
from outreach_sequencer.extensions import db

# Import all models to ensure they are registered with SQLAlchemy
from outreach_sequencer.models.sequence import SequenceDefinition
from outreach_sequencer.models.lead_sequence import LeadSequence
from outreach_sequencer.models.activity import Activity
from outreach_sequencer.models.lead_signal import LeadSignal

__all__ = ['db', 'SequenceDefinition', 'LeadSequence', 'Activity', 'LeadSignal']
