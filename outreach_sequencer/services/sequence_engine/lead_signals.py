"""
Read-only lead signals consumed by the condition evaluator.

Lead records belong to the lead service. The engine only needs two answers
about a lead: has it replied since a given moment, and which of its
do-not-continue flags are set.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from outreach_sequencer.extensions import db
from outreach_sequencer.models import LeadSignal
from outreach_sequencer.models.lead_signal import FLAG_FIELDS

from .timing import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeadState:
    lead_id: str
    has_replied: bool = False
    flags: Dict[str, bool] = field(default_factory=dict)

    def flag(self, name: str) -> bool:
        return bool(self.flags.get(name, False))


class LeadSignalProvider:
    """Interface over externally-owned lead state."""

    def has_replied_since(self, lead_id: str, since: datetime) -> bool:
        raise NotImplementedError

    def lead_flags(self, lead_id: str) -> Dict[str, bool]:
        raise NotImplementedError

    def load_state(self, lead_id: str, since: datetime) -> LeadState:
        return LeadState(
            lead_id=lead_id,
            has_replied=self.has_replied_since(lead_id, since),
            flags=self.lead_flags(lead_id)
        )


class SqlLeadSignalProvider(LeadSignalProvider):
    """Lead signals backed by the lead_signals table the lead service keeps current."""

    def _get(self, lead_id: str) -> Optional[LeadSignal]:
        return db.session.get(LeadSignal, lead_id)

    def has_replied_since(self, lead_id: str, since: datetime) -> bool:
        signal = self._get(lead_id)
        if signal is None or signal.last_reply_at is None:
            return False
        return signal.last_reply_at >= since

    def lead_flags(self, lead_id: str) -> Dict[str, bool]:
        signal = self._get(lead_id)
        if signal is None:
            return {name: False for name in FLAG_FIELDS}
        return signal.flags()

    def _get_or_create(self, lead_id: str) -> LeadSignal:
        signal = self._get(lead_id)
        if signal is None:
            signal = LeadSignal(lead_id=lead_id)
            db.session.add(signal)
        return signal

    def record_reply(self, lead_id: str, replied_at: Optional[datetime] = None) -> LeadSignal:
        """Record an inbound reply from a lead."""
        replied_at = replied_at or utcnow()
        signal = self._get_or_create(lead_id)
        if signal.last_reply_at is None or replied_at > signal.last_reply_at:
            signal.last_reply_at = replied_at
        signal.updated_at = utcnow()
        db.session.commit()
        logger.info(f"Recorded reply for lead {lead_id} at {replied_at.isoformat()}")
        return signal

    def update_flags(self, lead_id: str, **flags) -> LeadSignal:
        """Update one or more lead flags (unsubscribed, do_not_contact, converted, meeting_scheduled)."""
        unknown = sorted(set(flags) - set(FLAG_FIELDS))
        if unknown:
            raise ValueError(f"Unknown lead flags: {', '.join(unknown)}")

        signal = self._get_or_create(lead_id)
        for name, value in flags.items():
            setattr(signal, name, bool(value))
        signal.updated_at = utcnow()
        db.session.commit()
        logger.info(f"Updated flags for lead {lead_id}: {flags}")
        return signal
