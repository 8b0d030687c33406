import logging
from datetime import datetime
from typing import Optional

from outreach_sequencer.models import LeadSequence

from .enrollment import EnrollmentManager
from .exceptions import AlreadyEnrolledError
from .storage import RunStore

logger = logging.getLogger(__name__)


class AutoMatchEnroller:
    """Enrolls newly tagged leads into the first matching sequence of their team."""

    def __init__(self, store: RunStore, enrollment: EnrollmentManager):
        self.store = store
        self.enrollment = enrollment

    def on_lead_tagged(self, lead_id: str, tag_id: str, team_id: str,
                       now: Optional[datetime] = None) -> Optional[LeadSequence]:
        """Return the new run, or None when nothing matched or the lead is already enrolled."""
        existing = self.store.get_active_or_paused_run(lead_id)
        if existing is not None:
            logger.info(f"Lead {lead_id} already has run {existing.id}; skipping auto-match for tag {tag_id}")
            return None

        candidates = self.store.find_eligible_sequences(team_id, tag_id)
        if not candidates:
            logger.info(f"No active sequence of team {team_id} matches tag {tag_id}")
            return None

        sequence = candidates[0]
        try:
            run = self.enrollment.enroll(lead_id, sequence.id, now=now, actor='auto_match')
        except AlreadyEnrolledError:
            logger.info(f"Lead {lead_id} was enrolled concurrently; auto-match is a no-op")
            return None

        logger.info(f"Auto-matched lead {lead_id} (tag {tag_id}) to sequence {sequence.id}")
        return run
