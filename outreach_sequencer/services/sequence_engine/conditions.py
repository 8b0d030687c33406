"""
Condition evaluation for steps and sequences.

Pure functions of the step, the lead state and the evaluation instant: no
storage access happens here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from .definitions import Step, StopCondition
from .lead_signals import LeadState
from .timing import BusinessHours, apply_schedule_rules

logger = logging.getLogger(__name__)

REASON_CONDITIONS_MET = 'conditions_met'
REASON_LEAD_REPLIED = 'lead_replied'
REASON_WEEKEND = 'weekend'
REASON_OUTSIDE_BUSINESS_HOURS = 'outside_business_hours'


@dataclass(frozen=True)
class ConditionResult:
    proceed: bool
    reason: str
    reschedule_at: Optional[datetime] = None

    @property
    def skipped(self) -> bool:
        return not self.proceed and self.reschedule_at is None

    @property
    def rescheduled(self) -> bool:
        return self.reschedule_at is not None


class ConditionEvaluator:
    """Evaluates step conditions and sequence stop conditions."""

    def __init__(self, business_hours: Optional[BusinessHours] = None):
        self.business_hours = business_hours or BusinessHours()

    def evaluate(self, step: Step, lead_state: LeadState, now: datetime) -> ConditionResult:
        """
        Decide whether a due step proceeds, is skipped or is rescheduled.

        A reply since enrollment skips an only_if_no_response step outright;
        skipped steps send nothing, so the timing rules are checked afterwards.
        """
        conditions = step.conditions

        if conditions.only_if_no_response and lead_state.has_replied:
            return ConditionResult(proceed=False, reason=REASON_LEAD_REPLIED)

        if conditions.has_schedule_rules:
            allowed_at = apply_schedule_rules(now, conditions, self.business_hours)
            if allowed_at > now:
                reason = REASON_OUTSIDE_BUSINESS_HOURS
                if conditions.skip_weekends and not conditions.only_business_hours:
                    reason = REASON_WEEKEND
                return ConditionResult(proceed=False, reason=reason, reschedule_at=allowed_at)

        return ConditionResult(proceed=True, reason=REASON_CONDITIONS_MET)

    def evaluate_stop(self, stop_conditions: Iterable[StopCondition], lead_state: LeadState) -> Optional[StopCondition]:
        """Return the first matching stop condition, or None."""
        enabled = {StopCondition(condition) for condition in stop_conditions}
        for condition in StopCondition:
            if condition not in enabled:
                continue
            if condition == StopCondition.REPLIED:
                matched = lead_state.has_replied
            else:
                matched = lead_state.flag(condition.value)
            if matched:
                logger.info(f"Stop condition '{condition.value}' matched for lead {lead_state.lead_id}")
                return condition
        return None
