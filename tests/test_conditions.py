"""
Unit tests for the condition evaluator.
"""

from datetime import datetime

from outreach_sequencer.services.sequence_engine.conditions import (
    REASON_CONDITIONS_MET,
    REASON_LEAD_REPLIED,
    REASON_OUTSIDE_BUSINESS_HOURS,
    REASON_WEEKEND,
    ConditionEvaluator
)
from outreach_sequencer.services.sequence_engine.definitions import StopCondition, parse_sequence
from outreach_sequencer.services.sequence_engine.lead_signals import LeadState

evaluator = ConditionEvaluator()


def _step(**conditions):
    return parse_sequence([{
        'order': 1,
        'action_type': 'linkedin',
        'action_config': {'message': 'Hi'},
        'conditions': conditions
    }]).steps[0]


class TestStepConditions:

    def test_no_conditions_proceed(self):
        result = evaluator.evaluate(_step(), LeadState('lead-1'), datetime(2024, 1, 6, 3, 0))
        assert result.proceed
        assert result.reason == REASON_CONDITIONS_MET

    def test_reply_skips_only_if_no_response_step(self):
        result = evaluator.evaluate(
            _step(only_if_no_response=True),
            LeadState('lead-1', has_replied=True),
            datetime(2024, 1, 2, 10, 0)
        )
        assert result.skipped
        assert not result.rescheduled
        assert result.reason == REASON_LEAD_REPLIED

    def test_no_reply_proceeds(self):
        result = evaluator.evaluate(
            _step(only_if_no_response=True),
            LeadState('lead-1', has_replied=False),
            datetime(2024, 1, 2, 10, 0)
        )
        assert result.proceed

    def test_outside_business_hours_reschedules(self):
        result = evaluator.evaluate(_step(only_business_hours=True), LeadState('lead-1'), datetime(2024, 1, 2, 20, 0))
        assert result.rescheduled
        assert not result.skipped
        assert result.reschedule_at == datetime(2024, 1, 3, 9, 0)
        assert result.reason == REASON_OUTSIDE_BUSINESS_HOURS

    def test_weekend_reschedules_to_monday(self):
        result = evaluator.evaluate(_step(skip_weekends=True), LeadState('lead-1'), datetime(2024, 1, 6, 11, 0))
        assert result.reschedule_at == datetime(2024, 1, 8, 11, 0)
        assert result.reason == REASON_WEEKEND

    def test_skip_wins_over_reschedule(self):
        result = evaluator.evaluate(
            _step(only_if_no_response=True, skip_weekends=True),
            LeadState('lead-1', has_replied=True),
            datetime(2024, 1, 6, 11, 0)
        )
        assert result.skipped
        assert result.reschedule_at is None


class TestStopConditions:

    def test_no_match(self):
        state = LeadState('lead-1', flags={'unsubscribed': False})
        assert evaluator.evaluate_stop({StopCondition.UNSUBSCRIBED, StopCondition.REPLIED}, state) is None

    def test_flag_match(self):
        state = LeadState('lead-1', flags={'unsubscribed': True})
        assert evaluator.evaluate_stop({StopCondition.UNSUBSCRIBED}, state) == StopCondition.UNSUBSCRIBED

    def test_reply_match(self):
        state = LeadState('lead-1', has_replied=True)
        assert evaluator.evaluate_stop({StopCondition.REPLIED}, state) == StopCondition.REPLIED

    def test_flags_not_enabled_are_ignored(self):
        state = LeadState('lead-1', has_replied=True, flags={'converted': True})
        assert evaluator.evaluate_stop({StopCondition.DO_NOT_CONTACT}, state) is None

    def test_accepts_string_values(self):
        state = LeadState('lead-1', flags={'meeting_scheduled': True})
        assert evaluator.evaluate_stop(['meeting_scheduled'], state) == StopCondition.MEETING_SCHEDULED
