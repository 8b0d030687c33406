"""
Unit tests for sequence definition parsing and validation.
"""

import copy

import pytest

from outreach_sequencer.services.sequence_engine.definitions import (
    ActionType,
    CallActionConfig,
    EmailActionConfig,
    StopCondition,
    TaskActionConfig,
    parse_sequence,
    serialize_steps,
    validate_sequence_definition
)
from outreach_sequencer.services.sequence_engine.exceptions import ValidationError
from tests.conftest import THREE_STEPS


class TestParseSequence:
    """Parsing raw definitions into immutable steps."""

    def test_parses_steps_and_stop_conditions(self):
        plan = parse_sequence(THREE_STEPS, ['replied', 'converted'])

        assert len(plan) == 3
        assert plan.steps[0].action_type == ActionType.EMAIL
        assert isinstance(plan.steps[0].action_config, EmailActionConfig)
        assert plan.steps[0].action_config.subject == 'Hello'
        assert isinstance(plan.steps[2].action_config, TaskActionConfig)
        assert plan.stop_conditions == frozenset({StopCondition.REPLIED, StopCondition.CONVERTED})

    def test_step_delay(self):
        steps = [dict(THREE_STEPS[0], delay_days=2, delay_hours=3)]
        plan = parse_sequence(steps)
        assert plan.steps[0].delay.total_seconds() == 51 * 3600

    def test_empty_steps_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_sequence([])
        assert "at least one step" in exc_info.value.errors[0]

    def test_non_contiguous_order_rejected(self):
        steps = copy.deepcopy(THREE_STEPS)
        steps[1]['order'] = 3
        steps[2]['order'] = 4

        with pytest.raises(ValidationError) as exc_info:
            parse_sequence(steps)
        assert any('order must be 2' in error for error in exc_info.value.errors)

    def test_orders_must_start_at_one(self):
        steps = [dict(THREE_STEPS[0], order=0)]
        with pytest.raises(ValidationError):
            parse_sequence(steps)

    def test_collects_every_problem(self):
        steps = [
            {'order': 1, 'delay_hours': 24, 'action_type': 'fax', 'action_config': {}},
            {'order': 2, 'delay_days': -1, 'action_type': 'task', 'action_config': {}}
        ]
        with pytest.raises(ValidationError) as exc_info:
            parse_sequence(steps)

        errors = exc_info.value.errors
        assert any('delay_hours' in error for error in errors)
        assert any("invalid action_type 'fax'" in error for error in errors)
        assert any('delay_days' in error for error in errors)
        assert any('task_description' in error for error in errors)

    def test_boolean_delays_rejected(self):
        steps = [dict(THREE_STEPS[0], delay_days=True)]
        with pytest.raises(ValidationError):
            parse_sequence(steps)

    def test_invalid_stop_condition(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_sequence(THREE_STEPS, ['replied', 'bored'])
        assert "Invalid stop condition 'bored'" in exc_info.value.errors


class TestActionConfig:
    """Typed action configuration per action type."""

    def test_email_requires_template_or_message(self):
        steps = [dict(THREE_STEPS[0], action_config={'subject': 'Only a subject'})]
        with pytest.raises(ValidationError) as exc_info:
            parse_sequence(steps)
        assert any('template_id, message' in error for error in exc_info.value.errors)

    def test_unknown_keys_rejected(self):
        steps = [dict(THREE_STEPS[0], action_config={'message': 'Hi', 'attachment': 'deck.pdf'})]
        with pytest.raises(ValidationError) as exc_info:
            parse_sequence(steps)
        assert any('attachment' in error for error in exc_info.value.errors)

    def test_call_config_is_optional(self):
        steps = [{'order': 1, 'action_type': 'call'}]
        plan = parse_sequence(steps)
        assert isinstance(plan.steps[0].action_config, CallActionConfig)
        assert plan.steps[0].action_config.to_dict() == {}

    def test_template_satisfies_message_requirement(self):
        steps = [{'order': 1, 'action_type': 'whatsapp', 'action_config': {'template_id': 'tpl-9'}}]
        plan = parse_sequence(steps)
        assert plan.steps[0].action_config.to_dict() == {'template_id': 'tpl-9'}


class TestConditions:

    def test_conditions_default_to_false(self):
        plan = parse_sequence(THREE_STEPS)
        conditions = plan.steps[0].conditions
        assert not conditions.only_if_no_response
        assert not conditions.only_business_hours
        assert not conditions.skip_weekends

    def test_non_boolean_condition_rejected(self):
        steps = [dict(THREE_STEPS[0], conditions={'skip_weekends': 'yes'})]
        with pytest.raises(ValidationError):
            parse_sequence(steps)

    def test_unknown_condition_rejected(self):
        steps = [dict(THREE_STEPS[0], conditions={'only_on_tuesdays': True})]
        with pytest.raises(ValidationError):
            parse_sequence(steps)


class TestValidateSequenceDefinition:
    """Validation results for the authoring surface."""

    def test_valid_definition(self):
        result = validate_sequence_definition({'steps': THREE_STEPS, 'stop_conditions': ['replied']})
        assert result['valid'] is True
        assert result['errors'] == []

    def test_scoring_conditions_only_warn(self):
        steps = [dict(THREE_STEPS[0], conditions={'min_score': 50, 'skip_weekends': True})]
        result = validate_sequence_definition({'steps': steps})

        assert result['valid'] is True
        assert any('min_score' in warning for warning in result['warnings'])

    def test_long_delay_and_immediate_step_warnings(self):
        steps = copy.deepcopy(THREE_STEPS)
        steps[1]['delay_days'] = 0
        steps[2]['delay_days'] = 45
        result = validate_sequence_definition({'steps': steps})

        assert result['valid'] is True
        assert any('immediately' in warning for warning in result['warnings'])
        assert any('very long' in warning for warning in result['warnings'])

    def test_invalid_eligibility_tags(self):
        result = validate_sequence_definition({'steps': THREE_STEPS, 'eligibility_tags': 'tag-1'})
        assert result['valid'] is False

    def test_non_object_payload(self):
        result = validate_sequence_definition(['not', 'an', 'object'])
        assert result['valid'] is False


def test_serialized_steps_parse_back_to_the_same_plan():
    plan = parse_sequence(THREE_STEPS)
    assert parse_sequence(serialize_steps(plan.steps)).steps == plan.steps
