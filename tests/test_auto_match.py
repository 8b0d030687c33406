"""
Tests for tag-driven auto-enrollment.
"""

from datetime import datetime
from unittest.mock import patch

from outreach_sequencer.models import Activity
from outreach_sequencer.services.sequence_engine.exceptions import AlreadyEnrolledError
from tests.conftest import T0


def test_enrolls_into_matching_sequence(engine, make_sequence):
    sequence = make_sequence(eligibility_tags=['tag-hot'])

    run = engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0)

    assert run is not None
    assert run.sequence_id == sequence.id
    assert run.next_due_at == T0


def test_oldest_matching_sequence_wins(engine, make_sequence):
    newer = make_sequence(name='Newer', eligibility_tags=['tag-hot'], created_at=datetime(2024, 1, 1))
    older = make_sequence(name='Older', eligibility_tags=['tag-hot', 'tag-cold'], created_at=datetime(2023, 6, 1))

    run = engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0)

    assert run.sequence_id == older.id
    assert run.sequence_id != newer.id


def test_no_matching_sequence(engine, make_sequence):
    make_sequence(eligibility_tags=['tag-cold'])
    assert engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0) is None


def test_other_teams_and_inactive_sequences_ignored(engine, make_sequence):
    make_sequence(team_id='team-2', eligibility_tags=['tag-hot'])
    make_sequence(active=False, eligibility_tags=['tag-hot'])

    assert engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0) is None


def test_already_enrolled_lead_is_left_alone(engine, make_sequence):
    current = make_sequence(name='Current')
    make_sequence(name='Tagged', eligibility_tags=['tag-hot'])
    existing = engine.enroll('lead-1', current.id, now=T0)

    assert engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0) is None
    assert engine.get_lead_run('lead-1').id == existing.id


def test_concurrent_enrollment_is_a_no_op(engine, make_sequence):
    make_sequence(eligibility_tags=['tag-hot'])

    with patch.object(engine.enrollment, 'enroll', side_effect=AlreadyEnrolledError('lead-1', 'run-9')):
        assert engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0) is None


def test_auto_enrollment_is_attributed(engine, make_sequence):
    make_sequence(eligibility_tags=['tag-hot'])
    run = engine.on_lead_tagged('lead-1', 'tag-hot', 'team-1', now=T0)

    activity = Activity.query.filter_by(run_id=run.id, activity_type='enrolled_in_sequence').one()
    assert activity.meta_json['actor'] == 'auto_match'
