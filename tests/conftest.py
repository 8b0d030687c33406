"""
Pytest configuration and fixtures for Lead Sequence Engine tests.

This module provides:
- Test app and in-memory database setup and teardown
- Flask test client
- Engine wired to a mock action executor and notifier
- Sequence and run factories
"""

import pytest
from datetime import datetime
from unittest.mock import Mock, patch

from outreach_sequencer.main import create_app
from outreach_sequencer.extensions import db
from outreach_sequencer.models import SequenceDefinition, LeadSignal
from outreach_sequencer.services.sequence_engine import EngineSettings, SequenceEngine, init_sequence_engine
from outreach_sequencer.services.sequence_engine.action_executor import ActionExecutor, ActionResult

# Monday
T0 = datetime(2024, 1, 1, 9, 0)

THREE_STEPS = [
    {
        'order': 1,
        'delay_days': 0,
        'delay_hours': 0,
        'action_type': 'email',
        'action_config': {'subject': 'Hello', 'message': 'Intro email'}
    },
    {
        'order': 2,
        'delay_days': 1,
        'delay_hours': 0,
        'action_type': 'sms',
        'action_config': {'message': 'Quick follow-up'}
    },
    {
        'order': 3,
        'delay_days': 3,
        'delay_hours': 0,
        'action_type': 'task',
        'action_config': {'task_description': 'Call the lead'}
    }
]


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def executor():
    """Action executor that always succeeds."""
    mock = Mock(spec=ActionExecutor)
    mock.execute.return_value = ActionResult(success=True, provider_ref='provider-123')
    return mock


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def engine(app, executor, notifier):
    """Engine registered on the test app, using the mocked executor."""
    engine = SequenceEngine(
        executor=executor,
        settings=EngineSettings.from_config(app.config),
        notifier=notifier
    )
    init_sequence_engine(app, engine)
    return engine


@pytest.fixture
def client(app, engine):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def make_sequence(app):
    """Factory for persisted sequence definitions."""
    def _make(steps=None, stop_conditions=None, team_id='team-1', name='Test Sequence',
              active=True, eligibility_tags=None, created_at=None):
        sequence = SequenceDefinition(
            team_id=team_id,
            name=name,
            steps=steps if steps is not None else THREE_STEPS,
            stop_conditions=stop_conditions if stop_conditions is not None else ['replied', 'unsubscribed'],
            eligibility_tags=eligibility_tags or [],
            active=active,
            created_at=created_at or datetime.utcnow()
        )
        db.session.add(sequence)
        db.session.commit()
        return sequence
    return _make


@pytest.fixture
def set_signal(app):
    """Factory for lead signal rows."""
    def _set(lead_id, **values):
        signal = db.session.get(LeadSignal, lead_id) or LeadSignal(lead_id=lead_id)
        for key, value in values.items():
            setattr(signal, key, value)
        db.session.add(signal)
        db.session.commit()
        return signal
    return _set


@pytest.fixture
def mock_resend():
    """Mock Resend email service for testing."""
    with patch('outreach_sequencer.services.notifications.resend') as mock_resend:
        mock_resend.Emails.send.return_value = {
            "id": "email-123",
            "from": "test@example.com",
            "to": "test@example.com",
            "subject": "Test Email"
        }
        yield mock_resend


@pytest.fixture
def json_headers():
    """Headers for JSON requests."""
    return {
        'Content-Type': 'application/json'
    }
