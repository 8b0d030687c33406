"""
Unit tests for the action executors.

This module tests HTTP dispatch with mocked requests plus executor selection.
"""

import pytest
from unittest.mock import Mock, patch
import requests

from outreach_sequencer.services.sequence_engine.action_executor import (
    DryRunActionExecutor,
    HttpActionDispatcher,
    build_action_executor
)
from outreach_sequencer.services.sequence_engine.exceptions import ActionExecutionError


class TestHttpActionDispatcher:
    """Test cases for HttpActionDispatcher."""

    @pytest.fixture
    def dispatcher(self):
        return HttpActionDispatcher('https://delivery.test/api/', api_key='test-api-key', timeout=5)

    @pytest.fixture
    def mock_response(self):
        """Create a mock response object."""
        response = Mock()
        response.content = b'{"provider_ref": "msg-42"}'
        response.json.return_value = {'provider_ref': 'msg-42'}
        response.raise_for_status.return_value = None
        return response

    def test_base_url_trailing_slash_removed(self, dispatcher):
        assert dispatcher.base_url == 'https://delivery.test/api'

    @patch('requests.request')
    def test_execute_success(self, mock_request, dispatcher, mock_response):
        """Test successful dispatch."""
        mock_request.return_value = mock_response

        result = dispatcher.execute('lead-1', 'sms', {'message': 'Hi'}, idempotency_key='run-1:2')

        assert result.success is True
        assert result.provider_ref == 'msg-42'

        call_args = mock_request.call_args
        assert call_args[0] == ('POST', 'https://delivery.test/api/actions')
        assert call_args[1]['json'] == {'lead_id': 'lead-1', 'action_type': 'sms', 'action_config': {'message': 'Hi'}}
        assert call_args[1]['headers']['X-API-KEY'] == 'test-api-key'
        assert call_args[1]['headers']['Idempotency-Key'] == 'run-1:2'
        assert call_args[1]['timeout'] == 5

    @patch('requests.request')
    def test_execute_uses_id_when_no_provider_ref(self, mock_request, dispatcher, mock_response):
        mock_response.json.return_value = {'id': 12345}
        mock_request.return_value = mock_response

        assert dispatcher.execute('lead-1', 'email', {'message': 'Hi'}).provider_ref == '12345'

    @patch('requests.request')
    def test_execute_rejected_action(self, mock_request, dispatcher, mock_response):
        """A 2xx response with success=false is a failed action, not an exception."""
        mock_response.json.return_value = {'success': False, 'error': 'Number not reachable'}
        mock_request.return_value = mock_response

        result = dispatcher.execute('lead-1', 'sms', {'message': 'Hi'})

        assert result.success is False
        assert result.error == 'Number not reachable'

    @patch('requests.request')
    def test_execute_timeout(self, mock_request, dispatcher):
        mock_request.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(ActionExecutionError) as exc_info:
            dispatcher.execute('lead-1', 'sms', {'message': 'Hi'})
        assert 'timed out' in exc_info.value.message

    @patch('requests.request')
    def test_execute_http_error(self, mock_request, dispatcher):
        error_response = Mock()
        error_response.status_code = 503
        error_response.text = 'Service Unavailable'
        response = Mock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("503 Server Error", response=error_response)
        mock_request.return_value = response

        with pytest.raises(ActionExecutionError) as exc_info:
            dispatcher.execute('lead-1', 'email', {'message': 'Hi'})
        assert exc_info.value.status_code == 503
        assert exc_info.value.response_data == 'Service Unavailable'

    @patch('requests.request')
    def test_execute_connection_error(self, mock_request, dispatcher):
        mock_request.side_effect = requests.exceptions.ConnectionError("connection refused")

        with pytest.raises(ActionExecutionError) as exc_info:
            dispatcher.execute('lead-1', 'email', {'message': 'Hi'})
        assert exc_info.value.status_code is None

    @patch('requests.request')
    def test_empty_body_is_success_without_ref(self, mock_request, dispatcher):
        response = Mock()
        response.content = b''
        response.raise_for_status.return_value = None
        mock_request.return_value = response

        result = dispatcher.execute('lead-1', 'task', {'task_description': 'Call'})
        assert result.success is True
        assert result.provider_ref is None


class TestExecutorSelection:

    def test_dry_run_without_url(self):
        assert isinstance(build_action_executor({}), DryRunActionExecutor)

    def test_http_dispatcher_with_url(self):
        executor = build_action_executor({
            'ACTION_DISPATCH_URL': 'https://delivery.test',
            'ACTION_DISPATCH_API_KEY': 'key',
            'ACTION_TIMEOUT_SECONDS': 12
        })
        assert isinstance(executor, HttpActionDispatcher)
        assert executor.timeout == 12

    def test_dry_run_reports_success(self):
        result = DryRunActionExecutor().execute('lead-1', 'call', {}, idempotency_key='run-1:1')
        assert result.success is True
        assert result.provider_ref == 'dry-run:run-1:1'
