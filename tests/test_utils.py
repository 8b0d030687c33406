"""
Unit tests for Utility Functions.

This module tests utility functions including error handling, the engine
error mapping and request helpers.
"""

import pytest
from datetime import datetime
from sqlalchemy.exc import IntegrityError, OperationalError

from outreach_sequencer.services.sequence_engine.exceptions import (
    ActionExecutionError,
    AlreadyEnrolledError,
    ConflictError,
    InvalidTransitionError,
    RunNotFoundError,
    SequenceInactiveError,
    ValidationError
)
from outreach_sequencer.utils.error_handling import (
    ERROR_CODES,
    STATUS_CODES,
    create_error_response,
    handle_conflict_error,
    handle_engine_error,
    handle_exception,
    validate_required_fields
)
from outreach_sequencer.utils.request_helpers import parse_bool_arg, parse_iso_timestamp


class TestErrorCodes:
    """Test error code constants."""

    def test_error_codes_structure(self):
        """Test that error codes are properly structured."""
        for code in ('VALIDATION_ERROR', 'NOT_FOUND', 'CONFLICT', 'INTERNAL_ERROR',
                     'ALREADY_ENROLLED', 'INVALID_TRANSITION', 'SEQUENCE_NOT_ACTIVE'):
            assert code in ERROR_CODES

    def test_every_code_has_a_status(self):
        assert set(ERROR_CODES) == set(STATUS_CODES)


class TestCreateErrorResponse:

    def test_envelope(self, app):
        response, status = create_error_response('NOT_FOUND', 'Sequence not found', {'sequence_id': 'x'})

        body = response.get_json()
        assert status == 404
        assert body['error']['code'] == 'NOT_FOUND'
        assert body['error']['message'] == 'Sequence not found'
        assert body['error']['details'] == {'sequence_id': 'x'}
        assert 'timestamp' in body['error']

    def test_unknown_code_becomes_internal_error(self, app):
        response, status = create_error_response('TEAPOT', 'short and stout')
        assert status == 500
        assert response.get_json()['error']['code'] == 'INTERNAL_ERROR'

    def test_explicit_status_code(self, app):
        _, status = create_error_response('BAD_REQUEST', 'nope', status_code=405)
        assert status == 405


class TestEngineErrorMapping:

    @pytest.mark.parametrize('error, code, status', [
        (ValidationError(errors=['Step 1: bad']), 'VALIDATION_ERROR', 400),
        (RunNotFoundError('run-1'), 'NOT_FOUND', 404),
        (AlreadyEnrolledError('lead-1', 'run-1'), 'ALREADY_ENROLLED', 409),
        (ConflictError('raced'), 'CONFLICT', 409),
        (SequenceInactiveError('seq-1'), 'SEQUENCE_NOT_ACTIVE', 400),
        (InvalidTransitionError('run-1', 'stopped', 'pause'), 'INVALID_TRANSITION', 409),
        (ActionExecutionError('dispatch failed', status_code=503), 'EXTERNAL_API_ERROR', 502),
    ])
    def test_mapping(self, app, error, code, status):
        response, http_status = handle_engine_error(error)
        assert http_status == status
        assert response.get_json()['error']['code'] == code

    def test_validation_errors_are_listed(self, app):
        response, _ = handle_engine_error(ValidationError(errors=['Step 1: bad', 'Step 2: worse']))
        assert response.get_json()['error']['details']['errors'] == ['Step 1: bad', 'Step 2: worse']

    def test_conflict_keeps_details(self, app):
        response, status = handle_engine_error(ConflictError('Run run-1 changed concurrently', {'run_id': 'run-1'}))

        body = response.get_json()
        assert status == 409
        assert body['error']['message'] == 'Run run-1 changed concurrently'
        assert body['error']['details'] == {'run_id': 'run-1'}


def test_handle_conflict_error(app):
    response, status = handle_conflict_error("Sequence has open runs", {'open_runs': 2})

    assert status == 409
    assert response.get_json()['error']['code'] == 'CONFLICT'
    assert response.get_json()['error']['details'] == {'open_runs': 2}


class TestHandleException:

    def test_value_error_is_validation_error(self, app):
        _, status = handle_exception(ValueError("enrolled_at must be an ISO-8601 string"))
        assert status == 400

    def test_integrity_error_is_conflict(self, app):
        _, status = handle_exception(IntegrityError("INSERT", {}, Exception("unique")), "enrolling lead")
        assert status == 409

    def test_other_database_errors(self, app):
        response, status = handle_exception(OperationalError("SELECT", {}, Exception("locked")), "listing")
        assert status == 500
        assert response.get_json()['error']['code'] == 'DATABASE_ERROR'

    def test_unexpected_error_hides_details(self, app):
        response, status = handle_exception(RuntimeError("secret stack detail"), "doing things")
        assert status == 500
        assert 'secret' not in response.get_json()['error']['message']


class TestValidateRequiredFields:

    def test_all_present(self, app):
        assert validate_required_fields({'a': 1, 'b': 0}, ['a', 'b']) is None

    def test_missing_and_null(self, app):
        response, status = validate_required_fields({'a': None}, ['a', 'b'])
        assert status == 400
        assert response.get_json()['error']['details']['missing_fields'] == ['a', 'b']


class TestRequestHelpers:

    def test_parse_utc_z_suffix(self):
        assert parse_iso_timestamp('2024-01-01T09:00:00Z') == datetime(2024, 1, 1, 9, 0)

    def test_parse_offset_is_converted_to_utc(self):
        assert parse_iso_timestamp('2024-01-01T09:00:00-05:00') == datetime(2024, 1, 1, 14, 0)

    def test_parse_naive_is_taken_as_utc(self):
        assert parse_iso_timestamp('2024-01-01T09:00:00') == datetime(2024, 1, 1, 9, 0)

    def test_parse_empty(self):
        assert parse_iso_timestamp(None) is None
        assert parse_iso_timestamp('') is None

    def test_parse_invalid(self):
        with pytest.raises(ValueError) as exc_info:
            parse_iso_timestamp('tomorrow', 'start_at')
        assert 'start_at' in str(exc_info.value)

    def test_parse_non_string(self):
        with pytest.raises(ValueError):
            parse_iso_timestamp(1704099600, 'now')

    def test_parse_bool_arg(self):
        assert parse_bool_arg(None) is None
        assert parse_bool_arg('true') is True
        assert parse_bool_arg('1') is True
        assert parse_bool_arg('false') is False
