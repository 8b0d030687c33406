"""
Standardized Error Handling Utilities

This module provides consistent error response formats and error handling
functions across all API endpoints, including the mapping from sequence
engine errors to HTTP responses.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional
from flask import jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from outreach_sequencer.services.sequence_engine.exceptions import (
    ActionExecutionError,
    AlreadyEnrolledError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SequenceEngineError,
    SequenceInactiveError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Standard error codes
ERROR_CODES = {
    # Client errors (4xx)
    'VALIDATION_ERROR': 'VALIDATION_ERROR',
    'NOT_FOUND': 'NOT_FOUND',
    'CONFLICT': 'CONFLICT',
    'BAD_REQUEST': 'BAD_REQUEST',

    # Server errors (5xx)
    'INTERNAL_ERROR': 'INTERNAL_ERROR',
    'SERVICE_UNAVAILABLE': 'SERVICE_UNAVAILABLE',
    'DATABASE_ERROR': 'DATABASE_ERROR',
    'EXTERNAL_API_ERROR': 'EXTERNAL_API_ERROR',

    # Business logic errors
    'SEQUENCE_NOT_ACTIVE': 'SEQUENCE_NOT_ACTIVE',
    'ALREADY_ENROLLED': 'ALREADY_ENROLLED',
    'INVALID_TRANSITION': 'INVALID_TRANSITION',
    'INVALID_SEQUENCE': 'INVALID_SEQUENCE'
}

# HTTP status code mapping
STATUS_CODES = {
    'VALIDATION_ERROR': 400,
    'NOT_FOUND': 404,
    'CONFLICT': 409,
    'BAD_REQUEST': 400,
    'INTERNAL_ERROR': 500,
    'SERVICE_UNAVAILABLE': 503,
    'DATABASE_ERROR': 500,
    'EXTERNAL_API_ERROR': 502,
    'SEQUENCE_NOT_ACTIVE': 400,
    'ALREADY_ENROLLED': 409,
    'INVALID_TRANSITION': 409,
    'INVALID_SEQUENCE': 400
}


def create_error_response(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    status_code: Optional[int] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        code: Error code from ERROR_CODES
        message: Human-readable error message
        details: Additional error details (optional)
        status_code: HTTP status code (optional, defaults to code mapping)

    Returns:
        Tuple of (json_response, status_code)
    """
    if code not in ERROR_CODES:
        logger.warning(f"Unknown error code used: {code}, defaulting to INTERNAL_ERROR")
        code = 'INTERNAL_ERROR'

    http_status = status_code or STATUS_CODES.get(code, 500)

    error_response = {
        'error': {
            'code': code,
            'message': message,
            'timestamp': datetime.utcnow().isoformat()
        }
    }

    if details:
        error_response['error']['details'] = details

    return jsonify(error_response), http_status


def handle_validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> tuple:
    """Handle validation errors (400)."""
    return create_error_response('VALIDATION_ERROR', message, details)


def handle_not_found_error(resource: str, resource_id: Optional[str] = None) -> tuple:
    """Handle not found errors (404)."""
    message = f"{resource} not found"
    if resource_id:
        message += f" with id: {resource_id}"
    return create_error_response('NOT_FOUND', message)


def handle_conflict_error(message: str, details: Optional[Dict[str, Any]] = None) -> tuple:
    """Handle conflict errors (409)."""
    return create_error_response('CONFLICT', message, details)


def handle_database_error(error: Exception, operation: str = "database operation") -> tuple:
    """Handle database errors (500)."""
    logger.error(f"Database error during {operation}: {str(error)}")

    if isinstance(error, IntegrityError):
        return create_error_response('CONFLICT', f"Database constraint violation during {operation}")
    return create_error_response('DATABASE_ERROR', f"Database error during {operation}")


def handle_internal_error(error: Exception, operation: str = "operation") -> tuple:
    """Handle internal server errors (500)."""
    logger.error(f"Internal error during {operation}: {str(error)}")
    return create_error_response('INTERNAL_ERROR', f"An unexpected error occurred during {operation}")


def handle_engine_error(error: SequenceEngineError) -> tuple:
    """Map a sequence engine error onto the standard error envelope."""
    if isinstance(error, ValidationError):
        return create_error_response('VALIDATION_ERROR', error.message, {'errors': error.errors})
    if isinstance(error, NotFoundError):
        return create_error_response('NOT_FOUND', error.message, error.details)
    if isinstance(error, AlreadyEnrolledError):
        return create_error_response('ALREADY_ENROLLED', error.message, error.details)
    if isinstance(error, ConflictError):
        return handle_conflict_error(error.message, error.details)
    if isinstance(error, SequenceInactiveError):
        return create_error_response('SEQUENCE_NOT_ACTIVE', error.message, error.details)
    if isinstance(error, InvalidTransitionError):
        return create_error_response('INVALID_TRANSITION', error.message, error.details)
    if isinstance(error, ActionExecutionError):
        logger.error(f"Action execution error: {error.message}")
        return create_error_response('EXTERNAL_API_ERROR', error.message, error.details)

    logger.error(f"Unhandled sequence engine error: {error.message}")
    return create_error_response('INTERNAL_ERROR', error.message or "Sequence engine error")


def handle_exception(error: Exception, operation: str = "operation") -> tuple:
    """
    Generic exception handler that categorizes errors and returns appropriate responses.

    Args:
        error: The exception that occurred
        operation: Description of the operation being performed

    Returns:
        Tuple of (json_response, status_code)
    """
    if isinstance(error, SequenceEngineError):
        return handle_engine_error(error)
    elif isinstance(error, HTTPException):
        return create_error_response('BAD_REQUEST', error.description, status_code=error.code)
    elif isinstance(error, SQLAlchemyError):
        return handle_database_error(error, operation)
    elif isinstance(error, ValueError):
        return handle_validation_error(str(error))
    else:
        return handle_internal_error(error, operation)


def validate_required_fields(data: Dict[str, Any], required_fields: list) -> Optional[tuple]:
    """
    Validate that required fields are present in request data.

    Returns:
        Error response tuple if validation fails, None if validation passes
    """
    missing_fields = [field for field in required_fields if field not in data or data[field] is None]

    if missing_fields:
        details = {
            'missing_fields': missing_fields,
            'required_fields': required_fields
        }
        return handle_validation_error(
            f"Missing required fields: {', '.join(missing_fields)}",
            details
        )

    return None
