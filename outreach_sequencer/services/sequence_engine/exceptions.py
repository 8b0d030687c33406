"""
Sequence engine error taxonomy.

Every engine error derives from SequenceEngineError so callers (the scheduler,
the HTTP layer) can catch the whole family in one place.
"""

from typing import Any, Dict, List, Optional


class SequenceEngineError(Exception):
    """Base exception for sequence engine errors."""

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SequenceEngineError):
    """Malformed sequence definition."""

    def __init__(self, message: str = "Invalid sequence definition", errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message, {'errors': self.errors})


class ConflictError(SequenceEngineError):
    """A concurrent writer won the race for a run row."""


class AlreadyEnrolledError(ConflictError):
    """The lead already has an active or paused run."""

    def __init__(self, lead_id: str, run_id: Optional[str] = None):
        self.lead_id = lead_id
        self.run_id = run_id
        super().__init__(
            f"Lead {lead_id} is already enrolled in an active sequence",
            {'lead_id': lead_id, 'run_id': run_id}
        )


class NotFoundError(SequenceEngineError):
    """A sequence or run does not exist."""


class SequenceNotFoundError(NotFoundError):
    def __init__(self, sequence_id: str):
        self.sequence_id = sequence_id
        super().__init__(f"Sequence {sequence_id} not found", {'sequence_id': sequence_id})


class RunNotFoundError(NotFoundError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found", {'run_id': run_id})


class SequenceInactiveError(SequenceEngineError):
    def __init__(self, sequence_id: str):
        self.sequence_id = sequence_id
        super().__init__(f"Sequence {sequence_id} is not active", {'sequence_id': sequence_id})


class InvalidTransitionError(SequenceEngineError):
    """Requested status change is not allowed from the run's current status."""

    def __init__(self, run_id: str, current_status: str, action: str):
        self.run_id = run_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} run {run_id} with status '{current_status}'",
            {'run_id': run_id, 'status': current_status, 'action': action}
        )


class ActionExecutionError(SequenceEngineError):
    """The external channel failed to perform a step's action."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Any = None):
        super().__init__(message, {'status_code': status_code})
        self.status_code = status_code
        self.response_data = response_data
