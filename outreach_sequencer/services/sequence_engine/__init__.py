"""
Sequence engine services package.

This package contains the outreach sequence engine:
- definitions.py: Sequence definition value objects and validation
- timing.py: Delay, weekend and business-hours calculations
- conditions.py: Step and stop condition evaluation
- storage.py: Run storage with compare-and-swap updates
- lead_signals.py: Read-only lead signals
- action_executor.py: Step action dispatch
- enrollment.py: Enrollment and manual run transitions
- progression.py: Step progression state machine
- auto_match.py: Tag-based automatic enrollment
- core.py: Engine facade and app registration
"""

from .core import EngineSettings, SequenceEngine, get_sequence_engine, init_sequence_engine
from .definitions import ActionType, RunStatus, StopCondition, parse_sequence, validate_sequence_definition
from .exceptions import (
    ActionExecutionError,
    AlreadyEnrolledError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    RunNotFoundError,
    SequenceEngineError,
    SequenceInactiveError,
    SequenceNotFoundError,
    ValidationError,
)
from .progression import StepOutcome

__all__ = [
    'EngineSettings',
    'SequenceEngine',
    'get_sequence_engine',
    'init_sequence_engine',
    'ActionType',
    'RunStatus',
    'StopCondition',
    'parse_sequence',
    'validate_sequence_definition',
    'StepOutcome',
    'SequenceEngineError',
    'ValidationError',
    'ConflictError',
    'AlreadyEnrolledError',
    'NotFoundError',
    'SequenceNotFoundError',
    'RunNotFoundError',
    'SequenceInactiveError',
    'InvalidTransitionError',
    'ActionExecutionError',
]
