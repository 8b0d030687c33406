"""
Sequence definition value objects and validation.

This module contains functionality for:
- Action types, stop conditions and run statuses
- Typed action configuration per action type
- Parsing raw (JSON) step lists into immutable steps
- Validation results for the sequence authoring surface
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    CALL = 'call'
    EMAIL = 'email'
    SMS = 'sms'
    WHATSAPP = 'whatsapp'
    LINKEDIN = 'linkedin'
    TASK = 'task'


class StopCondition(str, Enum):
    REPLIED = 'replied'
    MEETING_SCHEDULED = 'meeting_scheduled'
    UNSUBSCRIBED = 'unsubscribed'
    DO_NOT_CONTACT = 'do_not_contact'
    CONVERTED = 'converted'


class RunStatus(str, Enum):
    ACTIVE = 'active'
    PAUSED = 'paused'
    STOPPED = 'stopped'
    COMPLETED = 'completed'


CONDITION_KEYS = ('only_if_no_response', 'only_business_hours', 'skip_weekends')

# Scoring conditions from the lead-scoring product; accepted but not evaluated here
IGNORED_CONDITION_KEYS = ('min_score', 'max_score', 'required_status')

MAX_DELAY_HOURS = 23
LONG_DELAY_DAYS = 30


# ---------------------------------------------------------------------------
# Action configuration (one type per action_type)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _ActionConfig:
    required_one_of: ClassVar[Tuple[str, ...]] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class EmailActionConfig(_ActionConfig):
    required_one_of: ClassVar[Tuple[str, ...]] = ('template_id', 'message')

    template_id: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class MessageActionConfig(_ActionConfig):
    """SMS, WhatsApp and LinkedIn messages."""
    required_one_of: ClassVar[Tuple[str, ...]] = ('template_id', 'message')

    template_id: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class CallActionConfig(_ActionConfig):
    call_script_id: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class TaskActionConfig(_ActionConfig):
    required_one_of: ClassVar[Tuple[str, ...]] = ('task_description',)

    task_description: Optional[str] = None


ACTION_CONFIG_TYPES = {
    ActionType.CALL: CallActionConfig,
    ActionType.EMAIL: EmailActionConfig,
    ActionType.SMS: MessageActionConfig,
    ActionType.WHATSAPP: MessageActionConfig,
    ActionType.LINKEDIN: MessageActionConfig,
    ActionType.TASK: TaskActionConfig,
}


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepConditions:
    only_if_no_response: bool = False
    only_business_hours: bool = False
    skip_weekends: bool = False

    @property
    def has_schedule_rules(self) -> bool:
        return self.only_business_hours or self.skip_weekends

    def to_dict(self) -> Dict[str, bool]:
        return {key: getattr(self, key) for key in CONDITION_KEYS}


@dataclass(frozen=True)
class Step:
    order: int
    action_type: ActionType
    action_config: _ActionConfig
    delay_days: int = 0
    delay_hours: int = 0
    conditions: StepConditions = field(default_factory=StepConditions)
    name: Optional[str] = None

    @property
    def delay(self) -> timedelta:
        return timedelta(days=self.delay_days, hours=self.delay_hours)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'order': self.order,
            'delay_days': self.delay_days,
            'delay_hours': self.delay_hours,
            'action_type': self.action_type.value,
            'action_config': self.action_config.to_dict(),
            'conditions': self.conditions.to_dict()
        }
        if self.name:
            data['name'] = self.name
        return data


@dataclass(frozen=True)
class SequencePlan:
    """Validated steps and stop conditions of one sequence version."""
    steps: Tuple[Step, ...]
    stop_conditions: FrozenSet[StopCondition]

    def __len__(self):
        return len(self.steps)

    def step_at(self, index: int) -> Optional[Step]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_action_config(action_type: ActionType, raw: Any, label: str, errors: List[str]) -> Optional[_ActionConfig]:
    config_cls = ACTION_CONFIG_TYPES[action_type]
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        errors.append(f"{label}: action_config must be an object")
        return None

    allowed = [f.name for f in fields(config_cls)]
    unknown = sorted(set(raw) - set(allowed))
    if unknown:
        errors.append(f"{label}: unsupported action_config keys for '{action_type.value}': {', '.join(unknown)}")

    values = {}
    for name in allowed:
        value = raw.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append(f"{label}: action_config.{name} must be a string")
        elif value.strip():
            values[name] = value

    if config_cls.required_one_of and not any(name in values for name in config_cls.required_one_of):
        errors.append(
            f"{label}: '{action_type.value}' action requires one of: {', '.join(config_cls.required_one_of)}"
        )

    return config_cls(**values)


def _parse_conditions(raw: Any, label: str, errors: List[str], warnings: List[str]) -> StepConditions:
    if raw is None:
        return StepConditions()
    if not isinstance(raw, dict):
        errors.append(f"{label}: conditions must be an object")
        return StepConditions()

    values = {}
    for key, value in raw.items():
        if key in CONDITION_KEYS:
            if not isinstance(value, bool):
                errors.append(f"{label}: condition '{key}' must be a boolean")
            else:
                values[key] = value
        elif key in IGNORED_CONDITION_KEYS:
            warnings.append(f"{label}: condition '{key}' is not evaluated by the sequence engine")
        else:
            errors.append(f"{label}: unknown condition '{key}'")
    return StepConditions(**values)


def _parse_step(index: int, raw: Any, errors: List[str], warnings: List[str]) -> Optional[Step]:
    label = f"Step {index + 1}"
    if not isinstance(raw, dict):
        errors.append(f"{label}: must be an object")
        return None

    step_errors: List[str] = []

    order = raw.get('order')
    if not _is_int(order):
        step_errors.append(f"{label}: order must be an integer")
    elif order != index + 1:
        step_errors.append(f"{label}: order must be {index + 1} (got {order}); orders are 1-based and contiguous")

    delay_days = raw.get('delay_days', 0)
    if not _is_int(delay_days) or delay_days < 0:
        step_errors.append(f"{label}: delay_days must be a non-negative integer")
    elif delay_days > LONG_DELAY_DAYS:
        warnings.append(f"{label}: delay_days is very long (>{LONG_DELAY_DAYS} days)")

    delay_hours = raw.get('delay_hours', 0)
    if not _is_int(delay_hours) or not 0 <= delay_hours <= MAX_DELAY_HOURS:
        step_errors.append(f"{label}: delay_hours must be an integer between 0 and {MAX_DELAY_HOURS}")

    action_type = None
    try:
        action_type = ActionType(raw.get('action_type'))
    except ValueError:
        step_errors.append(f"{label}: invalid action_type '{raw.get('action_type')}'")

    action_config = None
    if action_type is not None:
        action_config = _parse_action_config(action_type, raw.get('action_config'), label, step_errors)

    conditions = _parse_conditions(raw.get('conditions'), label, step_errors, warnings)

    name = raw.get('name')
    if name is not None and not isinstance(name, str):
        step_errors.append(f"{label}: name must be a string")

    if index > 0 and not step_errors and delay_days == 0 and delay_hours == 0:
        warnings.append(f"{label}: will execute immediately after the previous step (no delay)")

    if step_errors:
        errors.extend(step_errors)
        return None

    return Step(
        order=order,
        action_type=action_type,
        action_config=action_config,
        delay_days=delay_days,
        delay_hours=delay_hours,
        conditions=conditions,
        name=name
    )


def _parse_stop_conditions(raw: Any, errors: List[str]) -> FrozenSet[StopCondition]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, (list, tuple, set, frozenset)):
        errors.append("stop_conditions must be a list")
        return frozenset()

    parsed = set()
    for value in raw:
        try:
            parsed.add(StopCondition(value))
        except ValueError:
            errors.append(f"Invalid stop condition '{value}'")
    return frozenset(parsed)


def _check_definition(raw_steps: Any, raw_stop_conditions: Any):
    errors: List[str] = []
    warnings: List[str] = []

    steps: List[Step] = []
    if not isinstance(raw_steps, list):
        errors.append("steps must be a list")
    elif not raw_steps:
        errors.append("Sequence must contain at least one step")
    else:
        for index, raw in enumerate(raw_steps):
            step = _parse_step(index, raw, errors, warnings)
            if step is not None:
                steps.append(step)

    stop_conditions = _parse_stop_conditions(raw_stop_conditions, errors)

    plan = None if errors else SequencePlan(steps=tuple(steps), stop_conditions=stop_conditions)
    return plan, errors, warnings


def parse_sequence(raw_steps: Any, raw_stop_conditions: Any = None) -> SequencePlan:
    """Parse a raw step list and stop conditions, raising ValidationError on any problem."""
    plan, errors, _ = _check_definition(raw_steps, raw_stop_conditions)
    if errors:
        raise ValidationError("Invalid sequence definition", errors)
    return plan


def validate_sequence_definition(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a sequence definition payload for the authoring surface."""
    if not isinstance(payload, dict):
        return {'valid': False, 'errors': ["Sequence definition must be an object"], 'warnings': []}

    _, errors, warnings = _check_definition(payload.get('steps'), payload.get('stop_conditions'))

    tags = payload.get('eligibility_tags')
    if tags is not None and (not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags)):
        errors.append("eligibility_tags must be a list of tag ids")

    return {
        'valid': len(errors) == 0,
        'errors': errors,
        'warnings': warnings
    }


def serialize_steps(steps: Iterable[Step]) -> List[Dict[str, Any]]:
    return [step.to_dict() for step in steps]


def serialize_stop_conditions(stop_conditions: Iterable[StopCondition]) -> List[str]:
    return sorted(condition.value for condition in stop_conditions)
