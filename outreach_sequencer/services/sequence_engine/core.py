"""
Core sequence engine functionality.

This module wires the engine components together:
- EngineSettings loaded from the Flask config
- SequenceEngine facade used by routes, the scheduler and the worker
- Per-app engine registration
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Mapping, Optional

from flask import current_app

from outreach_sequencer.models import LeadSequence

from .action_executor import ActionExecutor, build_action_executor
from .auto_match import AutoMatchEnroller
from .enrollment import EnrollmentManager
from .lead_signals import LeadSignalProvider, SqlLeadSignalProvider
from .progression import RECOVERY_FAULT, RECOVERY_RETRY, ProgressionEngine, StepOutcome
from .storage import RunStore, SqlRunStore
from .timing import BusinessHours, as_naive_utc, utcnow

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'sequence_engine'


@dataclass(frozen=True)
class EngineSettings:
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    max_attempts: int = 3
    in_progress_timeout: int = 900
    in_flight_recovery: str = RECOVERY_FAULT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'EngineSettings':
        recovery = config.get('IN_FLIGHT_RECOVERY', RECOVERY_FAULT)
        if recovery not in (RECOVERY_FAULT, RECOVERY_RETRY):
            logger.warning(f"Unknown IN_FLIGHT_RECOVERY '{recovery}', using '{RECOVERY_FAULT}'")
            recovery = RECOVERY_FAULT

        return cls(
            business_hours=BusinessHours(
                start_hour=config.get('BUSINESS_HOURS_START', 9),
                end_hour=config.get('BUSINESS_HOURS_END', 18),
                timezone=config.get('BUSINESS_TIMEZONE', 'UTC')
            ),
            max_attempts=config.get('MAX_EXECUTION_ATTEMPTS', 3),
            in_progress_timeout=config.get('IN_PROGRESS_TIMEOUT_SECONDS', 900),
            in_flight_recovery=recovery
        )


class SequenceEngine:
    """Entry point for enrolling leads and progressing their runs."""

    def __init__(self, store: Optional[RunStore] = None, signals: Optional[LeadSignalProvider] = None,
                 executor: Optional[ActionExecutor] = None, settings: Optional[EngineSettings] = None,
                 notifier=None):
        self.settings = settings or EngineSettings()
        self.store = store or SqlRunStore()
        self.signals = signals or SqlLeadSignalProvider()
        self.executor = executor or build_action_executor({})
        self.notifier = notifier

        self.enrollment = EnrollmentManager(self.store, self.settings.business_hours)
        self.progression = ProgressionEngine(
            self.store,
            self.signals,
            self.executor,
            business_hours=self.settings.business_hours,
            max_attempts=self.settings.max_attempts,
            in_progress_timeout=self.settings.in_progress_timeout,
            in_flight_recovery=self.settings.in_flight_recovery,
            notifier=self.notifier
        )
        self.auto_match = AutoMatchEnroller(self.store, self.enrollment)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], notifier=None) -> 'SequenceEngine':
        return cls(
            executor=build_action_executor(config),
            settings=EngineSettings.from_config(config),
            notifier=notifier
        )

    # Enrollment
    def enroll(self, lead_id: str, sequence_id: str, now: Optional[datetime] = None,
               actor: Optional[str] = None) -> LeadSequence:
        return self.enrollment.enroll(lead_id, sequence_id, now=now, actor=actor)

    def pause(self, run_id: str, actor: Optional[str] = None) -> LeadSequence:
        return self.enrollment.pause(run_id, actor=actor)

    def resume(self, run_id: str, actor: Optional[str] = None) -> LeadSequence:
        return self.enrollment.resume(run_id, actor=actor)

    def stop(self, run_id: str, reason: Optional[str] = None, now: Optional[datetime] = None,
             actor: Optional[str] = None) -> LeadSequence:
        return self.enrollment.stop(run_id, reason=reason, now=now, actor=actor)

    def clear_attention(self, run_id: str, now: Optional[datetime] = None,
                        actor: Optional[str] = None) -> LeadSequence:
        return self.enrollment.clear_attention(run_id, now=now, actor=actor)

    def get_lead_run(self, lead_id: str) -> Optional[LeadSequence]:
        return self.enrollment.get_lead_run(lead_id)

    def on_lead_tagged(self, lead_id: str, tag_id: str, team_id: str,
                       now: Optional[datetime] = None) -> Optional[LeadSequence]:
        return self.auto_match.on_lead_tagged(lead_id, tag_id, team_id, now=now)

    # Progression
    def find_due_runs(self, now: Optional[datetime] = None, limit: int = 100) -> List[LeadSequence]:
        now = as_naive_utc(now) if now else utcnow()
        claimed_before = now - timedelta(seconds=self.settings.in_progress_timeout)
        return self.store.find_active_runs_due_before(now, limit, claimed_before=claimed_before)

    def process_due_run(self, run_id: str, expected_version: Optional[int] = None,
                        now: Optional[datetime] = None) -> StepOutcome:
        return self.progression.process_due_run(run_id, expected_version, now)


def init_sequence_engine(app, engine: Optional[SequenceEngine] = None) -> SequenceEngine:
    """Register the engine on a Flask app."""
    if engine is None:
        from outreach_sequencer.services.notifications import get_notification_service
        engine = SequenceEngine.from_config(app.config, notifier=get_notification_service())

    app.extensions[EXTENSION_KEY] = engine
    logger.info(f"Sequence engine initialized with {type(engine.executor).__name__}")
    return engine


def get_sequence_engine() -> SequenceEngine:
    """Get the engine registered on the current app, creating it on first use."""
    engine = current_app.extensions.get(EXTENSION_KEY)
    if engine is None:
        engine = init_sequence_engine(current_app)
    return engine
