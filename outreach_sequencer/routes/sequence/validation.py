"""
Sequence validation.

This module contains functionality for:
- Validating a sequence definition before it is saved
- Previewing the due times a definition would produce
"""

import logging
from flask import request, jsonify

from outreach_sequencer.services.sequence_engine import get_sequence_engine
from outreach_sequencer.services.sequence_engine.definitions import parse_sequence, validate_sequence_definition
from outreach_sequencer.services.sequence_engine.exceptions import SequenceEngineError
from outreach_sequencer.services.sequence_engine.timing import compute_due_at, utcnow
from outreach_sequencer.utils.error_handling import (
    handle_engine_error,
    handle_exception,
    handle_validation_error
)
from outreach_sequencer.utils.request_helpers import parse_iso_timestamp

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences/validate', methods=['POST'])
def validate_sequence():
    """Validate a sequence definition."""
    try:
        data = request.get_json(silent=True)
        if not data:
            return handle_validation_error("Sequence definition is required")

        result = validate_sequence_definition(data)
        return jsonify(result), 200

    except Exception as e:
        logger.error(f"Error validating sequence: {str(e)}")
        return handle_exception(e, "validating sequence")


@sequence_bp.route('/sequences/preview', methods=['POST'])
def preview_sequence_timing():
    """Show when each step would become due if a lead enrolled at ``start_at`` and every step executed on time."""
    try:
        data = request.get_json(silent=True) or {}
        plan = parse_sequence(data.get('steps'), data.get('stop_conditions'))
        business_hours = get_sequence_engine().settings.business_hours

        moment = parse_iso_timestamp(data.get('start_at'), 'start_at') or utcnow()
        schedule = []
        for step in plan.steps:
            moment = compute_due_at(moment, step, business_hours)
            schedule.append({
                'order': step.order,
                'action_type': step.action_type.value,
                'due_at': moment.isoformat()
            })

        return jsonify({'schedule': schedule}), 200

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error previewing sequence timing: {str(e)}")
        return handle_exception(e, "previewing sequence timing")
