"""
Lead signal endpoints.

The lead service owns lead records; it pushes the few facts the engine
needs through these endpoints:
- Tagging a lead (auto-match enrollment)
- Lead flags (unsubscribed, do_not_contact, converted, meeting_scheduled)
- Inbound replies
"""

import logging
from flask import request, jsonify

from outreach_sequencer.extensions import db
from outreach_sequencer.models.lead_signal import FLAG_FIELDS
from outreach_sequencer.services.sequence_engine import get_sequence_engine
from outreach_sequencer.services.sequence_engine.exceptions import SequenceEngineError
from outreach_sequencer.utils.error_handling import (
    handle_engine_error,
    handle_exception,
    handle_validation_error,
    validate_required_fields
)
from outreach_sequencer.utils.request_helpers import parse_iso_timestamp

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import run_bp


@run_bp.route('/leads/<lead_id>/tags', methods=['POST'])
def tag_lead(lead_id):
    """Auto-enroll a newly tagged lead into the first matching sequence of its team."""
    try:
        data = request.get_json(silent=True) or {}
        validation_error = validate_required_fields(data, ['tag_id', 'team_id'])
        if validation_error:
            return validation_error

        run = get_sequence_engine().on_lead_tagged(lead_id, data['tag_id'], data['team_id'])
        return jsonify({
            'lead_id': lead_id,
            'enrolled': run is not None,
            'run': run.to_dict() if run else None
        }), 201 if run else 200

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error auto-matching lead {lead_id}: {str(e)}")
        return handle_exception(e, "auto-matching lead")


@run_bp.route('/leads/<lead_id>/signals', methods=['PUT'])
def update_lead_signals(lead_id):
    """Update lead flags used by stop conditions."""
    try:
        data = request.get_json(silent=True) or {}
        flags = {key: value for key, value in data.items() if key in FLAG_FIELDS}
        unknown = sorted(set(data) - set(FLAG_FIELDS))
        if unknown or not flags:
            return handle_validation_error(
                "Provide one or more lead flags",
                {'allowed_fields': list(FLAG_FIELDS), 'unknown_fields': unknown}
            )
        non_bool = [key for key, value in flags.items() if not isinstance(value, bool)]
        if non_bool:
            return handle_validation_error(f"Flags must be booleans: {', '.join(non_bool)}")

        signal = get_sequence_engine().signals.update_flags(lead_id, **flags)
        return jsonify({'signals': signal.to_dict()}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating signals for lead {lead_id}: {str(e)}")
        return handle_exception(e, "updating lead signals")


@run_bp.route('/leads/<lead_id>/replies', methods=['POST'])
def record_lead_reply(lead_id):
    """Record an inbound reply from a lead."""
    try:
        data = request.get_json(silent=True) or {}
        replied_at = parse_iso_timestamp(data.get('replied_at'), 'replied_at')

        signal = get_sequence_engine().signals.record_reply(lead_id, replied_at)
        return jsonify({'signals': signal.to_dict()}), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error recording reply for lead {lead_id}: {str(e)}")
        return handle_exception(e, "recording lead reply")
