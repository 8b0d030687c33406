"""
Enrollment and run transition endpoints.

This module contains functionality for:
- Enrolling a lead and reading its current run
- Bulk enrollment status for a list of leads
- Pausing, resuming and stopping runs
- Listing and clearing runs that need attention
- Run activity history
"""

import logging
from flask import request, jsonify

from outreach_sequencer.extensions import db
from outreach_sequencer.models import Activity
from outreach_sequencer.services.sequence_engine import get_sequence_engine
from outreach_sequencer.services.sequence_engine.exceptions import SequenceEngineError
from outreach_sequencer.utils.error_handling import (
    handle_engine_error,
    handle_exception,
    handle_not_found_error,
    handle_validation_error,
    validate_required_fields
)
from outreach_sequencer.utils.request_helpers import parse_iso_timestamp

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import run_bp

MAX_STATUS_LOOKUP = 1000


def _run_payload(run):
    data = run.to_dict()
    data['sequence_name'] = run.sequence.name if run.sequence else None
    return data


@run_bp.route('/leads/<lead_id>/sequence', methods=['GET'])
def get_lead_sequence(lead_id):
    """Get the lead's current active or paused run."""
    try:
        run = get_sequence_engine().get_lead_run(lead_id)
        return jsonify({
            'lead_id': lead_id,
            'enrolled': run is not None,
            'run': _run_payload(run) if run else None
        }), 200

    except Exception as e:
        logger.error(f"Error getting run for lead {lead_id}: {str(e)}")
        return handle_exception(e, "getting lead run")


@run_bp.route('/leads/sequence-status', methods=['POST'])
def get_leads_sequence_status():
    """Map each requested lead id to whether it has an active or paused run."""
    try:
        data = request.get_json(silent=True) or {}
        lead_ids = data.get('lead_ids')
        if not isinstance(lead_ids, list) or not all(isinstance(lead_id, str) for lead_id in lead_ids):
            return handle_validation_error("lead_ids must be a list of lead ids")
        if len(lead_ids) > MAX_STATUS_LOOKUP:
            return handle_validation_error(
                f"At most {MAX_STATUS_LOOKUP} lead ids per request",
                {'received': len(lead_ids)}
            )

        enrolled = get_sequence_engine().store.leads_with_open_runs(lead_ids)
        return jsonify({
            'statuses': {lead_id: lead_id in enrolled for lead_id in lead_ids}
        }), 200

    except Exception as e:
        logger.error(f"Error looking up lead sequence status: {str(e)}")
        return handle_exception(e, "looking up lead sequence status")


@run_bp.route('/leads/<lead_id>/sequence', methods=['POST'])
def enroll_lead(lead_id):
    """Enroll a lead into a sequence."""
    try:
        data = request.get_json(silent=True) or {}
        validation_error = validate_required_fields(data, ['sequence_id'])
        if validation_error:
            return validation_error

        run = get_sequence_engine().enroll(
            lead_id,
            data['sequence_id'],
            now=parse_iso_timestamp(data.get('enrolled_at'), 'enrolled_at'),
            actor=data.get('actor')
        )
        return jsonify({
            'message': 'Lead enrolled successfully',
            'run': _run_payload(run)
        }), 201

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error enrolling lead {lead_id}: {str(e)}")
        return handle_exception(e, "enrolling lead")


@run_bp.route('/runs/attention', methods=['GET'])
def list_runs_needing_attention():
    """Runs that are faulted or exhausted and wait for an operator."""
    try:
        limit = request.args.get('limit', 100, type=int)
        runs = get_sequence_engine().store.find_runs_needing_attention(limit)
        return jsonify({
            'runs': [_run_payload(run) for run in runs],
            'total': len(runs)
        }), 200

    except Exception as e:
        logger.error(f"Error listing runs needing attention: {str(e)}")
        return handle_exception(e, "listing runs needing attention")


@run_bp.route('/runs/<run_id>', methods=['GET'])
def get_run(run_id):
    """Get a run by id."""
    try:
        run = get_sequence_engine().store.get_run(run_id)
        if not run:
            return handle_not_found_error("Run", run_id)
        return jsonify({'run': _run_payload(run)}), 200

    except Exception as e:
        logger.error(f"Error getting run {run_id}: {str(e)}")
        return handle_exception(e, "getting run")


@run_bp.route('/runs/<run_id>/activities', methods=['GET'])
def get_run_activities(run_id):
    """Audit events recorded for a run, oldest first."""
    try:
        run = get_sequence_engine().store.get_run(run_id)
        if not run:
            return handle_not_found_error("Run", run_id)

        activities = Activity.query.filter_by(run_id=run_id).order_by(Activity.timestamp.asc()).all()
        return jsonify({
            'run_id': run_id,
            'activities': [activity.to_dict() for activity in activities]
        }), 200

    except Exception as e:
        logger.error(f"Error getting activities for run {run_id}: {str(e)}")
        return handle_exception(e, "getting run activities")


@run_bp.route('/runs/<run_id>/pause', methods=['POST'])
def pause_run(run_id):
    """Pause an active run."""
    try:
        data = request.get_json(silent=True) or {}
        run = get_sequence_engine().pause(run_id, actor=data.get('actor'))
        return jsonify({'message': 'Run paused', 'run': _run_payload(run)}), 200

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error pausing run {run_id}: {str(e)}")
        return handle_exception(e, "pausing run")


@run_bp.route('/runs/<run_id>/resume', methods=['POST'])
def resume_run(run_id):
    """Resume a paused run without touching its due time."""
    try:
        data = request.get_json(silent=True) or {}
        run = get_sequence_engine().resume(run_id, actor=data.get('actor'))
        return jsonify({'message': 'Run resumed', 'run': _run_payload(run)}), 200

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error resuming run {run_id}: {str(e)}")
        return handle_exception(e, "resuming run")


@run_bp.route('/runs/<run_id>/stop', methods=['POST'])
def stop_run(run_id):
    """Stop a run permanently."""
    try:
        data = request.get_json(silent=True) or {}
        run = get_sequence_engine().stop(run_id, reason=data.get('reason'), actor=data.get('actor'))
        return jsonify({'message': 'Run stopped', 'run': _run_payload(run)}), 200

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error stopping run {run_id}: {str(e)}")
        return handle_exception(e, "stopping run")


@run_bp.route('/runs/<run_id>/clear-attention', methods=['POST'])
def clear_run_attention(run_id):
    """Acknowledge a faulted run so the scheduler picks it up again."""
    try:
        data = request.get_json(silent=True) or {}
        run = get_sequence_engine().clear_attention(run_id, actor=data.get('actor'))
        return jsonify({'message': 'Run attention cleared', 'run': _run_payload(run)}), 200

    except SequenceEngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error clearing attention on run {run_id}: {str(e)}")
        return handle_exception(e, "clearing run attention")
