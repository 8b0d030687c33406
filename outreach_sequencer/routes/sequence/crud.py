"""
Basic CRUD operations for sequences.

This module contains functionality for:
- Creating and listing sequences
- Reading, updating, duplicating and deleting a sequence
- Activating and deactivating sequences
- Sequence run statistics
"""

import copy
import logging
from datetime import datetime
from flask import request, jsonify

from outreach_sequencer.extensions import db
from outreach_sequencer.models import SequenceDefinition
from outreach_sequencer.models.sequence import DEFAULT_STOP_CONDITIONS
from outreach_sequencer.services.sequence_engine import get_sequence_engine
from outreach_sequencer.services.sequence_engine.definitions import (
    parse_sequence,
    serialize_steps,
    serialize_stop_conditions,
    validate_sequence_definition
)
from outreach_sequencer.utils.error_handling import (
    handle_conflict_error,
    handle_exception,
    handle_not_found_error,
    handle_validation_error,
    validate_required_fields
)
from outreach_sequencer.utils.request_helpers import parse_bool_arg

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp

UPDATABLE_FIELDS = ('name', 'description', 'steps', 'stop_conditions', 'eligibility_tags', 'active')


def _validated_definition(steps, stop_conditions, eligibility_tags):
    """Return (normalized fields, error response)."""
    result = validate_sequence_definition({
        'steps': steps,
        'stop_conditions': stop_conditions,
        'eligibility_tags': eligibility_tags
    })
    if not result['valid']:
        return None, handle_validation_error(
            "Invalid sequence definition",
            {'errors': result['errors'], 'warnings': result['warnings']}
        )

    plan = parse_sequence(steps, stop_conditions)
    return {
        'steps': serialize_steps(plan.steps),
        'stop_conditions': serialize_stop_conditions(plan.stop_conditions),
        'eligibility_tags': list(dict.fromkeys(eligibility_tags or [])),
        'warnings': result['warnings']
    }, None


@sequence_bp.route('/sequences', methods=['GET'])
def list_sequences():
    """List sequences, optionally filtered by team and active flag."""
    try:
        query = SequenceDefinition.query

        team_id = request.args.get('team_id')
        if team_id:
            query = query.filter_by(team_id=team_id)

        active = parse_bool_arg(request.args.get('active'))
        if active is not None:
            query = query.filter_by(active=active)

        sequences = query.order_by(SequenceDefinition.created_at.asc()).all()
        return jsonify({
            'sequences': [sequence.to_dict() for sequence in sequences],
            'total': len(sequences)
        }), 200

    except Exception as e:
        logger.error(f"Error listing sequences: {str(e)}")
        return handle_exception(e, "listing sequences")


@sequence_bp.route('/sequences', methods=['POST'])
def create_sequence():
    """Create a new sequence definition."""
    try:
        data = request.get_json(silent=True) or {}

        validation_error = validate_required_fields(data, ['team_id', 'name', 'steps'])
        if validation_error:
            return validation_error

        stop_conditions = data.get('stop_conditions', DEFAULT_STOP_CONDITIONS)
        normalized, error = _validated_definition(data['steps'], stop_conditions, data.get('eligibility_tags'))
        if error:
            return error

        sequence = SequenceDefinition(
            team_id=data['team_id'],
            name=data['name'],
            description=data.get('description'),
            steps=normalized['steps'],
            stop_conditions=normalized['stop_conditions'],
            eligibility_tags=normalized['eligibility_tags'],
            active=bool(data.get('active', True))
        )
        db.session.add(sequence)
        db.session.commit()

        logger.info(f"Created sequence {sequence.id} ({sequence.name}) for team {sequence.team_id}")
        return jsonify({
            'message': 'Sequence created successfully',
            'sequence': sequence.to_dict(),
            'warnings': normalized['warnings']
        }), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating sequence: {str(e)}")
        return handle_exception(e, "creating sequence")


@sequence_bp.route('/sequences/<sequence_id>', methods=['GET'])
def get_sequence(sequence_id):
    """Get a sequence definition."""
    try:
        sequence = db.session.get(SequenceDefinition, sequence_id)
        if not sequence:
            return handle_not_found_error("Sequence", sequence_id)

        return jsonify({'sequence': sequence.to_dict()}), 200

    except Exception as e:
        logger.error(f"Error getting sequence: {str(e)}")
        return handle_exception(e, "getting sequence")


@sequence_bp.route('/sequences/<sequence_id>', methods=['PUT'])
def update_sequence(sequence_id):
    """
    Update a sequence definition.

    Runs snapshot their steps at enrollment, so step edits only apply to
    leads enrolled after the update.
    """
    try:
        sequence = db.session.get(SequenceDefinition, sequence_id)
        if not sequence:
            return handle_not_found_error("Sequence", sequence_id)

        data = request.get_json(silent=True) or {}
        unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
        if unknown:
            return handle_validation_error(
                f"Unsupported fields: {', '.join(unknown)}",
                {'allowed_fields': list(UPDATABLE_FIELDS)}
            )

        warnings = []
        if any(field in data for field in ('steps', 'stop_conditions', 'eligibility_tags')):
            normalized, error = _validated_definition(
                data.get('steps', sequence.steps),
                data.get('stop_conditions', sequence.stop_conditions),
                data.get('eligibility_tags', sequence.eligibility_tags)
            )
            if error:
                return error
            sequence.steps = normalized['steps']
            sequence.stop_conditions = normalized['stop_conditions']
            sequence.eligibility_tags = normalized['eligibility_tags']
            warnings = normalized['warnings']

        if 'name' in data:
            if not data['name']:
                return handle_validation_error("name cannot be empty")
            sequence.name = data['name']
        if 'description' in data:
            sequence.description = data['description']
        if 'active' in data:
            sequence.active = bool(data['active'])

        sequence.updated_at = datetime.utcnow()
        db.session.commit()

        logger.info(f"Updated sequence {sequence.id}")
        return jsonify({
            'message': 'Sequence updated successfully',
            'sequence': sequence.to_dict(),
            'warnings': warnings
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating sequence: {str(e)}")
        return handle_exception(e, "updating sequence")


@sequence_bp.route('/sequences/<sequence_id>/duplicate', methods=['POST'])
def duplicate_sequence(sequence_id):
    """Copy a sequence into a new, inactive definition with fresh counters."""
    try:
        source = db.session.get(SequenceDefinition, sequence_id)
        if not source:
            return handle_not_found_error("Sequence", sequence_id)

        sequence = SequenceDefinition(
            team_id=source.team_id,
            name=f"{source.name} (copy)",
            description=source.description,
            steps=copy.deepcopy(source.steps),
            stop_conditions=list(source.stop_conditions or []),
            eligibility_tags=list(source.eligibility_tags or []),
            active=False
        )
        db.session.add(sequence)
        db.session.commit()

        logger.info(f"Duplicated sequence {source.id} as {sequence.id}")
        return jsonify({
            'message': 'Sequence duplicated successfully',
            'sequence': sequence.to_dict()
        }), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error duplicating sequence: {str(e)}")
        return handle_exception(e, "duplicating sequence")


@sequence_bp.route('/sequences/<sequence_id>', methods=['DELETE'])
def delete_sequence(sequence_id):
    """
    Delete a sequence together with its completed and stopped runs.

    Refused while any run is still active or paused; stop those runs first.
    """
    try:
        sequence = db.session.get(SequenceDefinition, sequence_id)
        if not sequence:
            return handle_not_found_error("Sequence", sequence_id)

        store = get_sequence_engine().store
        open_runs = store.count_open_runs(sequence_id)
        if open_runs:
            return handle_conflict_error(
                f"Sequence {sequence_id} still has {open_runs} active or paused runs",
                {'sequence_id': sequence_id, 'open_runs': open_runs}
            )

        removed = store.delete_sequence(sequence_id)

        logger.info(f"Deleted sequence {sequence_id} and {removed} finished runs")
        return jsonify({
            'message': 'Sequence deleted successfully',
            'sequence_id': sequence_id,
            'runs_deleted': removed
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting sequence: {str(e)}")
        return handle_exception(e, "deleting sequence")


def _set_active(sequence_id, active):
    sequence = db.session.get(SequenceDefinition, sequence_id)
    if not sequence:
        return handle_not_found_error("Sequence", sequence_id)

    sequence.active = active
    sequence.updated_at = datetime.utcnow()
    db.session.commit()

    state = 'activated' if active else 'deactivated'
    logger.info(f"Sequence {sequence.id} {state}")
    return jsonify({
        'message': f'Sequence {state} successfully',
        'sequence': sequence.to_dict()
    }), 200


@sequence_bp.route('/sequences/<sequence_id>/activate', methods=['POST'])
def activate_sequence(sequence_id):
    """Allow new enrollments into a sequence."""
    try:
        return _set_active(sequence_id, True)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error activating sequence: {str(e)}")
        return handle_exception(e, "activating sequence")


@sequence_bp.route('/sequences/<sequence_id>/deactivate', methods=['POST'])
def deactivate_sequence(sequence_id):
    """Stop new enrollments into a sequence; existing runs continue."""
    try:
        return _set_active(sequence_id, False)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deactivating sequence: {str(e)}")
        return handle_exception(e, "deactivating sequence")


@sequence_bp.route('/sequences/<sequence_id>/stats', methods=['GET'])
def get_sequence_stats(sequence_id):
    """Run counts and rates for a sequence."""
    try:
        sequence = db.session.get(SequenceDefinition, sequence_id)
        if not sequence:
            return handle_not_found_error("Sequence", sequence_id)

        stats = get_sequence_engine().store.sequence_stats(sequence_id)
        stats.update({
            'name': sequence.name,
            'total_enrolled': sequence.total_enrolled,
            'total_completed': sequence.total_completed,
            'total_converted': sequence.total_converted
        })
        return jsonify({'stats': stats}), 200

    except Exception as e:
        logger.error(f"Error getting sequence stats: {str(e)}")
        return handle_exception(e, "getting sequence stats")
