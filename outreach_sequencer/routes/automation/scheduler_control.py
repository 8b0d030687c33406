"""
Scheduler management endpoints.

This module contains functionality for:
- Scheduler status and health checking
- Starting and stopping the scheduler
- Running a single tick on demand
"""

import logging
from flask import jsonify, request

from outreach_sequencer.services.scheduler import get_sequence_scheduler
from outreach_sequencer.utils.error_handling import create_error_response, handle_exception
from outreach_sequencer.utils.request_helpers import parse_iso_timestamp

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import automation_bp


@automation_bp.route('/scheduler/status', methods=['GET'])
def get_scheduler_status():
    """Get the current status of the sequence scheduler."""
    try:
        scheduler = get_sequence_scheduler()

        status = {
            'running': scheduler.running,
            'thread_alive': scheduler.thread.is_alive() if scheduler.thread else False,
            'interval_seconds': scheduler.interval_seconds,
            'batch_size': scheduler.batch_size,
            'last_tick_at': scheduler.last_tick_at.isoformat() if scheduler.last_tick_at else None,
            'total_ticks': scheduler.total_ticks
        }

        return jsonify(status)

    except Exception as e:
        logger.error(f"Error getting scheduler status: {str(e)}")
        return handle_exception(e, "getting scheduler status")


@automation_bp.route('/scheduler/health', methods=['GET'])
def get_scheduler_health():
    """Health check; 503 when the scheduler is running but ticks have stalled."""
    try:
        health = get_sequence_scheduler().health()
        status_code = 503 if health['running'] and not health['healthy'] else 200
        return jsonify(health), status_code

    except Exception as e:
        logger.error(f"Error getting scheduler health: {str(e)}")
        return handle_exception(e, "getting scheduler health")


@automation_bp.route('/scheduler/start', methods=['POST'])
def start_scheduler():
    """Start the sequence scheduler."""
    try:
        scheduler = get_sequence_scheduler()

        if scheduler.running:
            return jsonify({'message': 'Scheduler is already running'}), 200

        scheduler.start()

        return jsonify({
            'message': 'Scheduler started successfully',
            'status': 'running'
        })

    except Exception as e:
        logger.error(f"Error starting scheduler: {str(e)}")
        return handle_exception(e, "starting scheduler")


@automation_bp.route('/scheduler/stop', methods=['POST'])
def stop_scheduler():
    """Stop the sequence scheduler."""
    try:
        scheduler = get_sequence_scheduler()

        if not scheduler.running:
            return jsonify({'message': 'Scheduler is already stopped'}), 200

        scheduler.stop()

        return jsonify({
            'message': 'Scheduler stopped successfully',
            'status': 'stopped'
        })

    except Exception as e:
        logger.error(f"Error stopping scheduler: {str(e)}")
        return handle_exception(e, "stopping scheduler")


@automation_bp.route('/scheduler/tick', methods=['POST'])
def run_scheduler_tick():
    """Process due runs once, outside the background loop."""
    try:
        data = request.get_json(silent=True) or {}
        now = parse_iso_timestamp(data.get('now'), 'now')

        summary = get_sequence_scheduler().tick(now)
        return jsonify({'message': 'Tick completed', 'summary': summary}), 200

    except ValueError as e:
        return create_error_response('VALIDATION_ERROR', str(e))
    except Exception as e:
        logger.error(f"Error running scheduler tick: {str(e)}")
        return handle_exception(e, "running scheduler tick")
