"""
Standalone scheduler worker.

Runs the sequence scheduler outside the web process:

    python -m outreach_sequencer.worker [--once] [--config production]

Several workers may share one database; run-level compare-and-swap keeps
them from executing the same step twice.
"""

import argparse
import logging
import os
import signal
import sys

from outreach_sequencer.main import LOG_FORMAT, create_app
from outreach_sequencer.services.scheduler import get_sequence_scheduler

logger = logging.getLogger('outreach_sequencer.worker')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Run the lead sequence scheduler')
    parser.add_argument('--config', default=os.environ.get('FLASK_ENV', 'development'),
                        help='Configuration name (development, production, testing)')
    parser.add_argument('--once', action='store_true', help='Run a single tick and exit')
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO').upper(), format=LOG_FORMAT)

    # The web process may also start a scheduler; the worker owns its own
    os.environ['START_SCHEDULER'] = 'false'
    app = create_app(args.config)
    app.config['START_SCHEDULER'] = False
    scheduler = get_sequence_scheduler()

    if args.once:
        try:
            summary = scheduler.tick()
        except Exception as e:
            logger.error(f"Single tick failed: {str(e)}")
            return 1
        logger.info(f"Single tick finished: {summary}")
        return 0 if summary['errors'] == 0 else 1

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    scheduler.start()
    logger.info("Worker started; waiting for shutdown signal")
    while scheduler.running:
        scheduler.thread.join(timeout=1)

    logger.info("Worker exited")
    return 0


if __name__ == '__main__':
    sys.exit(main())
