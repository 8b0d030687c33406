"""
Scheduler services package.

- core.py: Sequence scheduler class, tick processing and health reporting
"""

from .core import SequenceScheduler, get_sequence_scheduler

__all__ = ['SequenceScheduler', 'get_sequence_scheduler']
