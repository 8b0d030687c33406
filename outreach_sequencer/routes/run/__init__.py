"""
Run routes package.

This package contains lead run endpoints:
- enrollment.py: Enroll, read and transition runs
- signals.py: Lead tags, flags and replies fed in by the lead service
"""

from flask import Blueprint

# Create the main run blueprint
run_bp = Blueprint('run', __name__)

# Import all route modules to register them
from . import enrollment
from . import signals

# Export the blueprint
__all__ = ['run_bp']
