"""
Automation routes package.

This package contains automation functionality:
- scheduler_control.py: Scheduler management endpoints
"""

from flask import Blueprint

# Create the main automation blueprint
automation_bp = Blueprint('automation', __name__)

# Import all route modules to register them
from . import scheduler_control

# Export the blueprint
__all__ = ['automation_bp']
