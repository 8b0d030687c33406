"""
Sequence routes package.

This package contains sequence definition endpoints:
- crud.py: Create, list, read and update sequences; activation and stats
- validation.py: Sequence definition validation for the authoring surface
"""

from flask import Blueprint

# Create the main sequence blueprint
sequence_bp = Blueprint('sequence', __name__)

# Import all route modules to register them
from . import crud
from . import validation

# Export the blueprint
__all__ = ['sequence_bp']
