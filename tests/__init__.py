"""
Testing package for the Lead Sequence Engine.

This package contains:
- Unit tests for definitions, timing and condition evaluation
- Engine tests for enrollment, progression and auto-match on SQLite
- Scheduler tests
- Integration tests for API endpoints
"""

import os
import sys

# Make the project root importable when running without an installed package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
