"""
WSGI entry point for the Student Clearance Tracker.

For gunicorn: wsgi:app
"""

from clearance import app  # noqa: F401
from clearance.extensions import db  # noqa: F401
from clearance.models import Student, User, ClearanceItem  # noqa: F401
