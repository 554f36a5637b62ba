"""
Main routes for the Student Clearance Tracker.

Public utility routes (no authentication required).
"""

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from clearance.extensions import db

# Create blueprint
main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health_check():
    """Simple health check endpoint for uptime monitoring."""
    try:
        db.session.execute(text('SELECT 1'))
        return jsonify(status='ok'), 200
    except SQLAlchemyError:
        current_app.logger.exception('Health check failed')
        return jsonify(status='error', message='Database error'), 500
