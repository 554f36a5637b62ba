"""
Blueprints for the clearance JSON API.

- main: health check
- auth: login, logout, unlock requests, CSRF token
- api: role workflows (approvals, items, requirements, registrations)
- admin: accounts, unlock and sign-out review, CSV export
"""

from flask import current_app, jsonify

from clearance.exceptions import ClearanceError, ValidationError
from clearance.extensions import db


def handle_clearance_error(error):
    """Roll back and translate a ClearanceError into its JSON response."""
    db.session.rollback()
    if error.http_status >= 500:
        current_app.logger.error(f"{error.code}: {error.message}")
    else:
        current_app.logger.info(f"{error.code}: {error.message}")
    return jsonify(error.to_dict()), error.http_status


def register_error_handlers(blueprint):
    blueprint.register_error_handler(ClearanceError, handle_clearance_error)


def validate_form(form):
    """
    Validate a submitted form.

    Raises:
        ValidationError: with the per-field errors
    """
    if not form.validate_on_submit():
        raise ValidationError("Invalid input.", errors=form.errors)
    return form


def success(status_code=200, **payload):
    body = {"status": "success"}
    body.update(payload)
    return jsonify(body), status_code
