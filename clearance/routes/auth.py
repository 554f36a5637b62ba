"""
Authentication routes for the Student Clearance Tracker.

Login is guarded twice: Flask-Limiter caps requests per IP, and the
LoginGuard counts attempts per account and locks it after too many.
"""

from flask import Blueprint, current_app
from flask_wtf.csrf import generate_csrf

from clearance.auth import start_session, end_session, get_current_user
from clearance.exceptions import ClearanceError
from clearance.extensions import db, limiter
from clearance.routes import register_error_handlers, success, validate_form
from clearance.utils.login_guard import LoginGuard, create_unlock_request
from forms import LoginForm, UnlockRequestForm

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')
register_error_handlers(auth_bp)


@auth_bp.route('/csrf-token')
def csrf_token():
    """Issue a CSRF token for the X-CSRFToken header."""
    return success(csrf_token=generate_csrf())


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """Log in with email and password."""
    end_session()
    form = validate_form(LoginForm())
    guard = LoginGuard.from_config(current_app.config)

    try:
        user = guard.authenticate(form.email.data, form.password.data)
    except ClearanceError:
        # Failed attempts and new locks must persist
        db.session.commit()
        raise

    db.session.commit()
    start_session(user)
    current_app.logger.info(f"User {user.email} ({user.role.value}) logged in")
    return success(user=user.to_dict())


@auth_bp.route('/logout', methods=['POST'])
def logout():
    user = get_current_user()
    end_session()
    if user is not None:
        current_app.logger.info(f"User {user.email} logged out")
    return success(message="Logged out.")


@auth_bp.route('/unlock-request', methods=['POST'])
@limiter.limit("5 per hour")
def unlock_request():
    """File an unlock request for a locked account."""
    form = validate_form(UnlockRequestForm())
    request_record, created = create_unlock_request(form.email.data, notes=form.notes.data)
    db.session.commit()
    return success(
        201 if created else 200,
        message="Unlock request submitted." if created else "An unlock request is already pending.",
        request=request_record.to_dict(),
    )
