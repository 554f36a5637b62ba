"""
Authentication and authorization utilities for the Student Clearance Tracker.

Contains session management helpers and the role decorators used by the API
blueprints. Sessions expire after SESSION_TIMEOUT_MINUTES of inactivity.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import session, jsonify, current_app

from clearance.extensions import db
from clearance.models import Role, User
from clearance.utils.helpers import as_utc


# -------------------- SESSION HELPERS --------------------

def start_session(user):
    """Store the authenticated user in a fresh session."""
    session.clear()
    session['user_id'] = user.id
    session['role'] = user.role.value
    now = datetime.now(timezone.utc).isoformat()
    session['login_time'] = now
    session['last_activity'] = now
    session.permanent = True


def end_session():
    session.clear()


def get_current_user():
    """Return the logged-in User, or None."""
    user_id = session.get('user_id')
    return db.session.get(User, user_id) if user_id else None


def _session_expired(now):
    last_activity = session.get('last_activity')
    if not last_activity:
        return False
    timeout = current_app.config.get('SESSION_TIMEOUT_MINUTES', 30)
    return (now - datetime.fromisoformat(last_activity)) > timedelta(minutes=timeout)


def _lock_active(user, now):
    if not user.is_locked:
        return False
    return user.locked_until is None or as_utc(user.locked_until) > now


def _unauthorized(message):
    return jsonify({"status": "error", "code": "UNAUTHORIZED", "message": message}), 401


# -------------------- AUTHENTICATION DECORATORS --------------------

def login_required(f):
    """
    Decorator to require an authenticated user for a route.

    Clears the session and answers 401 when it is missing or invalid, when
    the account has been locked, or after SESSION_TIMEOUT_MINUTES idle.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return _unauthorized("Authentication required.")

        now = datetime.now(timezone.utc)
        if _session_expired(now):
            end_session()
            return _unauthorized("Session expired. Please log in again.")

        user = get_current_user()
        if user is None:
            end_session()
            return _unauthorized("Session is invalid. Please log in again.")
        if _lock_active(user, now):
            end_session()
            return _unauthorized("Account is locked. Please log in again once it is unlocked.")

        session['last_activity'] = now.isoformat()
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    """
    Decorator to restrict a route to the given roles.

    Implies login_required.
    """
    allowed = {Role.from_string(role) for role in roles}

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            user = get_current_user()
            if user.role not in allowed:
                current_app.logger.warning(
                    f"User {user.email} ({user.role.value}) denied access to {f.__name__}"
                )
                return jsonify({
                    "status": "error",
                    "code": "FORBIDDEN",
                    "message": "You do not have permission to perform this action.",
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    """Decorator to require an admin account."""
    return role_required(Role.ADMIN)(f)


STAFF_ROLES = (
    Role.ADMIN,
    Role.TEACHER,
    Role.HALL_HEAD,
    Role.STATION_STAFF,
    Role.ADVISOR,
    Role.YEAR_HEAD,
)

APPROVER_ROLES = (
    Role.TEACHER,
    Role.HALL_HEAD,
    Role.STATION_STAFF,
    Role.ADVISOR,
    Role.YEAR_HEAD,
)
