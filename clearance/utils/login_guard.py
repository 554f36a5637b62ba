"""
Login guard: failed-attempt tracking, account locks and unlock requests.

Attempts are tracked per normalized email in the ``login_attempts`` table, so
every application instance sharing the database sees the same counters.
A guard is built per request from the app config; it holds no state of its own.

Flow for one login:
    1. Count the attempt (atomic UPDATE ... SET attempts = attempts + 1).
    2. Reject locked accounts until the lock expires.
    3. Reject and lock once the count passes the limit, whatever the password.
    4. Check the password; success resets the counters.

The caller commits the session whether the login succeeded or failed.
"""

from datetime import timedelta

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash

from clearance.extensions import db
from clearance.exceptions import (
    AccountLockedError,
    AuthenticationError,
    InvalidTransitionError,
    RateLimitedError,
    ValidationError,
)
from clearance.models import AdminUnlockRequest, LoginAttempt, UnlockRequestStatus, User
from clearance.utils.constants import (
    LOCK_DURATION_MINUTES,
    LOCK_REASON_TOO_MANY_ATTEMPTS,
    LOGIN_ATTEMPT_RETENTION_HOURS,
    LOGIN_WINDOW_MINUTES,
    MAX_LOGIN_ATTEMPTS,
)
from clearance.utils.helpers import as_utc, utc_now


def normalize_email(email):
    return (email or '').strip().lower()


def _seconds_until(moment, now):
    return max(0, int((as_utc(moment) - as_utc(now)).total_seconds()))


def unlock_account(user):
    user.is_locked = False
    user.locked_at = None
    user.locked_until = None
    user.lock_reason = None
    user.login_attempts = 0


def clear_attempts(email_key, now=None):
    """Reset the tracker for an email to zero attempts."""
    now = now or utc_now()
    db.session.execute(
        update(LoginAttempt)
        .where(LoginAttempt.email_key == email_key)
        .values(attempts=0, first_attempt_at=now, last_attempt_at=now)
        .execution_options(synchronize_session=False)
    )


def _tracker(email_key):
    # Counters are written with bulk UPDATEs, so reload instead of trusting the identity map
    return LoginAttempt.query.filter_by(email_key=email_key).populate_existing().first()


class LoginGuard:
    """Sliding-window brute-force protection backed by the database."""

    def __init__(self, max_attempts=MAX_LOGIN_ATTEMPTS, window_minutes=LOGIN_WINDOW_MINUTES,
                 lock_minutes=LOCK_DURATION_MINUTES, clock=utc_now):
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self.lock_duration = timedelta(minutes=lock_minutes)
        self.clock = clock

    @classmethod
    def from_config(cls, config, clock=utc_now):
        return cls(
            max_attempts=config.get('MAX_LOGIN_ATTEMPTS', MAX_LOGIN_ATTEMPTS),
            window_minutes=config.get('LOGIN_WINDOW_MINUTES', LOGIN_WINDOW_MINUTES),
            lock_minutes=config.get('LOCK_DURATION_MINUTES', LOCK_DURATION_MINUTES),
            clock=clock,
        )

    # -------------------- ATTEMPT TRACKING --------------------

    def record_attempt(self, email_key, now=None, _retry=True):
        """
        Count one attempt and return the number of attempts in the current window.

        An attempt after the window has elapsed starts a new window at 1.
        """
        now = now or self.clock()
        window_start = now - self.window

        result = db.session.execute(
            update(LoginAttempt)
            .where(LoginAttempt.email_key == email_key, LoginAttempt.first_attempt_at >= window_start)
            .values(attempts=LoginAttempt.attempts + 1, last_attempt_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return db.session.execute(
                select(LoginAttempt.attempts).where(LoginAttempt.email_key == email_key)
            ).scalar_one()

        result = db.session.execute(
            update(LoginAttempt)
            .where(LoginAttempt.email_key == email_key)
            .values(attempts=1, first_attempt_at=now, last_attempt_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return 1

        try:
            db.session.add(LoginAttempt(email_key=email_key, attempts=1, first_attempt_at=now, last_attempt_at=now))
            db.session.flush()
        except IntegrityError:
            # Another request created the row first
            db.session.rollback()
            if not _retry:
                raise
            return self.record_attempt(email_key, now=now, _retry=False)
        return 1

    def attempts_for(self, email_key, now=None):
        now = now or self.clock()
        tracker = _tracker(email_key)
        if tracker is None or as_utc(tracker.first_attempt_at) < now - self.window:
            return 0
        return tracker.attempts

    def window_retry_after(self, email_key, now):
        tracker = _tracker(email_key)
        if tracker is None:
            return 0
        return _seconds_until(as_utc(tracker.first_attempt_at) + self.window, now)

    # -------------------- LOCKS --------------------

    def lock(self, user, now):
        user.is_locked = True
        user.locked_at = now
        user.locked_until = now + self.lock_duration
        user.lock_reason = LOCK_REASON_TOO_MANY_ATTEMPTS
        current_app.logger.warning(
            f"Account {user.email} locked until {user.locked_until.isoformat()} after {user.login_attempts} attempts"
        )

    def _restart_window(self, email_key, now):
        db.session.execute(
            update(LoginAttempt)
            .where(LoginAttempt.email_key == email_key)
            .values(attempts=1, first_attempt_at=now, last_attempt_at=now)
            .execution_options(synchronize_session=False)
        )

    # -------------------- LOGIN --------------------

    def authenticate(self, email, password):
        """
        Check credentials for one login attempt.

        Raises:
            ValidationError: email or password missing
            AccountLockedError: account is locked (423)
            RateLimitedError: this attempt passed the limit (429)
            AuthenticationError: wrong email or password (401)

        Returns:
            User: the authenticated account
        """
        email_key = normalize_email(email)
        if not email_key or not password:
            raise ValidationError("Email and password are required.")

        now = self.clock()
        attempts = self.record_attempt(email_key, now=now)
        user = User.query.filter_by(email=email_key).first()

        if user is not None:
            user.last_login_attempt = now
            if user.is_locked:
                if user.locked_until is not None and as_utc(user.locked_until) <= now:
                    unlock_account(user)
                    self._restart_window(email_key, now)
                    attempts = 1
                    current_app.logger.info(f"Lock on {user.email} expired; account unlocked")
                else:
                    raise AccountLockedError(
                        "Account is locked. Try again later or request an unlock.",
                        retry_after_seconds=_seconds_until(user.locked_until, now) if user.locked_until else None,
                        locked_until=as_utc(user.locked_until).isoformat() if user.locked_until else None,
                        attempts_remaining=0,
                        unlock_request_available=True,
                    )
            user.login_attempts = attempts

        if attempts > self.max_attempts:
            if user is not None:
                self.lock(user, now)
                raise RateLimitedError(
                    "Too many login attempts. Your account has been locked.",
                    retry_after_seconds=int(self.lock_duration.total_seconds()),
                    locked_until=as_utc(user.locked_until).isoformat(),
                    attempts_remaining=0,
                    unlock_request_available=True,
                )
            raise RateLimitedError(
                "Too many login attempts. Please try again later.",
                retry_after_seconds=self.window_retry_after(email_key, now),
                attempts_remaining=0,
                unlock_request_available=False,
            )

        if user is None or not check_password_hash(user.password_hash, password):
            raise AuthenticationError(
                "Invalid email or password.",
                attempts_remaining=self.max_attempts - attempts,
            )

        clear_attempts(email_key, now)
        user.login_attempts = 0
        user.last_login = now
        return user


# -------------------- UNLOCK REQUESTS --------------------

def create_unlock_request(email, notes=None, now=None):
    """
    File an unlock request for a locked account.

    A user has at most one pending request; asking again returns it.

    Returns:
        tuple: (AdminUnlockRequest, created)
    """
    email_key = normalize_email(email)
    user = User.query.filter_by(email=email_key).first() if email_key else None
    if user is None or not user.is_locked:
        raise ValidationError("No locked account was found for this email.")

    pending = AdminUnlockRequest.query.filter_by(user_id=user.id, status=UnlockRequestStatus.PENDING).first()
    if pending is not None:
        return pending, False

    unlock_request = AdminUnlockRequest(
        user_id=user.id,
        user_email=user.email,
        user_name=user.name,
        locked_at=user.locked_at,
        attempt_count=user.login_attempts,
        requested_at=now or utc_now(),
        status=UnlockRequestStatus.PENDING,
        notes=notes,
    )
    db.session.add(unlock_request)
    current_app.logger.info(f"Unlock request filed for {user.email}")
    return unlock_request, True


def _ensure_pending(unlock_request):
    if unlock_request.status != UnlockRequestStatus.PENDING:
        raise InvalidTransitionError(
            f"Unlock request has already been {unlock_request.status.value}."
        )


def approve_unlock_request(unlock_request, admin, notes=None, now=None):
    """Unlock the account and reset both attempt counters."""
    _ensure_pending(unlock_request)
    now = now or utc_now()

    unlock_request.status = UnlockRequestStatus.APPROVED
    unlock_request.approved_by = admin.name
    unlock_request.approved_at = now
    if notes:
        unlock_request.notes = notes

    user = unlock_request.user
    if user is not None:
        unlock_account(user)
        clear_attempts(normalize_email(user.email), now)

    current_app.logger.info(f"{admin.name} approved unlock request {unlock_request.id} for {unlock_request.user_email}")
    return unlock_request


def reject_unlock_request(unlock_request, admin, notes=None, now=None):
    _ensure_pending(unlock_request)
    unlock_request.status = UnlockRequestStatus.REJECTED
    unlock_request.approved_by = admin.name
    unlock_request.approved_at = now or utc_now()
    if notes:
        unlock_request.notes = notes
    current_app.logger.info(f"{admin.name} rejected unlock request {unlock_request.id} for {unlock_request.user_email}")
    return unlock_request


def release_expired_locks(now=None):
    """
    Unlock accounts whose lock has expired.

    Returns:
        int: number of accounts unlocked
    """
    now = now or utc_now()
    released = 0
    for user in User.query.filter_by(is_locked=True).all():
        if user.locked_until is not None and as_utc(user.locked_until) <= now:
            unlock_account(user)
            clear_attempts(normalize_email(user.email), now)
            released += 1
    return released


def prune_login_attempts(now=None, retention_hours=LOGIN_ATTEMPT_RETENTION_HOURS):
    """
    Delete tracker rows with no attempt in the last ``retention_hours``.

    Their windows closed long ago, so the next attempt for that email starts
    a fresh row at 1 either way.

    Returns:
        int: number of rows deleted
    """
    now = now or utc_now()
    cutoff = now - timedelta(hours=retention_hours)
    stale = LoginAttempt.query.filter(LoginAttempt.last_attempt_at < cutoff).all()
    for tracker in stale:
        db.session.delete(tracker)
    return len(stale)
