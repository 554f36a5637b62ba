"""Early sign-out requests filed by students and reviewed by admins."""

from flask import current_app

from clearance.extensions import db
from clearance.exceptions import InvalidTransitionError, ValidationError
from clearance.models import SignOutRequest, SignOutStatus
from clearance.utils.helpers import utc_now

REVIEWABLE_STATUSES = (SignOutStatus.PENDING, SignOutStatus.IN_PROGRESS)


def file_sign_out_request(student, reason, now=None):
    if not reason or not reason.strip():
        raise ValidationError("Please give a reason for signing out.")
    sign_out = SignOutRequest(
        student_id=student.id,
        reason=reason.strip(),
        request_date=now or utc_now(),
        status=SignOutStatus.PENDING,
    )
    db.session.add(sign_out)
    current_app.logger.info(f"Sign-out request filed by {student.student_number}")
    return sign_out


def review_sign_out_request(sign_out, reviewer, status, notes=None, now=None):
    """
    Move a pending or in-progress request to a new status.

    Raises:
        ValidationError: unknown status, or moving back to pending
        InvalidTransitionError: request already approved, rejected or completed
    """
    try:
        status = SignOutStatus.from_string(status)
    except ValueError:
        raise ValidationError("Invalid status.", allowed=SignOutStatus.values())
    if status == SignOutStatus.PENDING:
        raise ValidationError("A reviewed request cannot be set back to pending.")
    if sign_out.status not in REVIEWABLE_STATUSES:
        raise InvalidTransitionError(f"This request has already been {sign_out.status.value}.")

    sign_out.status = status
    sign_out.reviewed_by = reviewer.name
    sign_out.reviewed_at = now or utc_now()
    sign_out.review_notes = notes
    current_app.logger.info(f"{reviewer.name} marked sign-out request {sign_out.id} {status.value}")
    return sign_out
